"""Canvas REST API client.

This wraps `requests` to keep HTTP details out of the workflows and make tests easy.
Every non-streaming request goes through the configured RetryPolicy.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any

import requests

from canvas_personas.errors import TransientRemoteError, classify_status
from canvas_personas.retry import RetryPolicy

logger = logging.getLogger(__name__)

Widget = dict[str, Any]


class WidgetStream:
    """An open `?subscribe` response yielding raw lines."""

    def __init__(self, response: requests.Response) -> None:
        self._response = response

    def __iter__(self) -> Iterator[bytes]:
        return self._response.iter_lines(chunk_size=1, delimiter=b"\n")

    def close(self) -> None:
        self._response.close()


class CanvasClient:
    """Small wrapper around the canvas REST API for the operations we need."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        retry: RetryPolicy | None = None,
        verify_tls: bool = True,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Canvas base URL is required")
        if not api_key:
            raise ValueError("Canvas API key is required")

        self._base_url = base_url.rstrip("/")
        self._retry = retry or RetryPolicy()
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.verify = verify_tls
        self._session.headers.update(
            {
                "Private-Token": api_key,
                "Accept": "application/json",
                "User-Agent": "canvas-personas",
            }
        )

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = self._session.request(method, self._url(path), timeout=self._timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientRemoteError(f"{method} {path}: {e}") from e

        if resp.status_code >= 400:
            raise classify_status(
                resp.status_code,
                f"{method} {path} failed with HTTP {resp.status_code}: {resp.text[:200]}",
                resp.headers,
            )
        if not resp.content:
            return {}
        return resp.json()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._retry.execute(
            lambda: self._send(method, path, **kwargs), name=f"{method} {path}"
        )

    def get_canvas_info(self) -> Widget:
        data: Widget = self._request("GET", "")
        return data

    def list_widgets(self) -> list[Widget]:
        data = self._request("GET", "widgets")
        if not isinstance(data, list):
            return []
        return [w for w in data if isinstance(w, dict)]

    def get_widget(self, widget_id: str) -> Widget:
        data: Widget = self._request("GET", f"widgets/{widget_id}")
        return data

    def get_note(self, note_id: str) -> Widget:
        data: Widget = self._request("GET", f"notes/{note_id}")
        return data

    def create_note(self, attributes: Widget) -> Widget:
        data: Widget = self._request("POST", "notes", json=attributes)
        logger.debug("Note created", extra={"note_id": data.get("id"), "title": attributes.get("title")})
        return data

    def update_note(self, note_id: str, attributes: Widget) -> Widget:
        data: Widget = self._request("PATCH", f"notes/{note_id}", json=attributes)
        return data

    def delete_note(self, note_id: str) -> None:
        self._request("DELETE", f"notes/{note_id}")

    def create_connector(self, attributes: Widget) -> Widget:
        data: Widget = self._request("POST", "connectors", json=attributes)
        return data

    def create_anchor(self, attributes: Widget) -> Widget:
        data: Widget = self._request("POST", "anchors", json=attributes)
        return data

    def delete_image(self, image_id: str) -> None:
        self._request("DELETE", f"images/{image_id}")

    def create_image(self, image: bytes, attributes: Widget, *, filename: str = "image.png") -> Widget:
        files = {
            "json": (None, json.dumps(attributes), "application/json"),
            "data": (filename, image, "image/png"),
        }
        data: Widget = self._request("POST", "images", files=files)
        return data

    def subscribe_widgets(self) -> WidgetStream:
        """Open the widget event stream. Not retried: the reconnector owns that."""

        url = self._url("widgets")
        try:
            resp = self._session.get(
                url,
                params={"subscribe": "true"},
                stream=True,
                timeout=(self._timeout, None),
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientRemoteError(f"subscribe: {e}") from e
        if resp.status_code >= 400:
            status = resp.status_code
            resp.close()
            raise classify_status(status, f"subscribe failed with HTTP {status}", resp.headers)
        logger.info("Subscribed to widget stream", extra={"url": url})
        return WidgetStream(resp)
