"""Long-lived widget subscription with reconnect.

The feed is newline-delimited: blank lines are keep-alives and every other line is
a JSON array of widget records. The reconnector owns the connection lifecycle:

    CONNECTING -> STREAMING -> BACKOFF -> CONNECTING ...

and ends in STOPPED on cancellation or after too many consecutive failed connects.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterable
from enum import Enum
from typing import Any, Callable, Protocol

from canvas_personas.retry import compute_backoff

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class LineStream(Protocol):
    """An open feed connection: iterate raw lines, close to abort."""

    def __iter__(self) -> Any: ...

    def close(self) -> None: ...


def parse_line(line: str | bytes) -> list[dict[str, Any]] | None:
    """Decode one feed line.

    Returns an empty list for keep-alives and None for malformed lines.
    """

    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    stripped = line.strip()
    if not stripped:
        return []
    try:
        decoded = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if isinstance(decoded, dict):
        return [decoded]
    if not isinstance(decoded, list):
        return None
    return [item for item in decoded if isinstance(item, dict)]


class StreamReconnector:
    """Keep a subscription alive and hand every record to ``sink`` in arrival order."""

    def __init__(
        self,
        *,
        connect: Callable[[], LineStream],
        sink: Callable[[dict[str, Any]], None],
        cancel: threading.Event | None = None,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        jitter_fraction: float = 0.1,
        max_reconnect_attempts: int = 10,
        stable_after: float = 60.0,
        wait: Callable[[float], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_reconnect_attempts < 1:
            raise ValueError("max_reconnect_attempts must be >= 1")
        self._connect = connect
        self._sink = sink
        self._cancel = cancel or threading.Event()
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._jitter_fraction = jitter_fraction
        self._max_reconnect_attempts = max_reconnect_attempts
        self._stable_after = stable_after
        self._wait = wait or self._cancel.wait
        self._clock = clock

        self._lock = threading.Lock()
        self._current: LineStream | None = None
        self._state = StreamState.STOPPED
        self.reconnects = 0
        self.delays: list[float] = []

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def stop(self) -> None:
        """Stop reading and close the live connection. Never raises."""

        self._cancel.set()
        with self._lock:
            current = self._current
        if current is not None:
            self._close(current)

    def _set_state(self, state: StreamState) -> None:
        if state != self._state:
            logger.debug("Stream state change", extra={"from": self._state.value, "to": state.value})
        self._state = state

    def _backoff(self, exponent: int) -> float:
        delay = compute_backoff(
            max(1, exponent),
            initial_delay=self._initial_backoff,
            max_delay=self._max_backoff,
            jitter_fraction=self._jitter_fraction,
        )
        self.delays.append(delay)
        return delay

    @staticmethod
    def _close(stream: LineStream) -> None:
        try:
            stream.close()
        except Exception:
            logger.debug("Error while closing stream", exc_info=True)

    def run(self) -> None:
        """Block until cancelled or the reconnect attempts run out."""

        connect_failures = 0
        disconnects = 0
        connected_before = False

        while not self._cancel.is_set():
            self._set_state(StreamState.CONNECTING)
            try:
                stream = self._connect()
            except Exception as e:
                connect_failures += 1
                if connect_failures > self._max_reconnect_attempts:
                    logger.error(
                        "Giving up on widget stream",
                        extra={"attempts": connect_failures - 1, "error": str(e)},
                    )
                    break
                self._set_state(StreamState.BACKOFF)
                delay = self._backoff(disconnects + connect_failures)
                logger.warning(
                    "Failed to subscribe to widget stream",
                    extra={
                        "attempt": connect_failures,
                        "max_attempts": self._max_reconnect_attempts,
                        "delay_seconds": round(delay, 3),
                        "error": str(e),
                    },
                )
                if self._wait(delay):
                    break
                continue

            connect_failures = 0
            if connected_before:
                self.reconnects += 1
            connected_before = True
            with self._lock:
                self._current = stream
            if self._cancel.is_set():
                self._close(stream)
                break

            logger.info("Connected to widget stream", extra={"reconnects": self.reconnects})
            self._set_state(StreamState.STREAMING)
            started = self._clock()
            try:
                self._consume(stream)
            except Exception as e:
                if not self._cancel.is_set():
                    logger.warning("Error reading widget stream", extra={"error": str(e)})
            finally:
                with self._lock:
                    self._current = None
                self._close(stream)

            if self._cancel.is_set():
                break

            if self._clock() - started >= self._stable_after:
                disconnects = 0
            disconnects += 1
            self._set_state(StreamState.BACKOFF)
            delay = self._backoff(disconnects)
            logger.info(
                "Widget stream disconnected, reconnecting",
                extra={"delay_seconds": round(delay, 3), "disconnects": disconnects},
            )
            if self._wait(delay):
                break

        self._set_state(StreamState.STOPPED)
        logger.info("Widget stream stopped")

    def _consume(self, stream: Iterable[str | bytes]) -> None:
        for line in stream:
            if self._cancel.is_set():
                return
            records = parse_line(line)
            if records is None:
                logger.warning("Skipping malformed stream line", extra={"line": str(line)[:200]})
                continue
            for record in records:
                try:
                    self._sink(record)
                except Exception:
                    logger.exception("Failed to handle widget record", extra={"id": record.get("id")})
