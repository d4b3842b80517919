"""OpenAI generation provider implementation."""

from __future__ import annotations

import base64
import logging
from typing import Any, Callable, TypeVar

import openai
from openai import OpenAI

from canvas_personas.errors import (
    PermanentRemoteError,
    RateLimitedError,
    RemoteError,
    TransientRemoteError,
    parse_retry_after,
)
from canvas_personas.llm.provider import GenerationProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


def translate_openai_error(exc: Exception) -> RemoteError:
    """Map an OpenAI SDK exception onto the retry taxonomy."""

    if isinstance(exc, openai.RateLimitError):
        retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
        return RateLimitedError(str(exc), retry_after=retry_after)
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientRemoteError(str(exc))
    if isinstance(exc, openai.InternalServerError):
        return TransientRemoteError(str(exc), status_code=exc.status_code)
    if isinstance(exc, openai.APIStatusError):
        return PermanentRemoteError(str(exc), status_code=exc.status_code)
    return PermanentRemoteError(str(exc))


class OpenAIProvider(GenerationProvider):
    """OpenAI API provider implementation.

    The SDK's own retries are disabled: callers wrap each call in a RetryPolicy.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        image_model: str = "dall-e-2",
        temperature: float = 0.7,
        timeout: float = 60.0,
        client: OpenAI | None = None,
    ) -> None:
        """Initialize the OpenAI provider.

        Raises:
            ValueError: If API key is not provided.
        """
        if not api_key and client is None:
            raise ValueError("OpenAI API key is required")

        self.client = client or OpenAI(api_key=api_key, max_retries=0, timeout=timeout)
        self.model = model
        self.image_model = image_model
        self.temperature = temperature

        logger.info("OpenAI provider initialized", extra={"model": self.model})

    def _call(self, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        temp = temperature if temperature is not None else self.temperature

        logger.debug("Generating chat completion", extra={"messages": len(messages)})

        response = self._call(
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                max_tokens=max_tokens,
                temperature=temp,
                **kwargs,
            )
        )

        content = response.choices[0].message.content or ""
        if not content.strip():
            raise TransientRemoteError("Empty completion returned")
        logger.debug("Generated completion", extra={"characters": len(content)})
        return content

    def generate_image(self, prompt: str) -> bytes:
        response = self._call(
            lambda: self.client.images.generate(
                model=self.image_model,
                prompt=prompt,
                n=1,
                size="512x512",
                response_format="b64_json",
            )
        )
        if not response.data or not response.data[0].b64_json:
            raise PermanentRemoteError("No image data returned")
        return base64.b64decode(response.data[0].b64_json)
