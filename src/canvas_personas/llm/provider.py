"""Abstract base class for generation providers, plus per-persona chat sessions."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any


class GenerationProvider(ABC):
    """Abstract base class for text/image generation backends.

    Implementations raise the :mod:`canvas_personas.errors` hierarchy so callers can
    retry rate limits and transient failures with a RetryPolicy.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate a chat completion from messages.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: Additional provider-specific parameters.

        Returns:
            Generated chat response.
        """

    def generate_text(self, prompt: str, session: ChatSession | None = None) -> str:
        """Answer ``prompt``, inside ``session`` when given.

        The session history is only extended when the call succeeds, so a failed
        attempt can be retried without duplicating the prompt.
        """

        if session is None:
            return self.chat([{"role": "user", "content": prompt}])
        messages = session.messages_with(prompt)
        reply = self.chat(messages)
        session.record(prompt, reply)
        return reply

    @abstractmethod
    def generate_image(self, prompt: str) -> bytes:
        """Generate a PNG image for ``prompt``.

        Returns:
            Raw image bytes.
        """


class ChatSession:
    """Conversation history for one persona. Safe to share between threads."""

    def __init__(self, system_prompt: str) -> None:
        self._lock = threading.Lock()
        self._messages: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]

    def messages_with(self, prompt: str) -> list[dict[str, str]]:
        with self._lock:
            return [*self._messages, {"role": "user", "content": prompt}]

    def record(self, prompt: str, reply: str) -> None:
        with self._lock:
            self._messages.append({"role": "user", "content": prompt})
            self._messages.append({"role": "assistant", "content": reply})

    @property
    def turns(self) -> int:
        with self._lock:
            return (len(self._messages) - 1) // 2


class SessionManager:
    """One chat session per persona name. Each workflow run builds its own manager."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, ChatSession] = {}

    def get_or_create(self, name: str, system_prompt: str) -> ChatSession:
        with self._lock:
            session = self._sessions.get(name)
            if session is None:
                session = ChatSession(system_prompt)
                self._sessions[name] = session
            return session
