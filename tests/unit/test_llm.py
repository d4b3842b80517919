"""Unit tests for generation providers and chat sessions."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest

from canvas_personas.errors import PermanentRemoteError, RateLimitedError, TransientRemoteError
from canvas_personas.llm.openai_provider import OpenAIProvider, translate_openai_error
from canvas_personas.llm.provider import ChatSession, SessionManager

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_openai_provider_requires_key() -> None:
    with pytest.raises(ValueError):
        OpenAIProvider(api_key="")


def test_chat_passes_model_and_temperature() -> None:
    client = Mock()
    client.chat.completions.create.return_value = _completion("Hello there")
    provider = OpenAIProvider(api_key="k", model="gpt-test", temperature=0.3, client=client)

    assert provider.chat([{"role": "user", "content": "hi"}]) == "Hello there"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["temperature"] == 0.3


def test_empty_completion_is_transient() -> None:
    client = Mock()
    client.chat.completions.create.return_value = _completion("  ")
    provider = OpenAIProvider(api_key="k", client=client)

    with pytest.raises(TransientRemoteError):
        provider.chat([{"role": "user", "content": "hi"}])


def test_sdk_errors_are_translated() -> None:
    client = Mock()
    client.chat.completions.create.side_effect = openai.APIConnectionError(request=_REQUEST)
    provider = OpenAIProvider(api_key="k", client=client)

    with pytest.raises(TransientRemoteError):
        provider.chat([{"role": "user", "content": "hi"}])


def test_translate_openai_error_classes() -> None:
    limited = translate_openai_error(
        openai.RateLimitError(
            "slow down",
            response=httpx.Response(429, headers={"retry-after": "4"}, request=_REQUEST),
            body=None,
        )
    )
    assert isinstance(limited, RateLimitedError)
    assert limited.retry_after == 4.0

    server = translate_openai_error(
        openai.InternalServerError("oops", response=httpx.Response(500, request=_REQUEST), body=None)
    )
    assert isinstance(server, TransientRemoteError)

    denied = translate_openai_error(
        openai.AuthenticationError("nope", response=httpx.Response(401, request=_REQUEST), body=None)
    )
    assert isinstance(denied, PermanentRemoteError)
    assert denied.status_code == 401


def test_generate_image_decodes_b64() -> None:
    client = Mock()
    client.images.generate.return_value = SimpleNamespace(
        data=[SimpleNamespace(b64_json=base64.b64encode(b"png-bytes").decode())]
    )
    provider = OpenAIProvider(api_key="k", client=client)

    assert provider.generate_image("a face") == b"png-bytes"


def test_generate_text_records_history_only_on_success() -> None:
    client = Mock()
    client.chat.completions.create.side_effect = [
        openai.APIConnectionError(request=_REQUEST),
        _completion("Fine, thanks"),
    ]
    provider = OpenAIProvider(api_key="k", client=client)
    session = ChatSession("You are Ada.")

    with pytest.raises(TransientRemoteError):
        provider.generate_text("How are you?", session)
    assert session.turns == 0

    assert provider.generate_text("How are you?", session) == "Fine, thanks"
    assert session.turns == 1
    messages = client.chat.completions.create.call_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "You are Ada."}
    assert messages[-1] == {"role": "user", "content": "How are you?"}


def test_session_manager_reuses_sessions_by_name() -> None:
    sessions = SessionManager()

    first = sessions.get_or_create("Ada", "prompt A")
    again = sessions.get_or_create("Ada", "ignored")
    other = sessions.get_or_create("Bram", "prompt B")

    assert first is again
    assert other is not first
