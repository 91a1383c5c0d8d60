from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from jobtrail.classifiers import AnthropicProvider, EmailClassifier, ProviderError, safe_default
from jobtrail.types import ParsedEmail

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class FakeMessages:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.kwargs: dict = {}

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _provider(outcome) -> tuple[AnthropicProvider, FakeMessages]:
    messages = FakeMessages(outcome)
    client = SimpleNamespace(messages=messages)
    return AnthropicProvider(api_key=None, model="claude-test", client=client), messages


def _status_error(status: int) -> anthropic.APIStatusError:
    response = httpx.Response(status, request=REQUEST)
    return anthropic.APIStatusError(f"HTTP {status}", response=response, body=None)


def test_complete_joins_text_blocks() -> None:
    reply = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text='{"type": '),
            SimpleNamespace(type="tool_use", text="ignored"),
            SimpleNamespace(type="text", text='"OFFER"}'),
        ]
    )
    provider, messages = _provider(reply)

    text = provider.complete("system prompt", "user turn", timeout=4.0)

    assert text == '{"type": "OFFER"}'
    assert messages.kwargs["model"] == "claude-test"
    assert messages.kwargs["system"] == "system prompt"
    assert messages.kwargs["messages"] == [{"role": "user", "content": "user turn"}]
    assert messages.kwargs["timeout"] == 4.0


def test_empty_reply_is_an_error() -> None:
    provider, _ = _provider(SimpleNamespace(content=[]))

    with pytest.raises(ProviderError) as info:
        provider.complete("s", "p", timeout=1.0)

    assert info.value.transient is False


def test_timeout_is_transient() -> None:
    provider, _ = _provider(anthropic.APITimeoutError(request=REQUEST))

    with pytest.raises(ProviderError) as info:
        provider.complete("s", "p", timeout=1.0)

    assert info.value.transient is True
    assert isinstance(info.value.cause, anthropic.APITimeoutError)


@pytest.mark.parametrize("status, transient", [(500, True), (503, True), (400, False)])
def test_status_errors_map_transience(status, transient) -> None:
    provider, _ = _provider(_status_error(status))

    with pytest.raises(ProviderError) as info:
        provider.complete("s", "p", timeout=1.0)

    assert info.value.transient is transient
    assert str(status) in str(info.value)


def test_response_validation_error_is_permanent() -> None:
    response = httpx.Response(200, request=REQUEST)
    provider, _ = _provider(anthropic.APIResponseValidationError(response=response, body=None))

    with pytest.raises(ProviderError) as info:
        provider.complete("s", "p", timeout=1.0)

    assert info.value.transient is False
    assert isinstance(info.value.cause, anthropic.APIResponseValidationError)


def test_unreadable_content_is_an_error() -> None:
    provider, _ = _provider(SimpleNamespace(content=None))

    with pytest.raises(ProviderError) as info:
        provider.complete("s", "p", timeout=1.0)

    assert info.value.transient is False


def test_classifier_falls_back_when_sdk_rejects_response() -> None:
    response = httpx.Response(200, request=REQUEST)
    provider, _ = _provider(anthropic.APIResponseValidationError(response=response, body=None))
    email = ParsedEmail(
        sender="hr@acme.io",
        subject="Next steps",
        body="Thanks for applying.",
        received_at=datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc),
    )

    result = EmailClassifier(provider, transient_retries=0).classify(email)

    assert result == safe_default()
