"""Model provider backed by the Anthropic Messages API."""

from __future__ import annotations

import logging

import anthropic

from .base import ProviderError

LOGGER = logging.getLogger(__name__)


class AnthropicProvider:
    """Send one system + user turn to Claude and return the text reply.

    SDK-level retries are disabled so the caller owns the retry policy.
    """

    name = "anthropic"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        max_tokens: int = 512,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = client or anthropic.Anthropic(api_key=api_key, max_retries=0)

    @property
    def model(self) -> str:
        return self._model

    def complete(self, system: str, prompt: str, *, timeout: float) -> str:
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
            )
        except anthropic.APITimeoutError as exc:
            raise ProviderError(
                f"Model call timed out after {timeout}s", transient=True, cause=exc
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderError(
                f"Model connection failed: {exc}", transient=True, cause=exc
            ) from exc
        except anthropic.RateLimitError as exc:
            raise ProviderError(
                "Model provider rate limited the request", transient=True, cause=exc
            ) from exc
        except anthropic.APIStatusError as exc:
            transient = exc.status_code >= 500
            raise ProviderError(
                f"Model provider returned HTTP {exc.status_code}", transient=transient, cause=exc
            ) from exc
        except anthropic.APIError as exc:
            raise ProviderError(f"Model call failed: {exc}", cause=exc) from exc

        try:
            text = "".join(
                block.text for block in response.content if getattr(block, "type", None) == "text"
            )
        except (AttributeError, TypeError) as exc:
            raise ProviderError(
                f"Model response has no readable content: {exc}", cause=exc
            ) from exc
        if not text.strip():
            raise ProviderError("Model returned an empty response")
        LOGGER.debug("Model %s replied with %d characters", self._model, len(text))
        return text


__all__ = ["AnthropicProvider"]
