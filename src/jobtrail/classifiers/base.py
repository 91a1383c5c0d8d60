"""Model provider protocol definitions."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class ProviderError(RuntimeError):
    """Raised by providers when a model call fails.

    ``transient`` marks failures worth retrying (timeouts, rate limits, 5xx).
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.cause = cause


@runtime_checkable
class ModelProvider(Protocol):
    """Common interface shared by all generative model backends."""

    name: str

    def complete(self, system: str, prompt: str, *, timeout: float) -> str:
        """Return the model's raw text reply for one system + user turn."""


class NullProvider:
    """Provider used when no model is configured; every call fails."""

    name = "none"

    def complete(self, system: str, prompt: str, *, timeout: float) -> str:
        raise ProviderError("No model provider configured.")


__all__ = ["ModelProvider", "NullProvider", "ProviderError"]
