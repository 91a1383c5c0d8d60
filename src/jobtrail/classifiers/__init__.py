"""Email classification backed by a generative model."""

from .anthropic_provider import AnthropicProvider
from .base import ModelProvider, NullProvider, ProviderError
from .cache import ClassificationCache, content_key
from .classifier import (
    EmailClassifier,
    format_email,
    is_significant,
    parse_reply,
    safe_default,
)

__all__ = [
    "AnthropicProvider",
    "ClassificationCache",
    "EmailClassifier",
    "ModelProvider",
    "NullProvider",
    "ProviderError",
    "content_key",
    "format_email",
    "is_significant",
    "parse_reply",
    "safe_default",
]
