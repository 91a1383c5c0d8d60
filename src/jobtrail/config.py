"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/jobtrail/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/jobtrail")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_MODEL = "claude-3-haiku-20240307"
DEFAULT_API_KEY_ENV = "ANTHROPIC_API_KEY"
DATABASE_NAME = "jobtrail.db"
PROVIDERS = ("anthropic", "none")


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class ClassifierConfig:
    """Model provider and classification cache settings."""

    provider: str = "anthropic"
    model: str = DEFAULT_MODEL
    api_key_env: str = DEFAULT_API_KEY_ENV
    timeout: float = 10.0
    body_chars: int = 2000
    max_tokens: int = 512
    cache_ttl_days: float = 21.0

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class PipelineConfig:
    """Retry and review-queue settings for the orchestrator."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    suggestion_limit: int = 5
    redrive_interval: float = 30.0


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    database_url: str
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    domain_aliases: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def spool_dir(self) -> Path:
        return self.root_dir / "spool"


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML."""

    config_path = _resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw)


def resolve_config_path(explicit: Path | str | None = None) -> Path:
    """Return the config path that `load_config` would read."""

    return _resolve_config_path(explicit)


def _resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get("JOBTRAIL_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _parse_config(raw: dict[str, Any]) -> Config:
    root_dir = Path(raw.get("rootdir") or raw.get("root_dir") or DEFAULT_ROOT_DIR).expanduser()
    database_url = _parse_database_url(raw.get("database_url"), root_dir)
    return Config(
        root_dir=root_dir,
        database_url=database_url,
        logging=_parse_logging(raw.get("logging")),
        classifier=_parse_classifier(raw.get("classifier")),
        pipeline=_parse_pipeline(raw.get("pipeline")),
        domain_aliases=_parse_domain_aliases(raw.get("domain_aliases")),
    )


def _parse_database_url(value: Any, root_dir: Path) -> str:
    if value is None:
        return f"sqlite:///{root_dir / DATABASE_NAME}"
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("database_url must be a non-empty string.")
    return value.strip()


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


def _parse_classifier(value: Any) -> ClassifierConfig:
    if value is None:
        return ClassifierConfig()
    if not isinstance(value, dict):
        raise ConfigError("classifier must be a mapping.")
    defaults = ClassifierConfig()
    provider = str(value.get("provider", defaults.provider)).lower()
    if provider not in PROVIDERS:
        raise ConfigError(
            f"classifier.provider must be one of {', '.join(PROVIDERS)} (got '{provider}')."
        )
    return ClassifierConfig(
        provider=provider,
        model=str(value.get("model", defaults.model)),
        api_key_env=str(value.get("api_key_env", defaults.api_key_env)),
        timeout=_positive_number(value.get("timeout", defaults.timeout), "classifier.timeout"),
        body_chars=int(
            _positive_number(value.get("body_chars", defaults.body_chars), "classifier.body_chars")
        ),
        max_tokens=int(
            _positive_number(value.get("max_tokens", defaults.max_tokens), "classifier.max_tokens")
        ),
        cache_ttl_days=_non_negative_number(
            value.get("cache_ttl_days", defaults.cache_ttl_days), "classifier.cache_ttl_days"
        ),
    )


def _parse_pipeline(value: Any) -> PipelineConfig:
    if value is None:
        return PipelineConfig()
    if not isinstance(value, dict):
        raise ConfigError("pipeline must be a mapping.")
    defaults = PipelineConfig()
    max_attempts = int(
        _positive_number(value.get("max_attempts", defaults.max_attempts), "pipeline.max_attempts")
    )
    return PipelineConfig(
        max_attempts=max_attempts,
        base_delay=_non_negative_number(
            value.get("base_delay", defaults.base_delay), "pipeline.base_delay"
        ),
        max_delay=_non_negative_number(
            value.get("max_delay", defaults.max_delay), "pipeline.max_delay"
        ),
        suggestion_limit=int(
            _positive_number(
                value.get("suggestion_limit", defaults.suggestion_limit),
                "pipeline.suggestion_limit",
            )
        ),
        redrive_interval=_positive_number(
            value.get("redrive_interval", defaults.redrive_interval), "pipeline.redrive_interval"
        ),
    )


def _parse_domain_aliases(value: Any) -> dict[str, tuple[str, ...]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("domain_aliases must be a mapping of company name to domain list.")

    aliases: dict[str, tuple[str, ...]] = {}
    for name, domains in value.items():
        if not isinstance(domains, list) or not domains:
            raise ConfigError(f"domain_aliases['{name}'] must be a non-empty list of domains.")
        cleaned = []
        for idx, domain in enumerate(domains, start=1):
            if not isinstance(domain, str) or not domain.strip():
                raise ConfigError(f"domain_aliases['{name}'][{idx}] must be a domain string.")
            cleaned.append(domain.strip().lower())
        aliases[str(name)] = tuple(cleaned)
    return aliases


def _positive_number(value: Any, field_name: str) -> float:
    number = _number(value, field_name)
    if number <= 0:
        raise ConfigError(f"{field_name} must be greater than zero.")
    return number


def _non_negative_number(value: Any, field_name: str) -> float:
    number = _number(value, field_name)
    if number < 0:
        raise ConfigError(f"{field_name} cannot be negative.")
    return number


def _number(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a number.")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number.") from exc


__all__ = [
    "ClassifierConfig",
    "Config",
    "ConfigError",
    "LoggingConfig",
    "PipelineConfig",
    "load_config",
    "resolve_config_path",
]
