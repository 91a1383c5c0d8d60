from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from jobtrail.config import ConfigError, load_config, resolve_config_path


def _write_config(tmp_path: Path, content: str) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(textwrap.dedent(content), encoding="utf-8")
    return config_path


def test_load_config_success(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        f"""
        root_dir: {tmp_path}/state
        database_url: sqlite:///{tmp_path}/custom.db
        logging:
          level: DEBUG
          debug_file: true
        classifier:
          provider: none
          model: claude-test
          timeout: 5
          cache_ttl_days: 0
        pipeline:
          max_attempts: 5
          base_delay: 0.5
          suggestion_limit: 3
          redrive_interval: 10
        domain_aliases:
          Initech:
            - Initech.com
            - initrode.com
        """,
    )

    config = load_config(config_path)

    assert config.root_dir == tmp_path / "state"
    assert config.database_url == f"sqlite:///{tmp_path}/custom.db"
    assert config.logging.level == "debug"
    assert config.logging.debug_file is True
    assert config.classifier.provider == "none"
    assert config.classifier.model == "claude-test"
    assert config.classifier.timeout == pytest.approx(5.0)
    assert config.classifier.cache_ttl_days == 0
    assert config.pipeline.max_attempts == 5
    assert config.pipeline.suggestion_limit == 3
    assert config.pipeline.max_delay == pytest.approx(30.0)
    assert config.pipeline.redrive_interval == pytest.approx(10.0)
    assert config.domain_aliases == {"Initech": ("initech.com", "initrode.com")}
    assert config.spool_dir == tmp_path / "state" / "spool"


def test_defaults_place_database_under_root(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, f"root_dir: {tmp_path}/state\n")

    config = load_config(config_path)

    assert config.database_url == f"sqlite:///{tmp_path / 'state' / 'jobtrail.db'}"
    assert config.classifier.provider == "anthropic"
    assert config.classifier.body_chars == 2000
    assert config.pipeline.max_attempts == 3


def test_load_config_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, f"root_dir: {tmp_path}/env-state\n")
    monkeypatch.setenv("JOBTRAIL_CONFIG", str(config_path))

    config = load_config()

    assert config.root_dir == tmp_path / "env-state"
    assert resolve_config_path() == config_path


def test_api_key_read_from_configured_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        """
        classifier:
          api_key_env: JOBTRAIL_TEST_KEY
        """,
    )
    monkeypatch.setenv("JOBTRAIL_TEST_KEY", "secret")

    config = load_config(config_path)

    assert config.classifier.api_key == "secret"


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "bad_content, expected_message",
    [
        ("- just\n- a list\n", "root must be a mapping"),
        ("logging: verbose\n", "logging must be a mapping"),
        ("classifier:\n  provider: openai\n", "classifier.provider"),
        ("classifier:\n  timeout: -1\n", "classifier.timeout"),
        ("classifier:\n  timeout: soon\n", "classifier.timeout must be a number"),
        ("pipeline:\n  max_attempts: 0\n", "pipeline.max_attempts"),
        ("pipeline:\n  base_delay: -2\n", "pipeline.base_delay cannot be negative"),
        ("pipeline:\n  redrive_interval: 0\n", "pipeline.redrive_interval"),
        ("database_url: ''\n", "database_url"),
        ("domain_aliases:\n  Acme: acme.com\n", "non-empty list"),
        ("domain_aliases:\n  Acme: [1]\n", r"domain_aliases\['Acme'\]\[1\]"),
    ],
)
def test_invalid_config_shapes(tmp_path: Path, bad_content: str, expected_message: str) -> None:
    config_path = _write_config(tmp_path, bad_content)

    with pytest.raises(ConfigError, match=expected_message):
        load_config(config_path)
