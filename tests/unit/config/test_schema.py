"""
clic-tools — unit tests for config schema validation

File: tests/unit/config/test_schema.py
Last updated: 2026-10-19

Purpose
- Validate strict config schema behavior, structured errors, and redaction.

What this test file should cover
- Built-in defaults validate and are returned as independent copies.
- Rejects unknown keys and invalid types with actionable paths.
- Rejects embedded secrets in the config file.
- Ensures redaction is recursive and non-destructive.

Functional requirements
- No filesystem or database access.

Non-functional requirements
- Deterministic and fast.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from clic_tools.config.schema import (
    DEFAULT_CONFIG,
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
    migration_guidance,
    validate_config,
)
from clic_tools.security.passwords import MAX_ROUNDS, MIN_ROUNDS


def _issues(payload: object) -> dict[str, str]:
    result = validate_config(payload)
    assert not result.is_valid
    return {issue.path: issue.message for issue in result.issues}


def _with(section: str, key: str, value: object) -> dict[str, object]:
    return merge_config(default_config(), {section: {key: value}})


def test_defaults_validate_and_are_independent_copies() -> None:
    config = default_config()
    config["storage"]["busy_retry_limit"] = 99

    result = validate_config(default_config())

    assert result.is_valid
    assert result.config == DEFAULT_CONFIG
    assert DEFAULT_CONFIG["storage"]["busy_retry_limit"] == 4


def test_journal_mode_and_log_level_are_case_normalized() -> None:
    config = merge_config(
        default_config(),
        {"storage": {"journal_mode": "WAL"}, "observability": {"log_level": "debug"}},
    )

    normalized = assert_valid_config(config)

    assert normalized["storage"]["journal_mode"] == "wal"
    assert normalized["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("section", "key", "value", "message"),
    [
        ("storage", "journal_mode", "memory", "expected one of: delete, truncate, wal"),
        ("storage", "busy_timeout_ms", -1, "must be >= 0"),
        ("storage", "busy_retry_limit", True, "expected integer, got bool"),
        ("storage", "db_dir", "   ", "must not be empty"),
        ("backups", "keep", "5", "expected integer, got str"),
        ("security", "password_hash_rounds", MIN_ROUNDS - 1, f"must be >= {MIN_ROUNDS}"),
        ("security", "password_hash_rounds", MAX_ROUNDS + 1, f"must be <= {MAX_ROUNDS}"),
        ("observability", "log_to_stdout", "yes", "expected boolean, got str"),
        ("observability", "log_level", "TRACE", "invalid value 'TRACE'"),
    ],
)
def test_invalid_values_report_the_field_path(
    section: str, key: str, value: object, message: str
) -> None:
    issues = _issues(_with(section, key, value))

    assert message in issues[f"{section}.{key}"]


@given(st.integers(min_value=MIN_ROUNDS, max_value=MAX_ROUNDS))
def test_any_supported_rounds_value_is_accepted(rounds: int) -> None:
    normalized = assert_valid_config(_with("security", "password_hash_rounds", rounds))

    assert normalized["security"]["password_hash_rounds"] == rounds


def test_unknown_missing_and_secret_keys() -> None:
    config = default_config()
    del config["backups"]["keep"]
    payload = merge_config(
        config,
        {"storage": {"pool_size": 4}, "notifications": {"botToken": "123456:abcdef"}},
    )

    issues = _issues(payload)

    assert issues["backups.keep"] == "missing required field"
    assert issues["storage.pool_size"] == "unknown field"
    assert issues["notifications"] == "unknown field"


@pytest.mark.parametrize("key", ["api_key", "botToken", "db_password", "secret"])
def test_secret_looking_keys_are_forbidden(key: str) -> None:
    issues = _issues(_with("storage", key, "value"))

    assert "embedded secret values are forbidden" in issues[f"storage.{key}"]


def test_schema_version_mismatch_carries_guidance() -> None:
    newer = _issues(_with("meta", "schema_version", ConfigSchemaVersion + 1))
    invalid = _issues(_with("meta", "schema_version", 0))

    assert "upgrade the clic-tools runtime" in newer["meta.schema_version"]
    assert invalid["meta.schema_version"] == "must be >= 1"
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"
    assert "older than supported" in migration_guidance(ConfigSchemaVersion - 1)


def test_validation_error_renders_every_issue() -> None:
    payload = merge_config(default_config(), {"storage": {"busy_timeout_ms": "slow", "x": 1}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(payload)

    rendered = str(excinfo.value)
    assert rendered.startswith("invalid config:\n")
    assert "- storage.busy_timeout_ms: expected integer, got str" in rendered
    assert "- storage.x: unknown field" in rendered
    assert len(excinfo.value.issues) == 2


def test_root_must_be_an_object() -> None:
    result = validate_config(["storage"])

    assert result.config is None
    assert result.issues[0].path == "<root>"


def test_redaction_is_recursive_and_non_destructive() -> None:
    payload = {
        "security": {"password_hash_rounds": 10},
        "telegram": {"botToken": "123456:abcdef", "chat": {"api_key": "k"}, "chatId": "42"},
        "secrets": ["a", "b"],
    }

    redacted = dump_redacted(payload)

    assert redacted == {
        "security": {"password_hash_rounds": 10},
        "telegram": {"botToken": "<redacted>", "chat": {"api_key": "<redacted>"}, "chatId": "42"},
        "secrets": "<redacted>",
    }
    assert payload["telegram"]["botToken"] == "123456:abcdef"
    assert dump_redacted("not a mapping") == {}


def test_merge_config_is_deterministic_and_does_not_mutate_inputs() -> None:
    base = {"storage": {"db_dir": "dbs", "busy_retry_limit": 4}}
    overlay = {"storage": {"busy_retry_limit": 8}, "backups": {"keep": 1}}

    merged = merge_config(base, overlay)

    assert merged == {
        "backups": {"keep": 1},
        "storage": {"busy_retry_limit": 8, "db_dir": "dbs"},
    }
    assert base["storage"]["busy_retry_limit"] == 4
    assert merge_config(base, overlay) == merged
