"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from config.settings import Settings, parse_bool, parse_table_patterns

ENV_KEYS = [
    "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD",
    "INPUT_FOLDER", "TABLE_PATTERNS", "TARGET_SCHEMA", "TRUNCATE_PROCEDURE",
    "BATCH_SIZE", "BULK_TIMEOUT_SECONDS", "CSV_DELIMITER", "CSV_ENCODING",
    "CSV_STRICT", "LOG_LEVEL", "LOG_FILE", "LOG_FORMAT",
]


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch):
    """Minimal valid environment, isolated from any local .env values."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DB_USER", "loader")
    monkeypatch.setenv("DB_PASSWORD", "s3cret")
    monkeypatch.setenv("INPUT_FOLDER", "/data/in")
    monkeypatch.setenv("TABLE_PATTERNS", "CapacitaWeb=*capacita*.csv;Subsidios=*subsidio*.csv")
    return monkeypatch


class TestSettings:
    def test_defaults(self, env) -> None:
        settings = Settings()

        assert settings.DB_HOST == "localhost"
        assert settings.DB_PORT == 5432
        assert settings.INPUT_FOLDER == Path("/data/in")
        assert settings.TARGET_SCHEMA == "sap"
        assert settings.TRUNCATE_PROCEDURE == "etl.usp_truncate_table"
        assert settings.BATCH_SIZE == 5000
        assert settings.BULK_TIMEOUT_SECONDS == 0
        assert settings.CSV_DELIMITER is None
        assert settings.CSV_ENCODING == "utf-8-sig"
        assert settings.CSV_STRICT is True
        assert settings.LOG_FORMAT == "text"

    def test_patterns_keep_order(self, env) -> None:
        assert list(Settings().TABLE_PATTERNS.items()) == [
            ("CapacitaWeb", "*capacita*.csv"),
            ("Subsidios", "*subsidio*.csv"),
        ]

    @pytest.mark.parametrize("key", ["DB_USER", "DB_PASSWORD", "INPUT_FOLDER", "TABLE_PATTERNS"])
    def test_required(self, env, key: str) -> None:
        env.delenv(key)
        with pytest.raises(ValueError, match=key):
            Settings()

    def test_overrides(self, env) -> None:
        env.setenv("CSV_DELIMITER", ";")
        env.setenv("CSV_STRICT", "false")
        env.setenv("BATCH_SIZE", "250")
        env.setenv("LOG_FORMAT", "JSON")

        settings = Settings()

        assert settings.CSV_DELIMITER == ";"
        assert settings.CSV_STRICT is False
        assert settings.BATCH_SIZE == 250
        assert settings.LOG_FORMAT == "json"

    @pytest.mark.parametrize(
        "key,value",
        [("BATCH_SIZE", "0"), ("BATCH_SIZE", "many"), ("BULK_TIMEOUT_SECONDS", "-1"), ("LOG_FORMAT", "xml")],
    )
    def test_invalid_values(self, env, key: str, value: str) -> None:
        env.setenv(key, value)
        with pytest.raises(ValueError):
            Settings()

    def test_repr_hides_password(self, env) -> None:
        text = repr(Settings())
        assert "s3cret" not in text
        assert "CapacitaWeb" in text


class TestParsers:
    @pytest.mark.parametrize(
        "value,expected",
        [("true", True), ("1", True), ("YES", True), ("false", False), ("0", False), ("", True), (None, True)],
    )
    def test_parse_bool(self, value, expected: bool) -> None:
        assert parse_bool(value, default=True) is expected

    def test_parse_table_patterns_skips_empty_entries(self) -> None:
        assert parse_table_patterns(" A = a*.csv ;; B=b?.csv;") == {"A": "a*.csv", "B": "b?.csv"}

    @pytest.mark.parametrize("value", ["A", "=a.csv", "A="])
    def test_parse_table_patterns_rejects_bad_entries(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_table_patterns(value)
