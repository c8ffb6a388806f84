import os
from datetime import timezone

import pytest

from calendar_metrics.config import DEFAULT_MAX_BODY_BYTES
from calendar_metrics.config import Settings

_ENV_NAMES = (
    "HOST",
    "PORT",
    "METRICS_TZ",
    "MAX_BODY_BYTES",
    "METRICS_LOG_DIR",
    "STATIC_ROOT",
    "LOG_LEVEL",
    "ENVIRONMENT",
    "ENV",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_from_env_uses_defaults_when_unset() -> None:
    settings = Settings.from_env()
    assert settings.host == "0.0.0.0"
    assert settings.port == 5174
    assert settings.metrics_tz == "Asia/Seoul"
    assert settings.max_body_bytes == DEFAULT_MAX_BODY_BYTES == 512 * 1024
    assert settings.log_dir == os.path.join(os.getcwd(), "data", "logs")
    assert settings.environment == "stage"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("METRICS_TZ", "UTC")
    monkeypatch.setenv("MAX_BODY_BYTES", "1024")
    monkeypatch.setenv("METRICS_LOG_DIR", "/tmp/metrics-logs")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("ENV", "prod")

    settings = Settings.from_env()
    assert settings.host == "127.0.0.1"
    assert settings.port == 9000
    assert settings.metrics_tz == "UTC"
    assert settings.max_body_bytes == 1024
    assert settings.log_dir == "/tmp/metrics-logs"
    assert settings.log_level == "DEBUG"
    assert settings.environment == "prod"


def test_from_env_falls_back_on_malformed_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "not-a-port")
    monkeypatch.setenv("MAX_BODY_BYTES", "-5")
    settings = Settings.from_env()
    assert settings.port == 5174
    assert settings.max_body_bytes == DEFAULT_MAX_BODY_BYTES


def test_tzinfo_resolves_named_zone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_TZ", "Asia/Seoul")
    tz = Settings.from_env().tzinfo()
    assert str(tz) == "Asia/Seoul"


def test_tzinfo_falls_back_to_utc_for_unknown_zone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_TZ", "Mars/Olympus_Mons")
    assert Settings.from_env().tzinfo() is timezone.utc
