from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from calendar_metrics.api_main import create_app
from calendar_metrics.config import Settings
from calendar_metrics.store import LogStore


def make_test_settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        host="127.0.0.1",
        port=0,
        metrics_tz="UTC",
        max_body_bytes=512 * 1024,
        log_dir=str(tmp_path / "data" / "logs"),
        static_root=str(tmp_path / "site"),
        log_level="INFO",
        environment="test",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return make_test_settings(tmp_path)


@pytest.fixture()
def store(settings: Settings) -> LogStore:
    return LogStore(settings.log_dir)


@pytest.fixture()
def client(settings: Settings) -> TestClient:
    return TestClient(create_app(settings))
