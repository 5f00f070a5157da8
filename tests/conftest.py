import json

import pytest
from fastapi.testclient import TestClient

from demonicskull.app import create_app
from demonicskull.config import Config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the host's environment from leaking into Config.from_env()."""
    for name in (
        "HOST", "PORT", "VERCEL", "SERVERLESS", "MODEM_MODE", "MODEM_SPEED",
        "MODEM_INTERVAL_MS", "MODEM_LATENCY_MS", "MODEM_BYPASS_PARAM",
        "STORAGE_BACKEND", "DATA_DIR", "REDIS_URL", "ENTRIES_PER_PAGE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def data_dir(tmp_path):
    """Empty guestbook and a zeroed counter, so no seed data is copied in."""
    (tmp_path / "guestbook-entries.json").write_text("[]", encoding="utf-8")
    (tmp_path / "counter.json").write_text(json.dumps({"count": 0}), encoding="utf-8")
    return tmp_path


@pytest.fixture
def config(data_dir):
    """Fast modem: 1250-byte drips every 10ms after 10ms latency."""
    config = Config()
    config.storage.data_dir = str(data_dir)
    config.modem.speed = "dsl"
    config.modem.interval_ms = 10
    config.modem.latency_ms = 10
    return config


@pytest.fixture
def slow_config(config):
    """Real 56k pacing with an exaggerated latency that is easy to measure."""
    config.modem.speed = "56k"
    config.modem.interval_ms = 50
    config.modem.latency_ms = 300
    return config


@pytest.fixture
def client(config):
    return TestClient(create_app(config))


@pytest.fixture
def slow_client(slow_config):
    return TestClient(create_app(slow_config))
