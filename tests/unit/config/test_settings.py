# tests/unit/config/test_settings.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

import pytest
from pydantic import ValidationError

from marketplace_ingest.config.settings import Environment, Settings, get_settings
from marketplace_ingest.infrastructure.external_apis.keepa.settings import KeepaSettings
from marketplace_ingest.infrastructure.external_apis.sp_api.settings import SpApiSettings

ASYNC_URL = "postgresql+asyncpg://u:p@localhost:5432/ingest"


def test_defaults_and_env_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", ASYNC_URL)
    monkeypatch.setenv("WORKER_BATCH_SIZE", "12")
    monkeypatch.setenv("OUR_SELLER_ID", "   ")

    settings = Settings()

    assert settings.environment is Environment.DEVELOPMENT
    assert settings.worker_batch_size == 12
    assert settings.worker_poll_interval_ms == 5000
    assert settings.task_default_max_attempts == 3
    assert settings.our_seller_id is None


def test_sync_driver_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="postgresql://u:p@localhost/ingest")


def test_get_settings_wraps_validation_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("WORKER_BATCH_SIZE", "0")
    get_settings.cache_clear()
    try:
        with pytest.raises(RuntimeError, match="Invalid configuration"):
            get_settings()
    finally:
        get_settings.cache_clear()


def test_source_credentials_gate_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("KEEPA_API_KEY", raising=False)
    monkeypatch.setenv("SP_API_ACCESS_TOKEN", "Atza|abc")
    monkeypatch.setenv("KEEPA_BATCH_SIZE", "50")

    keepa = KeepaSettings()
    sp_api = SpApiSettings()

    assert not keepa.configured
    assert keepa.batch_size == 50
    assert sp_api.configured
    assert KeepaSettings(api_key=" ").configured is False  # type: ignore[arg-type]
