from __future__ import annotations

import pytest

from promptgate.core.config import get_settings
from promptgate.services.rate_limit import reset_rate_limiter_state
from promptgate.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch) -> None:
    # Keep tests off external services and independent of a local .env file.
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    monkeypatch.setenv("RL_BACKEND", "memory")
    monkeypatch.setenv("AUDIT_ENABLED", "false")
    get_settings.cache_clear()
    reset_rate_limiter_state()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_rate_limiter_state()
    reset_telemetry()
