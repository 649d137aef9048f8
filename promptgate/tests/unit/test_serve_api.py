from __future__ import annotations

from fastapi import FastAPI

from promptgate.core.config import get_settings
import scripts.serve_api as serve_api


def test_serve_api_runs_app_on_configured_bind(monkeypatch) -> None:
    monkeypatch.setenv("API_HOST", "127.0.0.1")
    monkeypatch.setenv("API_PORT", "9123")
    get_settings.cache_clear()
    calls: list[tuple] = []

    def _fake_run(app, *, host: str, port: int) -> None:
        calls.append((app, host, port))

    monkeypatch.setattr(serve_api.uvicorn, "run", _fake_run)
    serve_api.main()

    assert len(calls) == 1
    app, host, port = calls[0]
    assert isinstance(app, FastAPI)
    assert (host, port) == ("127.0.0.1", 9123)
