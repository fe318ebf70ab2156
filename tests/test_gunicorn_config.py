"""Tests for gunicorn configuration."""
from __future__ import annotations

import importlib.util
import os
from unittest.mock import MagicMock, patch


def _load(name: str = "gunicorn_conf"):
    spec = importlib.util.spec_from_file_location(name, "gunicorn.conf.py")
    assert spec is not None
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[union-attr]
    return mod


class TestGunicornConfig:
    def test_serves_the_app_with_uvicorn_workers(self) -> None:
        mod = _load()
        assert "8001" in mod.bind
        assert "uvicorn" in mod.worker_class
        assert mod.proc_name == "partner-billing"
        assert mod.preload_app is False

    def test_timeout_covers_gateway_retries(self) -> None:
        env = {"GATEWAY_TIMEOUT_SECONDS": "20", "GATEWAY_READ_RETRIES": "3"}
        with patch.dict(os.environ, env):
            os.environ.pop("GUNICORN_TIMEOUT", None)
            os.environ.pop("GUNICORN_GRACEFUL_TIMEOUT", None)
            mod = _load("gunicorn_conf_gateway")
        assert mod.gateway_budget_seconds() == 68
        assert mod.graceful_timeout == 68
        assert mod.timeout == 98

    def test_short_gateway_timeout_keeps_a_floor(self) -> None:
        env = {"GATEWAY_TIMEOUT_SECONDS": "2", "GATEWAY_READ_RETRIES": "1"}
        with patch.dict(os.environ, env):
            os.environ.pop("GUNICORN_TIMEOUT", None)
            mod = _load("gunicorn_conf_floor")
        assert mod.timeout == 60

    def test_env_overrides(self) -> None:
        env = {"GUNICORN_WORKERS": "4", "GUNICORN_TIMEOUT": "45"}
        with patch.dict(os.environ, env):
            mod = _load("gunicorn_conf_custom")
        assert mod.workers == 4
        assert mod.timeout == 45

    def test_post_fork_resets_pool_only_when_preloaded(self) -> None:
        mod = _load("gunicorn_conf_fork")
        engine = MagicMock()
        server, worker = MagicMock(), MagicMock(pid=42)
        with patch("app.db.SessionLocal") as session_factory:
            session_factory.kw = {"bind": engine}
            mod.post_fork(server, worker)
            engine.dispose.assert_not_called()

            mod.preload_app = True
            mod.post_fork(server, worker)
        engine.dispose.assert_called_once_with(close=False)
