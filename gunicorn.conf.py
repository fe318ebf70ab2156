"""Gunicorn configuration for the billing API.

Usage:
    gunicorn -c gunicorn.conf.py app.main:app

Webhooks and payment endpoints wait on Mercado Pago, so the worker timeout is
derived from the gateway timeout and read retries unless set explicitly.
"""
from __future__ import annotations

import math
import multiprocessing
import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def gateway_budget_seconds() -> int:
    """Worst case for one gateway read: every attempt times out, plus backoff."""
    timeout = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15"))
    attempts = max(1, int(os.getenv("GATEWAY_READ_RETRIES", "3")))
    backoff = 4 * (attempts - 1)
    return math.ceil(timeout * attempts + backoff)


# ── Server socket ────────────────────────────────────────
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8001")

# ── Worker processes ─────────────────────────────────────
# Each worker also holds open access-block websockets, so stay near the core count.
workers = _env_int("GUNICORN_WORKERS", multiprocessing.cpu_count() + 1)
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# ── Timeouts ─────────────────────────────────────────────
timeout = _env_int("GUNICORN_TIMEOUT", max(60, gateway_budget_seconds() + 30))
# Long enough for an in-flight webhook to finish its gateway read.
graceful_timeout = _env_int("GUNICORN_GRACEFUL_TIMEOUT", gateway_budget_seconds())
keepalive = _env_int("GUNICORN_KEEPALIVE", 5)

# ── Request limits ───────────────────────────────────────
max_requests = _env_int("GUNICORN_MAX_REQUESTS", 1000)
max_requests_jitter = _env_int("GUNICORN_MAX_REQUESTS_JITTER", 50)

# ── Preloading ───────────────────────────────────────────
preload_app = os.getenv("GUNICORN_PRELOAD", "false").lower() == "true"

# ── Logging ──────────────────────────────────────────────
accesslog = os.getenv("GUNICORN_ACCESSLOG", "-")
errorlog = os.getenv("GUNICORN_ERRORLOG", "-")
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)s "%(a)s"'

# ── Process naming ───────────────────────────────────────
proc_name = "partner-billing"


def post_fork(server, worker) -> None:
    """Drop database connections inherited from a preloaded master."""
    if not preload_app:
        return
    from app.db import SessionLocal

    SessionLocal.kw["bind"].dispose(close=False)
    server.log.info("Worker %s reset its database pool", worker.pid)
