"""Gunicorn configuration for container deployment.

Launch with::

    gunicorn neural_seed.main:app -c gunicorn.conf.py

- Several async workers are safe: handlers are stateless and every worker
  shares conversation state, rate limits and usage through the store
- Worker recycling to prevent memory leaks over long runs
- Keep-alive matched to the ingress (typically 60s)
"""

import os

# --- Server ---
bind = os.environ.get("BIND", "0.0.0.0:8000")

# --- Workers ---
workers = int(os.environ.get("WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"

# --- Timeouts ---
# Backend calls are retried with backoff; leave room above the request timeout
timeout = 180
graceful_timeout = 30  # Grace period on SIGTERM
keepalive = 65

# --- Worker recycling ---
max_requests = 5000
max_requests_jitter = 500

# --- Logging ---
accesslog = "-"  # stdout
loglevel = os.environ.get("LOG_LEVEL", "info")
