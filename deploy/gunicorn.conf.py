"""Gunicorn settings for serving Trackbit behind a reverse proxy.

Run with:
    gunicorn -c deploy/gunicorn.conf.py 'trackbit.serve:create_app_from_env()'
"""

import os

# gunicorn supervises, uvicorn workers speak ASGI
worker_class = "uvicorn.workers.UvicornWorker"

# Rate limit counters are per worker: the effective limit scales with this.
workers = int(os.environ.get("TRACKBIT_WORKERS", "2"))

bind = f"127.0.0.1:{os.environ.get('TRACKBIT_PORT', '8000')}"

# Every worker runs init_db() itself; schema creation is idempotent.
preload_app = False

# bcrypt hashing on sign-up is slow on small hosts
timeout = 60
graceful_timeout = 20

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("TRACKBIT_LOG_LEVEL", "info")
