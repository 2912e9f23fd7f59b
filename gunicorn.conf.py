"""
Gunicorn configuration for the clan hub API.

Env vars that override defaults:
  PORT      TCP port to bind
  WORKERS   number of worker processes (default: 1)
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Upload task status is held in process memory, so a status poll must reach
# the worker that accepted the upload. Keep one worker unless a shared
# status store is added.
workers = int(os.environ.get("WORKERS", "1"))

worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

timeout = 120

loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
