"""
Production Server Configuration

Run the Inventory Sync API with Uvicorn workers under Gunicorn.
Chunk requests can carry several thousand variants and finish with a full
metric recomputation, so the worker timeout is longer than a typical API's.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"{os.getenv('API_HOST', '0.0.0.0')}:{os.getenv('API_PORT', '8000')}")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = int(os.getenv("WORKER_TIMEOUT", 300))
keepalive = 5
graceful_timeout = 60

# Process naming
proc_name = "inventory-sync-api"

# Server mechanics
daemon = False
pidfile = os.getenv("PIDFILE", "/tmp/inventory-sync.pid")
tmp_upload_dir = None

# Logging (application logs go through structlog on stdout)
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sus "%({x-request-id}o)s"'


def when_ready(server):
    server.log.info("Inventory Sync API ready on %s with %s workers", bind, workers)


def worker_abort(worker):
    """Called when a worker times out, usually a very large chunk."""
    worker.log.warning("Worker %s aborted after %ss timeout", worker.pid, timeout)
