#!/usr/bin/env python
"""
Server Entry Point

Starts the Inventory Sync API.
Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py

    Or with Gunicorn:
    gunicorn inventory_sync.main:app -c gunicorn.conf.py
"""

import argparse
import os
import subprocess

from inventory_sync.config import get_settings


def run_dev_server(port: int):
    """Run development server with auto-reload."""
    import uvicorn

    uvicorn.run(
        "inventory_sync.main:app",
        host="127.0.0.1",
        port=port,
        reload=True,
        reload_dirs=["inventory_sync"],
        log_level="debug",
        access_log=True,
    )


def run_prod_server(port: int):
    """Run production server with Uvicorn directly."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "inventory_sync.main:app",
        host=settings.api_host,
        port=port,
        workers=int(os.getenv("WORKERS", 4)),
        log_level=settings.monitoring.log_level.lower(),
        access_log=True,
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


def run_gunicorn():
    """Run with Gunicorn (recommended for production)."""
    subprocess.run(["gunicorn", "inventory_sync.main:app", "-c", "gunicorn.conf.py"], check=True)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inventory Sync API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--gunicorn", action="store_true", help="Run with Gunicorn (production)")
    parser.add_argument("--port", type=int, default=None, help="Port to run on (default: API_PORT)")

    args = parser.parse_args()
    port = args.port or get_settings().api_port
    os.environ["API_PORT"] = str(port)

    if args.dev:
        print(f"🚀 Starting development server on port {port}...")
        run_dev_server(port)
    elif args.gunicorn:
        print(f"🚀 Starting production server with Gunicorn on port {port}...")
        run_gunicorn()
    else:
        print(f"🚀 Starting production server with Uvicorn on port {port}...")
        run_prod_server(port)
