#!/usr/bin/env python3
"""
Notification Relay Runner
=========================

Run the relay API or the consumer worker.

Usage:
    python run_app.py                    # API server (default)
    python run_app.py --mode api         # API server
    python run_app.py --mode worker      # Consumer worker
    python run_app.py --mode dev         # API with auto-reload
    python run_app.py --port 3001        # Custom port
    python run_app.py --host 127.0.0.1   # Custom host
"""

import argparse
import asyncio
import sys

from relay.core.config import get_settings
from relay.core.database import Database


def print_banner():
    """Print application banner"""
    banner = """
╔═══════════════════════════════════════════════════════╗
║                  Notification Relay                   ║
╚═══════════════════════════════════════════════════════╝
    """
    print(banner)


async def check_database(settings) -> bool:
    """Make sure the store is reachable before serving"""
    database = Database(settings)
    try:
        return await database.ping()
    finally:
        await database.close()


def run_api(host: str, port: int, reload: bool) -> int:
    """Run the FastAPI application"""
    settings = get_settings()
    if not asyncio.run(check_database(settings)):
        print("Database is unreachable, not starting the API")
        return 1

    print(f"\nStarting API on {host}:{port}")
    print(f"API Docs: http://{host}:{port}/api-docs")
    print("\n" + "=" * 50)

    import uvicorn
    uvicorn.run(
        "relay.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )
    return 0


def run_worker() -> int:
    """Run the consumer worker until SIGINT/SIGTERM"""
    from relay.core.logging import setup_logging
    from relay.worker import run_worker as run

    settings = get_settings()
    setup_logging(settings, process_name="worker")
    return asyncio.run(run(settings))


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Notification Relay Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--mode",
        choices=["api", "dev", "worker"],
        default="api",
        help="What to run (default: api)"
    )
    parser.add_argument(
        "--host",
        default=settings.HOST,
        help=f"Host to bind to (default: {settings.HOST})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help=f"Port to bind to (default: {settings.PORT})"
    )

    args = parser.parse_args()

    print_banner()

    if args.mode == "worker":
        return run_worker()
    return run_api(args.host, args.port, reload=args.mode == "dev")


if __name__ == "__main__":
    sys.exit(main())
