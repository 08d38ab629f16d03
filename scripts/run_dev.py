#!/usr/bin/env python3
"""
Development server runner for the Imprint API
Checks configuration and the record store before starting uvicorn with reload
"""

import os
import sys
from pathlib import Path

import uvicorn

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from imprint import config


def check_environment():
    """Show the effective configuration; Postgres needs a DSN."""
    optional_vars = [
        "IMPRINT_RECORD_STORE",
        "IMPRINT_SIMILARITY_THRESHOLD",
        "IMPRINT_ACTION_WINDOW_SECONDS",
        "IMPRINT_PERCEPTUAL_WORKERS",
        "API_HOST",
        "API_PORT",
        "DEBUG",
    ]

    if config.RECORD_STORE == "postgres" and not (os.getenv("IMPRINT_DB_DSN") or os.getenv("DB_DSN")):
        print("❌ IMPRINT_DB_DSN is not set (or use IMPRINT_RECORD_STORE=memory)")
        return False

    print("📋 Configuration:")
    for var in optional_vars:
        print(f"  {var}: {os.getenv(var, 'Not set')}")
    return True


def check_record_store():
    from imprint.core.database import create_record_store

    store = create_record_store()
    try:
        return store.check_connection()
    finally:
        store.close()


def main():
    """Main entry point for development server."""
    print("Imprint - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if check_record_store():
        print(f"✅ Record store ({config.RECORD_STORE}) reachable")
    else:
        print(f"❌ Record store ({config.RECORD_STORE}) unreachable")
        sys.exit(1)

    print(f"\n🚀 Starting development server on http://{config.API_HOST}:{config.API_PORT} (docs at /docs)")
    print("=" * 50)

    try:
        uvicorn.run(
            "imprint.main:app",
            host=config.API_HOST,
            port=config.API_PORT,
            reload=True,
            log_level="debug" if config.DEBUG else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")


if __name__ == "__main__":
    main()
