"""
ASGI Entry Point for the kot-archive API.

This module exposes the `app` object required by ASGI servers (Uvicorn/Gunicorn).
It loads environment variables from `.env` before the application factory runs
so that `KOT_STORAGE_BACKEND` / `KOT_ARCHIVE_DIR` are honoured.

Usage
-----
Run via the module entry point:
    $ python -m kotarchive.api.server

Or via uvicorn directly:
    $ uvicorn kotarchive.api.server:app --reload
"""

from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from kotarchive.api.app import create_app

# --------------------------------------------------------------------------- #
# Environment Setup
# --------------------------------------------------------------------------- #

env_path = Path(".env")
load_dotenv(dotenv_path=env_path)

# Factory invocation
app = create_app()


def main() -> None:
    """Run the API server locally for development."""
    from kotarchive.core.settings import load_settings

    cfg = load_settings()
    print(f"{'[ Archive Store ]':=^60}")
    print(f"{'backend':<20} : {cfg.storage_backend}")
    print(f"{'archive_dir':<20} : {cfg.archive_dir}")
    retention = f"{cfg.archive_retention_days}d / {cfg.archive_max_per_type} per type"
    print(f"{'retention':<20} : {retention}")
    print(f"{'='*60}\n")

    uvicorn.run(
        "kotarchive.api.server:app",
        host="0.0.0.0",
        port=8000,
        reload=cfg.is_dev,
        log_level=cfg.log_level.lower(),
    )


if __name__ == "__main__":
    main()
