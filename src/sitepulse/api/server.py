"""
ASGI Entry Point for the sitepulse gateway.

This module exposes the `app` object required by ASGI servers (Uvicorn).
It loads environment variables from `.env` before the application factory
runs, so `Settings` sees them on first (cached) load.

Usage
-----
Run via the module entry point:
    $ python -m sitepulse.api.server

Or via uvicorn directly:
    $ uvicorn sitepulse.api.server:app --reload
"""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from sitepulse.api.app import create_app

# --------------------------------------------------------------------------- #
# Environment Setup
# --------------------------------------------------------------------------- #

env_path = Path(".env")
load_dotenv(dotenv_path=env_path)

# Factory invocation
app = create_app()


def main(host: str | None = None, port: int | None = None, reload: bool = False) -> None:
    """Run the gateway with uvicorn."""
    uvicorn.run(
        "sitepulse.api.server:app",
        host=host or os.getenv("HOST", "0.0.0.0"),
        port=port or int(os.getenv("PORT", "8000")),
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
