"""Run the tracking API with uvicorn."""

from __future__ import annotations

import logging
import os

import uvicorn

from .app import create_app


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("PRODUCTION_TRACKING_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )
    app = create_app(
        os.environ.get("PRODUCTION_TRACKING_DB", "production_tracking.sqlite3"),
        seed_demo=True,
    )
    uvicorn.run(
        app,
        host=os.environ.get("PRODUCTION_TRACKING_HOST", "127.0.0.1"),
        port=int(os.environ.get("PRODUCTION_TRACKING_PORT", "8000")),
    )


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
