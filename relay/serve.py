"""Launch script for running the relay under Uvicorn."""

from __future__ import annotations

import logging
import os

import uvicorn

from relay.core.config import get_settings

logger = logging.getLogger("relay.launcher")


def main() -> None:
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.port))
    logger.debug("Starting relay on port %s", port)
    uvicorn.run("relay.main:app", host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
