from __future__ import annotations

import logging
import os

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"
LEVEL_ENV_VAR = "ABMSTUDIO_LOG_LEVEL"


def configure_logging(level: str | None = None, include_uvicorn: bool = True) -> logging.Logger:
    """Configure root logging once for the CLI and the server.

    ``level`` falls back to ``ABMSTUDIO_LOG_LEVEL`` and then INFO.
    """
    resolved_level = (level if level is not None else os.getenv(LEVEL_ENV_VAR) or "INFO").upper()
    logging.basicConfig(level=resolved_level, format=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT)

    app_logger = logging.getLogger("abmstudio")
    app_logger.setLevel(resolved_level)
    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            logging.getLogger(name).setLevel(resolved_level)
    app_logger.debug("Logging configured at %s", resolved_level)
    return app_logger
