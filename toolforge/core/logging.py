from __future__ import annotations

import logging
import sys

from toolforge.core.config import get_settings


_LOG_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s %(message)s"
_configured = False


def configure_logging() -> None:
    # Install a single stdout handler once so repeated app factories do not duplicate lines.
    global _configured
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    # Keep SQL echo quiet unless explicitly debugging.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
