from __future__ import annotations

import logging
import os
import sys

from ..middleware.request_context import RequestIdLogFilter

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] | %(message)s"


def configure_logging(default_level: str = "INFO") -> logging.Logger:
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdLogFilter())
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler])
    return logging.getLogger("schedulescan")


__all__ = ["LOG_FORMAT", "configure_logging"]
