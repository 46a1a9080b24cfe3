from __future__ import annotations

import logging
import os

from sustainwatch.infra.tenant import get_actor_id, get_tenant_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s [tenant=%(tenant_id)s actor=%(actor_id)s]"
ROOT_LOGGER_NAME = "sustainwatch"


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = get_tenant_id() or "-"
        record.actor_id = get_actor_id() or "-"
        return True


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure the package logger once; later calls only adjust the level."""
    numeric_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(numeric_level)

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(numeric_level)
        handler.addFilter(RequestContextFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    else:
        for handler in root.handlers:
            handler.setLevel(numeric_level)

    return root
