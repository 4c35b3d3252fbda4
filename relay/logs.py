"""Logging setup for the ``relay.*`` logger tree.

Modules log through ``logging.getLogger(__name__)``; ``setup_logging`` is
called once per dispatcher construction and attaches a single stream handler
to the ``relay`` root logger using the ``logging`` config section.
"""
from __future__ import annotations

import json
import logging

_ROOT = "relay"
_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data = {
            "ts": record.created,
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def setup_logging(level: str = "info", fmt: str = "text") -> logging.Logger:
    root = logging.getLogger(_ROOT)
    if not root.handlers:
        h = logging.StreamHandler()
        if fmt == "json":
            h.setFormatter(_JsonFormatter())
        else:
            h.setFormatter(
                logging.Formatter(
                    "[RELAY] %(levelname)s %(name)s: %(message)s"
                )
            )
        root.addHandler(h)
    root.setLevel(_LEVELS.get(level, logging.INFO))
    return root


__all__ = ["setup_logging"]
