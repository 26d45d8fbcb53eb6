"""Logging applicatif : loggers nommés sous le namespace ``almacen``."""

from __future__ import annotations

import logging

_LOGGER_PREFIX = "almacen"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(level: str | int = "INFO") -> None:
    """
    Installe un handler console unique sur le logger racine ``almacen``.
    Appelable plusieurs fois (rechargement uvicorn, tests) sans doubler les lignes.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    if not any(getattr(h, "_almacen", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._almacen = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.propagate = False
