"""Logging helpers for privacy-stack."""

from __future__ import annotations

import logging
import sys
from typing import Optional

ROOT_LOGGER = "privacy_stack"


def _build_formatter() -> logging.Formatter:
    return logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Attach a console handler to the ``privacy_stack`` logger.

    Repeated calls only adjust the level, so tests and the CLI can both call it.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_build_formatter())
        logger.addHandler(handler)

    logger.debug("Logging initialized")
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a namespaced logger under the ``privacy_stack`` hierarchy."""

    base = logging.getLogger(ROOT_LOGGER)
    if not name:
        return base
    if name.startswith(ROOT_LOGGER + "."):
        name = name[len(ROOT_LOGGER) + 1:]
    return base.getChild(name)
