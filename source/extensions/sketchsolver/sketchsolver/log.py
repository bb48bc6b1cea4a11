"""Package logger for sketchsolver."""

import logging

LOGGER_NAME = "sketchsolver"

logger = logging.getLogger(LOGGER_NAME)

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(name)s] %(levelname)s: %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

logger.setLevel(logging.INFO)


def set_debug(enabled: bool) -> None:
    """Toggle per-iteration solver tracing."""
    logger.setLevel(logging.DEBUG if enabled else logging.INFO)
