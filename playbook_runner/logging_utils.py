from __future__ import annotations

import logging
from typing import Final, Optional

LOGGER_NAME: Final[str] = "playbook_runner"
RESULTS_LOGGER_NAME: Final[str] = "playbook_runner.results"


def get_logger(name: str = LOGGER_NAME, level: int = logging.INFO) -> logging.Logger:
    """Return a shared logger that writes timestamped lines to stderr."""

    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s %(message)s", "%Y-%m-%d %H:%M:%S"
            )
        )
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def log_section(logger: logging.Logger, header: str, content: Optional[str] = None) -> None:
    logger.info(header)
    if content:
        for line in content.splitlines():
            logger.info("\t%s", line)


__all__ = ["LOGGER_NAME", "RESULTS_LOGGER_NAME", "get_logger", "log_section"]
