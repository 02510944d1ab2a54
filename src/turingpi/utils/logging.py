"""Logging setup for the CLI and library callers."""

import logging
import sys
from typing import Iterable

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every HTTP round trip to the docker daemon
NOISY_LOGGERS = ("asyncio", "docker", "urllib3")


def setup_logging(level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS):
    """Route log records to stderr at ``level``.

    Loggers named in ``quiet`` are capped at WARNING unless DEBUG is requested.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    if log_level > logging.DEBUG:
        for name in quiet:
            logging.getLogger(name).setLevel(logging.WARNING)
