"""
Logging for sparkcluster.

Every module logs under the ``sparkcluster`` logger. The CLI reconfigures it
once per invocation from ``-v`` or the ``logging`` config section.
"""
import logging
import sys
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "sparkcluster"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console: bool = True
) -> logging.Logger:
    """
    (Re)configure the sparkcluster logger.

    Handlers from a previous call are replaced, so calling this again with
    new settings never duplicates output. Console output goes to stdout so
    it interleaves with the status report and tailed container logs.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the sparkcluster namespace."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(ROOT_LOGGER).getChild(name)


logger = setup_logging()
