"""
Console logging setup for Relaunch.

All modules log through `logging.getLogger(__name__)`, which puts them
under the "relaunch" logger. configure_logging() attaches one stream
handler to that logger, so lifecycle lines look like:

    [relaunch] 14:02:11 INFO   Restarting: File modified: app.js
    [relaunch] 14:02:15 ERROR  TypeError: x is not a function (app.js:10:5)

Lines go to stdout, next to the child's own output, so the restart and
crash markers show up in the same place as the program's logs.
"""

import logging
import sys

__all__ = ["configure_logging", "LOGGER_NAME"]

LOGGER_NAME = "relaunch"

_FORMAT = "[relaunch] %(asctime)s %(levelname)-6s %(message)s"
_DATE_FORMAT = "%H:%M:%S"


def configure_logging(verbose: bool = False, stream=None) -> logging.Logger:
    """
    Configure and return the package logger.

    Safe to call more than once: the existing handler is reused (and
    pointed at the new level) instead of adding a duplicate.

    Args:
        verbose: Show debug lines (watch counts, state transitions).
        stream:  Where to write. Defaults to sys.stdout.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in logger.handlers:
        if getattr(handler, "_relaunch_console", False):
            handler.setLevel(level)
            return logger

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT, _DATE_FORMAT))
    handler._relaunch_console = True
    logger.addHandler(handler)
    return logger
