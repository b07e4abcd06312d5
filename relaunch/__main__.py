"""
Command-line entry point for Relaunch.

Invoked via the `relaunch` console script or:
    python -m relaunch [options] <program> [args...]

It parses the command line, sets up console logging, creates the Qt
application and a RelaunchSession, starts the first child and then
hands control to the Qt event loop until Ctrl+C (or a fatal spawn
failure) ends the session.
"""

import logging
import signal
import sys

from PySide6.QtCore import QTimer

from relaunch.app import RelaunchSession, create_application
from relaunch.cli import build_parser, parse_args
from relaunch.core.supervisor import SpawnError
from relaunch.logging_utils import configure_logging


logger = logging.getLogger("relaunch")


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    config = parse_args(argv, parser)
    if config is None:
        # Nothing to supervise: show how to use the tool and do nothing else.
        parser.print_help()
        return 0

    configure_logging(config.verbose)
    # Only the program name: options after it belong to the child, and Qt
    # would act on ones like -platform or -reverse.
    app = create_application(config, [sys.argv[0]])
    session = RelaunchSession(config)

    try:
        session.start()
    except SpawnError as e:
        logger.critical("%s", e)
        session.shutdown()
        return 1

    # A start that fails later (after a change or restart) is just as fatal.
    session.supervisor.spawn_failed.connect(lambda _msg: app.exit(1))
    app.aboutToQuit.connect(session.shutdown)

    # Qt's event loop doesn't give Python a chance to run signal handlers,
    # so a cheap timer wakes the interpreter up regularly for Ctrl+C.
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(200)

    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
