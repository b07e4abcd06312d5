"""
Command-line parsing for Relaunch.

    relaunch [options] <program> [args...]

Everything after the program name is passed to the child untouched, so
the program's own flags never collide with ours:

    relaunch server.js --port 3000
    relaunch --exec python --extensions py app.py --debug
"""

import argparse
from pathlib import Path

from relaunch import __version__
from relaunch.core.config import (
    BACKEND_CHOICES,
    BackendName,
    DEFAULT_COMMAND,
    DEFAULT_EXTENSIONS,
    POLL_INTERVAL_MS,
    SupervisorConfig,
    normalize_extensions,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relaunch",
        description="Run a program, restart it when its source changes, "
                    "and report crashes found in its stderr.",
    )
    parser.add_argument(
        "--exec", dest="command", default=DEFAULT_COMMAND, metavar="CMD",
        help=f"interpreter used to run the program (default: {DEFAULT_COMMAND}; "
             "pass an empty string to run the program directly)",
    )
    parser.add_argument(
        "--watch", dest="watch_root", type=Path, default=None, metavar="DIR",
        help="directory to watch (default: the current directory at each start)",
    )
    parser.add_argument(
        "--extensions", default=",".join(DEFAULT_EXTENSIONS), metavar="LIST",
        help="comma-separated file extensions to watch (default: %(default)s)",
    )
    parser.add_argument(
        "--ignore", default="", metavar="LIST",
        help="comma-separated directory names to skip, e.g. node_modules,.git",
    )
    parser.add_argument(
        "--poll-interval", type=int, default=POLL_INTERVAL_MS, metavar="MS",
        help="milliseconds between polls of each file (default: %(default)s)",
    )
    parser.add_argument(
        "--backend", choices=BACKEND_CHOICES, default=BackendName.POLL,
        help="how files are watched (default: %(default)s)",
    )
    parser.add_argument(
        "--no-notify", dest="notify", action="store_false",
        help="don't show desktop notifications",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="log watch and state-machine details",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "program", nargs=argparse.REMAINDER,
        help="program to run, followed by its own arguments",
    )
    return parser


def parse_args(argv: list[str] | None = None,
               parser: argparse.ArgumentParser | None = None) -> SupervisorConfig | None:
    """
    Parse argv into a SupervisorConfig.

    Returns None when no program was given; the caller prints usage
    and does nothing else in that case.
    """
    parser = parser or build_parser()
    args = parser.parse_args(argv)

    if not args.program:
        return None
    if args.poll_interval <= 0:
        parser.error("--poll-interval must be a positive number of milliseconds")

    # With --exec "" the program itself is the command.
    if args.command:
        command, arguments = args.command, list(args.program)
    else:
        command, arguments = args.program[0], list(args.program[1:])

    return SupervisorConfig(
        command=command,
        arguments=arguments,
        watch_root=args.watch_root,
        extensions=normalize_extensions(args.extensions) or DEFAULT_EXTENSIONS,
        ignore=tuple(name.strip() for name in args.ignore.split(",") if name.strip()),
        poll_interval_ms=args.poll_interval,
        backend=args.backend,
        notify=args.notify,
        verbose=args.verbose,
    )
