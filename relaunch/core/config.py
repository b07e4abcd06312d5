"""
Supervisor configuration for Relaunch.

This module holds the defaults the rest of the package is built around
and the SupervisorConfig dataclass that the command line fills in. The
supervisor, the watch set and the backend factory all read their knobs
from a SupervisorConfig instance, so nothing below the CLI has to know
about argparse.

Defaults mirror the classic Node.js development supervisor:
    - the target is run with `node`
    - only `.js` files are tracked
    - each tracked file is polled every 500 ms
    - the watch root is the current working directory at each start
"""

from dataclasses import dataclass, field
from pathlib import Path


# Title used for lifecycle notifications when the caller doesn't give one.
APP_TITLE = "Relaunch"

# Interpreter used to run the target program unless --exec overrides it.
DEFAULT_COMMAND = "node"

# Only files ending in one of these suffixes are watched.
DEFAULT_EXTENSIONS = (".js",)

# Interval between metadata polls for each watched file.
POLL_INTERVAL_MS = 500


class BackendName:
    """
    String constants naming the available watch backends.

    Kept as plain strings (rather than an enum) so they can be used
    directly as argparse choices and compared without .value access.
    """
    POLL = "poll"
    WATCHFILES = "watchfiles"


BACKEND_CHOICES = [BackendName.POLL, BackendName.WATCHFILES]


def normalize_extensions(raw: str) -> tuple[str, ...]:
    """
    Turn a comma-separated extension list into dotted, lowercase suffixes.

    "js, .mjs,TS" -> (".js", ".mjs", ".ts"). Empty items are dropped.
    """
    extensions = []
    for item in raw.split(","):
        item = item.strip().lower()
        if not item:
            continue
        if not item.startswith("."):
            item = "." + item
        extensions.append(item)
    return tuple(extensions)


@dataclass
class SupervisorConfig:
    """
    Everything the supervisor needs to run one target program.

    command and arguments together form the child's command line; for
    the default setup that is ["node", "app.js", ...].
    """
    command: str
    arguments: list[str] = field(default_factory=list)
    watch_root: Path | None = None     # None means "cwd at each start()"
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    ignore: tuple[str, ...] = ()       # Directory names skipped while walking
    poll_interval_ms: int = POLL_INTERVAL_MS
    backend: str = BackendName.POLL
    notify: bool = True
    verbose: bool = False

    def resolve_watch_root(self) -> Path:
        """Return the directory to walk right now."""
        if self.watch_root is not None:
            return Path(self.watch_root).resolve()
        return Path.cwd().resolve()
