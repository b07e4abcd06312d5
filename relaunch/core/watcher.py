"""
Watched-file discovery and the FileWatchSet.

The FileWatchSet is the supervisor's view of the source tree. Each
rebuild throws the previous snapshot away (every subscription is
cancelled and the file list cleared), then walks the watch root again
and subscribes to every tracked file it finds. There's no incremental
diffing: a rebuild happens once per child start, and a fresh walk is
the simplest way to pick up files that were added or removed while the
previous child was running.

Change detection is metadata-only. A file counts as changed when
either its modification time or its metadata-change time (ctime) moves;
contents are never read. How often (or on what event) a file gets
re-checked is up to the backend; see relaunch.core.backends.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from PySide6.QtCore import QObject, Signal

from relaunch.core.config import DEFAULT_EXTENSIONS


logger = logging.getLogger(__name__)


def read_metadata(path: str) -> tuple[int, int]:
    """
    Return (modified_ns, changed_ns) for path.

    A file that no longer exists reads as (0, 0), so a deletion looks
    like a change to whoever recorded the previous timestamps.
    """
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return (0, 0)
    return (st.st_mtime_ns, st.st_ctime_ns)


@dataclass
class WatchedFile:
    """One tracked file and the timestamps it had when last checked."""
    path: str            # Absolute, symlink-free path
    modified_ns: int     # st_mtime_ns
    changed_ns: int      # st_ctime_ns, metadata-change time

    @classmethod
    def from_path(cls, path: str) -> "WatchedFile":
        modified_ns, changed_ns = read_metadata(path)
        return cls(path=path, modified_ns=modified_ns, changed_ns=changed_ns)

    def refresh(self) -> bool:
        """
        Re-read the timestamps and record them.

        Returns True when either timestamp differs from the recorded
        pair. Identical timestamps are not a change, so polling a quiet
        file never produces an event.
        """
        current = read_metadata(self.path)
        if current == (self.modified_ns, self.changed_ns):
            return False
        self.modified_ns, self.changed_ns = current
        return True


# Signature backends use to report a change back to the watch set.
ChangeCallback = Callable[[WatchedFile], None]


def discover_files(root: Path | str,
                   extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
                   ignore: tuple[str, ...] = ()) -> list[WatchedFile]:
    """
    Recursively collect every tracked file under root.

    Directories are resolved to their real path before descending, and
    each real directory is visited once, so symlinked aliases don't
    produce duplicates and symlink cycles can't loop forever. Files are
    recorded by real path too. The result is sorted by path.
    """
    extensions = tuple(ext.lower() for ext in extensions)
    ignored = set(ignore)
    visited: set[str] = set()
    found: dict[str, WatchedFile] = {}

    pending = [os.path.realpath(root)]
    while pending:
        directory = pending.pop()
        if directory in visited:
            continue
        visited.add(directory)

        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            # Directories can vanish or be unreadable mid-walk; skip them.
            logger.debug("Skipping %s: %s", directory, e)
            continue

        for entry in entries:
            try:
                if entry.is_dir():
                    if entry.name in ignored:
                        continue
                    pending.append(os.path.realpath(entry.path))
                elif entry.is_file() and entry.name.lower().endswith(extensions):
                    real = os.path.realpath(entry.path)
                    if real not in found:
                        found[real] = WatchedFile.from_path(real)
            except OSError as e:
                logger.debug("Skipping %s: %s", entry.path, e)

    return [found[path] for path in sorted(found)]


class FileWatchSet(QObject):
    """
    The set of files being watched and their live subscriptions.

    Signals:
        changed(WatchedFile): emitted when a watched file's timestamps move.

    The backend does the actual watching; this class only decides which
    files are watched and guarantees that after rebuild() the active
    subscriptions are exactly the files from the latest walk.
    """

    changed = Signal(object)

    def __init__(self, backend, extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
                 ignore: tuple[str, ...] = (), parent: QObject | None = None):
        super().__init__(parent)
        self._backend = backend
        self._extensions = extensions
        self._ignore = ignore
        self._root: Path | None = None
        self._files: list[WatchedFile] = []
        self._subscriptions = []

    @property
    def root(self) -> Path | None:
        return self._root

    @property
    def files(self) -> tuple[WatchedFile, ...]:
        return tuple(self._files)

    @property
    def subscriptions(self) -> tuple:
        return tuple(self._subscriptions)

    def rebuild(self, root: Path | str) -> list[WatchedFile]:
        """Drop every existing watch, walk root again and watch what's there."""
        self.clear()
        self._root = Path(os.path.realpath(root))
        self._files = discover_files(self._root, self._extensions, self._ignore)
        for watched in self._files:
            self._subscriptions.append(
                self._backend.subscribe(watched, self._emit_changed)
            )
        logger.debug("Watching %d file(s) under %s", len(self._files), self._root)
        return list(self._files)

    def clear(self) -> None:
        """Cancel every subscription and forget the tracked files."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
        self._files = []

    def close(self) -> None:
        """Stop watching for good, including any backend threads."""
        self.clear()
        self._backend.close()

    def display_name(self, watched: WatchedFile) -> str:
        """Path of watched relative to the watch root, for messages."""
        if self._root is None:
            return watched.path
        try:
            return Path(watched.path).relative_to(self._root).as_posix()
        except ValueError:
            return watched.path

    def _emit_changed(self, watched: WatchedFile) -> None:
        logger.debug("Change detected: %s", watched.path)
        self.changed.emit(watched)

