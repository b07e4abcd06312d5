"""
Watch backends for the FileWatchSet.

A backend turns "tell me when this file changes" into actual watching.
Both backends expose the same two calls, so the watch set and the
supervisor never know which one is active:

    subscribe(watched, callback) -> subscription   (with .cancel(), .active)
    close()

PollingBackend (default)
    One QTimer per file. Every tick re-reads the file's timestamps and
    calls back when they moved. Works everywhere, including network
    mounts and containers where native file events are unreliable.

WatchfilesBackend
    Uses the `watchfiles` library (a Rust-based native watcher) on a
    background QThread. Reported paths still go through the same
    timestamp comparison on the main thread, so a native event that
    didn't actually change mtime/ctime doesn't trigger a restart.

Both run their callbacks on the Qt main thread.
"""

import logging
import os
import threading

from PySide6.QtCore import QObject, QThread, QTimer, Signal
from watchfiles import watch

from relaunch.core.config import BackendName, POLL_INTERVAL_MS
from relaunch.core.watcher import ChangeCallback, WatchedFile


logger = logging.getLogger(__name__)

# Delay before restarting a watchfiles thread that stopped with an error.
_RETRY_MS = 1000


class PollingSubscription(QObject):
    """Polls one file on a fixed interval until cancelled."""

    def __init__(self, watched: WatchedFile, callback: ChangeCallback,
                 interval_ms: int, parent: QObject | None = None):
        super().__init__(parent)
        self._watched = watched
        self._callback = callback
        self._active = True
        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self.check)
        self._timer.start()

    @property
    def watched(self) -> WatchedFile:
        return self._watched

    @property
    def active(self) -> bool:
        return self._active

    def check(self) -> bool:
        """Run one poll now. Returns True if a change was reported."""
        if not self._active or not self._watched.refresh():
            return False
        self._callback(self._watched)
        return True

    def cancel(self) -> None:
        # cancel() can run from inside our own callback (a change that
        # triggers a rebuild), so the object is only scheduled for deletion.
        if not self._active:
            return
        self._active = False
        self._timer.stop()
        self.deleteLater()


class PollingBackend(QObject):
    """Metadata polling: one timer per watched file."""

    def __init__(self, interval_ms: int = POLL_INTERVAL_MS,
                 parent: QObject | None = None):
        super().__init__(parent)
        self._interval_ms = interval_ms

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    def subscribe(self, watched: WatchedFile,
                  callback: ChangeCallback) -> PollingSubscription:
        return PollingSubscription(watched, callback, self._interval_ms, self)

    def close(self) -> None:
        # Timers belong to their subscriptions; nothing shared to stop.
        pass


class _WatchThread(QThread):
    """
    Runs watchfiles.watch() off the main thread.

    The thread never touches a WatchedFile; it only reports raw paths
    through the `changes` signal, which Qt delivers on the main thread.
    If watch() gives up (a watched directory was removed, say) the error
    is reported through `failed` instead of ending the thread silently.
    """

    changes = Signal(list)
    failed = Signal(str)

    def __init__(self, directories: list[str], paths: frozenset[str],
                 debounce_ms: int, force_polling: bool | None, poll_delay_ms: int):
        super().__init__()
        self._directories = directories
        self._paths = paths
        self._debounce_ms = debounce_ms
        self._force_polling = force_polling
        self._poll_delay_ms = poll_delay_ms
        self._stop_event = threading.Event()

    def _filter(self, _change, path: str) -> bool:
        return path in self._paths

    def run(self):
        try:
            for batch in watch(
                *self._directories,
                watch_filter=self._filter,
                debounce=self._debounce_ms,
                stop_event=self._stop_event,
                recursive=False,
                force_polling=self._force_polling,
                poll_delay_ms=self._poll_delay_ms,
            ):
                self.changes.emit(sorted({path for _change, path in batch}))
        except Exception as e:
            logger.warning("watchfiles stopped: %s", e)
            self.failed.emit(str(e))

    def stop(self) -> None:
        self._stop_event.set()
        self.wait()


class WatchfilesSubscription:
    """Handle for one file registered with a WatchfilesBackend."""

    def __init__(self, backend: "WatchfilesBackend", watched: WatchedFile,
                 callback: ChangeCallback):
        self._backend = backend
        self.watched = watched
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._backend._unsubscribe(self)


class WatchfilesBackend(QObject):
    """
    Native file events via watchfiles.

    The parent directories of all subscribed files are watched
    non-recursively by a single thread. Subscribing or cancelling only
    schedules a restart of that thread; a zero-delay timer coalesces a
    whole rebuild (N cancels + N subscribes) into one restart.

    When the thread fails, every subscribed file is re-checked (a removed
    directory usually means removed files) and the thread is restarted
    after a short delay over the directories that still exist.
    """

    def __init__(self, debounce_ms: int = 200, force_polling: bool | None = None,
                 poll_delay_ms: int = 300, parent: QObject | None = None):
        super().__init__(parent)
        self._debounce_ms = debounce_ms
        self._force_polling = force_polling
        self._poll_delay_ms = poll_delay_ms
        self._subscriptions: dict[str, WatchfilesSubscription] = {}
        self._thread: _WatchThread | None = None

        self._restart_timer = QTimer(self)
        self._restart_timer.setSingleShot(True)
        self._restart_timer.setInterval(0)
        self._restart_timer.timeout.connect(self._restart_thread)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.isRunning()

    def subscribe(self, watched: WatchedFile,
                  callback: ChangeCallback) -> WatchfilesSubscription:
        subscription = WatchfilesSubscription(self, watched, callback)
        self._subscriptions[watched.path] = subscription
        self._restart_timer.start(0)
        return subscription

    def close(self) -> None:
        self._restart_timer.stop()
        for subscription in list(self._subscriptions.values()):
            subscription._active = False
        self._subscriptions.clear()
        self._stop_thread()

    def _unsubscribe(self, subscription: WatchfilesSubscription) -> None:
        if self._subscriptions.get(subscription.watched.path) is subscription:
            del self._subscriptions[subscription.watched.path]
        self._restart_timer.start(0)

    def _stop_thread(self) -> None:
        if self._thread is None:
            return
        self._thread.changes.disconnect(self._dispatch)
        self._thread.failed.disconnect(self._on_thread_failed)
        self._thread.stop()
        self._thread.deleteLater()
        self._thread = None

    def _restart_thread(self) -> None:
        self._stop_thread()
        if not self._subscriptions:
            return
        paths = frozenset(self._subscriptions)
        directories = sorted(
            directory for directory in {os.path.dirname(path) for path in paths}
            if os.path.isdir(directory)
        )
        if not directories:
            logger.debug("No watched directory exists; watchfiles idle")
            return
        self._thread = _WatchThread(
            directories, paths, self._debounce_ms,
            self._force_polling, self._poll_delay_ms,
        )
        self._thread.changes.connect(self._dispatch)
        self._thread.failed.connect(self._on_thread_failed)
        self._thread.start()
        logger.debug("watchfiles watching %d file(s) in %d dir(s)",
                     len(paths), len(directories))

    def _on_thread_failed(self, reason: str) -> None:
        logger.info("Restarting watchfiles in %d ms after: %s", _RETRY_MS, reason)
        self._dispatch(sorted(self._subscriptions))
        if self._subscriptions:
            self._restart_timer.start(_RETRY_MS)

    def _dispatch(self, paths: list) -> None:
        # A callback may rebuild the watch set, so look every path up
        # again instead of iterating over the dict.
        for path in paths:
            subscription = self._subscriptions.get(path)
            if subscription is None or not subscription.active:
                continue
            if subscription.watched.refresh():
                subscription.callback(subscription.watched)


def create_backend(name: str, poll_interval_ms: int = POLL_INTERVAL_MS):
    """
    Build the watch backend selected on the command line.

    Raises ValueError for an unknown backend name.
    """
    if name == BackendName.POLL:
        return PollingBackend(poll_interval_ms)
    if name == BackendName.WATCHFILES:
        return WatchfilesBackend()
    raise ValueError(f"Unknown watch backend: {name!r}")
