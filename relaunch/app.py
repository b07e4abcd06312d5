"""
Wiring for a Relaunch session.

This module assembles the pieces the supervisor needs from a
SupervisorConfig:

    1. A watch backend (polling by default, or watchfiles)
    2. A FileWatchSet over that backend
    3. The notifiers (console always, tray when enabled and available)
    4. The ProcessSupervisor itself

It also decides which Qt application class to create. Desktop
notifications need a QApplication, which in turn needs a display;
without one (SSH sessions, CI, containers) a QCoreApplication runs the
same event loop without any GUI.
"""

import os
import sys

from PySide6.QtCore import QCoreApplication, QObject
from PySide6.QtWidgets import QApplication

from relaunch.core.backends import create_backend
from relaunch.core.config import SupervisorConfig
from relaunch.core.supervisor import ProcessSupervisor
from relaunch.core.watcher import FileWatchSet
from relaunch.ui.notifier import ConsoleNotifier, NotifierGroup, TrayNotifier


def has_display() -> bool:
    """Whether a GUI application can be created on this machine."""
    if sys.platform.startswith("linux"):
        return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))
    return True


def create_application(config: SupervisorConfig, argv: list[str]) -> QCoreApplication:
    """
    Return the running Qt application, creating one if needed.

    A QApplication is only created when notifications are wanted and a
    display is present.
    """
    existing = QCoreApplication.instance()
    if existing is not None:
        return existing
    if config.notify and has_display():
        return QApplication(argv)
    return QCoreApplication(argv)


class RelaunchSession(QObject):
    """
    One supervisor plus everything it depends on.

    Keeping the parts on one object keeps them alive for the lifetime of
    the event loop and gives shutdown a single place to run.
    """

    def __init__(self, config: SupervisorConfig, notifiers=None,
                 stdout=None, stderr=None, parent: QObject | None = None):
        super().__init__(parent)
        self.config = config

        backend = create_backend(config.backend, config.poll_interval_ms)
        backend.setParent(self)
        self.watch_set = FileWatchSet(
            backend, extensions=config.extensions, ignore=config.ignore, parent=self,
        )

        self._tray: TrayNotifier | None = None
        if notifiers is None:
            notifiers = [ConsoleNotifier()]
            if config.notify:
                self._tray = TrayNotifier(self)
                notifiers.append(self._tray)
        self.notifier = NotifierGroup(notifiers)

        self.supervisor = ProcessSupervisor(
            config, self.watch_set, self.notifier,
            stdout=stdout, stderr=stderr, parent=self,
        )

    def start(self) -> int:
        """Start the first child. SpawnError propagates to the caller."""
        return self.supervisor.start()

    def shutdown(self) -> None:
        self.supervisor.shutdown()
        if self._tray is not None:
            self._tray.close()
