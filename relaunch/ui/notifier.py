"""
Notification delivery for Relaunch.

Everything the supervisor wants the user to know goes through a single
call:

    notifier.notify(message, title, severity)

Two notifiers exist, and the entry point usually combines them:

    ConsoleNotifier:  one log line per notification (always on)
    TrayNotifier:     a desktop balloon via QSystemTrayIcon, with a
                      distinct icon per severity

Delivery is best-effort. NotifierGroup catches and logs a failing
notifier so a broken desktop session can never take the supervisor
down with it.
"""

import logging

from PySide6.QtCore import QObject
from PySide6.QtWidgets import QApplication, QStyle, QSystemTrayIcon


logger = logging.getLogger(__name__)


class Severity:
    """
    String constants for notification severity.

    Kept as plain strings, matching the values printed in log lines.
    """
    INFO = "info"
    ERROR = "error"


# Each severity maps to its own balloon icon and log level.
_TRAY_ICONS = {
    Severity.INFO: QSystemTrayIcon.MessageIcon.Information,
    Severity.ERROR: QSystemTrayIcon.MessageIcon.Critical,
}

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.ERROR: logging.ERROR,
}

# How long a balloon stays up, in milliseconds.
_BALLOON_MS = 5000


class ConsoleNotifier:
    """Writes each notification as a single console log line."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def notify(self, message: str, title: str, severity: str) -> None:
        level = _LOG_LEVELS.get(severity, logging.INFO)
        self._log.log(level, "%s: %s", title, message)


class TrayNotifier(QObject):
    """
    Desktop notifications through the system tray.

    Needs a QApplication (not just QCoreApplication) and a running tray.
    When either is missing the notifier stays silent; the console line
    from ConsoleNotifier still carries the message.
    """

    def __init__(self, parent: QObject | None = None):
        super().__init__(parent)
        self._tray: QSystemTrayIcon | None = None

        app = QApplication.instance()
        if not isinstance(app, QApplication):
            logger.debug("No QApplication; desktop notifications disabled")
            return
        if not QSystemTrayIcon.isSystemTrayAvailable():
            logger.debug("No system tray; desktop notifications disabled")
            return

        icon = app.style().standardIcon(QStyle.StandardPixmap.SP_BrowserReload)
        self._tray = QSystemTrayIcon(icon, self)
        self._tray.setToolTip("Relaunch")
        self._tray.show()

    @property
    def available(self) -> bool:
        return self._tray is not None

    def notify(self, message: str, title: str, severity: str) -> None:
        if self._tray is None:
            return
        icon = _TRAY_ICONS.get(severity, QSystemTrayIcon.MessageIcon.Information)
        self._tray.showMessage(title, message, icon, _BALLOON_MS)

    def close(self) -> None:
        if self._tray is not None:
            self._tray.hide()


class NotifierGroup:
    """Fans one notification out to several notifiers."""

    def __init__(self, notifiers):
        self._notifiers = list(notifiers)

    @property
    def notifiers(self) -> list:
        return list(self._notifiers)

    def notify(self, message: str, title: str, severity: str) -> None:
        for notifier in self._notifiers:
            try:
                notifier.notify(message, title, severity)
            except Exception as e:
                logger.warning("Notification via %s failed: %s",
                               type(notifier).__name__, e)
