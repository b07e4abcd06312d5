"""
Child-process lifecycle for Relaunch.

ProcessSupervisor owns at most one child process at a time and moves
between three explicit states:

    stopped     No child. Waiting for start() or a file change.
    running     Child alive, watches installed.
    restarting  A file changed; the child has been sent a termination
                signal and we're waiting for it to exit before spawning
                the next one.

The restart policy hinges on *how* the child exits while restarting:

    - Exit carried a signal (QProcess.ExitStatus.CrashExit): that's our
      kill landing, so the next child is started right away with a
      "Restarting" notification naming the changed file.
    - Natural exit (the child crashed or quit on its own before the kill
      arrived): go back to stopped and wait for the next file change.

So a crashing program never restarts itself in a loop. It stays down,
with an error notification explaining why, until the user saves a fix.

Everything runs on the Qt event loop: QProcess delivers output and exit
notifications as signals, and the FileWatchSet's `changed` signal is
connected to changed(). No thread ever touches supervisor state.
"""

import logging
import os
import sys

from PySide6.QtCore import QObject, QProcess, Signal

from relaunch.core.config import APP_TITLE, SupervisorConfig
from relaunch.core.scanner import CrashEvent, DiagnosticBuffer, ErrorStreamScanner
from relaunch.core.watcher import FileWatchSet, WatchedFile
from relaunch.ui.notifier import Severity


logger = logging.getLogger(__name__)

# How long shutdown() waits for a killed child to be reaped.
_SHUTDOWN_WAIT_MS = 3000


class SupervisorError(Exception):
    """Raised when the supervisor is asked to do something it can't."""
    pass


class SpawnError(SupervisorError):
    """
    The child process could not be started.

    Typically the command doesn't exist or isn't executable. This is
    fatal: a command that can't start now won't start after a restart.
    """
    pass


class SupervisorState:
    """
    String constants for the supervisor's lifecycle state.

    Plain strings so they can travel through Qt signals and show up
    readably in log lines.
    """
    STOPPED = "stopped"
    RUNNING = "running"
    RESTARTING = "restarting"


class ProcessSupervisor(QObject):
    """
    Starts, restarts and watches a single child process.

    Signals:
        state_changed(str)           New SupervisorState value.
        process_started(int)         A child was spawned. Payload is its pid.
        process_exited(int, bool)    (exit_code, killed_by_signal).
        crash_detected(CrashEvent)   A stack trace was recognized on stderr.
        spawn_failed(str)            A start triggered from the event loop
                                     failed. Payload is the error message.
    """

    state_changed = Signal(str)
    process_started = Signal(int)
    process_exited = Signal(int, bool)
    crash_detected = Signal(object)
    spawn_failed = Signal(str)

    def __init__(self, config: SupervisorConfig, watch_set: FileWatchSet, notifier,
                 stdout=None, stderr=None, parent: QObject | None = None):
        super().__init__(parent)
        self._config = config
        self._watch_set = watch_set
        self._notifier = notifier

        # Output sinks are binary streams. Defaults are resolved lazily so
        # test runners that swap sys.stdout/sys.stderr still work.
        self._stdout = stdout
        self._stderr = stderr

        self._state = SupervisorState.STOPPED
        self._process: QProcess | None = None
        # The child that exited last. Its finished signal may still be on
        # the stack when the next child starts, so it is released on the
        # following exit instead.
        self._exited: QProcess | None = None
        self._pending_change: WatchedFile | None = None

        # One buffer for the supervisor's whole lifetime: a trace that
        # begins just before a restart is completed by later chunks.
        self._buffer = DiagnosticBuffer()
        self._scanner = ErrorStreamScanner(self._buffer)

        self._watch_set.changed.connect(self.changed)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def buffer(self) -> DiagnosticBuffer:
        return self._buffer

    @property
    def watch_set(self) -> FileWatchSet:
        return self._watch_set

    @property
    def process_id(self) -> int | None:
        if self._process is None:
            return None
        return self._process.processId()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, title: str | None = None, message: str | None = None) -> int:
        """
        Rebuild the watch set and spawn the child.

        Valid only while stopped. Returns the child's pid.

        Raises:
            SupervisorError: A child is already alive.
            SpawnError:      The command could not be started.
        """
        if self._process is not None:
            raise SupervisorError(
                f"Cannot start: child {self._process.processId()} is still {self._state}"
            )

        # Refresh the watched set first so it reflects the tree the new
        # child is about to run from.
        self._watch_set.rebuild(self._config.resolve_watch_root())

        # No Qt parent: self._process is the only owner, so a child is
        # released exactly when the supervisor lets go of it.
        process = QProcess()
        process.setProgram(self._config.command)
        process.setArguments(list(self._config.arguments))
        process.setInputChannelMode(QProcess.InputChannelMode.ForwardedInputChannel)
        process.readyReadStandardOutput.connect(self._on_stdout_ready)
        process.readyReadStandardError.connect(self._on_stderr_ready)
        process.finished.connect(self._on_finished)

        process.start()
        if not process.waitForStarted():
            reason = process.errorString()
            self._detach(process)
            self._set_state(SupervisorState.STOPPED)
            raise SpawnError(f"Failed to start {self._command_line()}: {reason}")

        self._process = process
        self._set_state(SupervisorState.RUNNING)
        pid = process.processId()
        logger.debug("Spawned %s (pid %d)", self._command_line(), pid)
        self.process_started.emit(pid)
        self._notifier.notify(message or "Started", title or APP_TITLE, Severity.INFO)
        return pid

    def changed(self, watched: WatchedFile) -> None:
        """React to a change reported by the watch set."""
        if self._state == SupervisorState.RUNNING:
            self._pending_change = watched
            self._set_state(SupervisorState.RESTARTING)
            logger.debug("Stopping pid %s after change to %s",
                         self.process_id, watched.path)
            self._terminate()
        elif self._state == SupervisorState.STOPPED:
            self._start_from_event_loop()
        else:
            # The restart in flight rebuilds watches from scratch, so it
            # already covers this change.
            logger.debug("Ignoring change to %s while %s", watched.path, self._state)

    def shutdown(self) -> None:
        """Stop watching and kill the child, waiting for it to go away."""
        self._watch_set.close()
        process = self._process
        self._process = None
        self._pending_change = None
        if process is not None:
            self._detach(process)
            process.kill()
            process.waitForFinished(_SHUTDOWN_WAIT_MS)
        self._exited = None
        self._set_state(SupervisorState.STOPPED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, state: str) -> None:
        if state == self._state:
            return
        logger.debug("Supervisor %s -> %s", self._state, state)
        self._state = state
        self.state_changed.emit(state)

    def _command_line(self) -> str:
        return " ".join([self._config.command, *self._config.arguments])

    def _terminate(self) -> None:
        # QProcess.terminate() on Windows posts WM_CLOSE, which console
        # programs ignore; kill() is the only reliable stop there.
        if os.name == "nt":
            self._process.kill()
        else:
            self._process.terminate()

    def _start_from_event_loop(self, title: str | None = None,
                               message: str | None = None) -> None:
        # Exceptions can't propagate out of a Qt slot, so a spawn failure
        # here is reported and handed to whoever listens on spawn_failed.
        try:
            self.start(title, message)
        except SpawnError as e:
            logger.error("%s", e)
            self._notifier.notify(str(e), APP_TITLE, Severity.ERROR)
            self.spawn_failed.emit(str(e))

    def _sink(self, stream, fallback):
        if stream is not None:
            return stream
        return getattr(fallback, "buffer", fallback)

    def _detach(self, process: QProcess) -> None:
        # Only the current child is ever connected, so the slots below can
        # read from self._process.
        process.readyReadStandardOutput.disconnect(self._on_stdout_ready)
        process.readyReadStandardError.disconnect(self._on_stderr_ready)
        process.finished.disconnect(self._on_finished)

    def _on_stdout_ready(self) -> None:
        if self._process is not None:
            self._forward_stdout(self._process)

    def _on_stderr_ready(self) -> None:
        if self._process is not None:
            self._handle_stderr(self._process)

    def _forward_stdout(self, process: QProcess) -> None:
        data = bytes(process.readAllStandardOutput())
        if not data:
            return
        sink = self._sink(self._stdout, sys.stdout)
        sink.write(data)
        sink.flush()

    def _handle_stderr(self, process: QProcess) -> None:
        data = bytes(process.readAllStandardError())
        if not data:
            return
        sink = self._sink(self._stderr, sys.stderr)
        sink.write(data)
        sink.flush()

        event = self._scanner.feed(data)
        if event is not None:
            self._report_crash(event)

    def _report_crash(self, event: CrashEvent) -> None:
        self.crash_detected.emit(event)
        self._notifier.notify(event.describe(), event.error_type, Severity.ERROR)

    def _on_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        process = self._process
        if process is None:
            return

        # Output that arrived together with the exit hasn't been read yet.
        self._forward_stdout(process)
        self._handle_stderr(process)

        self._detach(process)
        self._exited = process
        self._process = None

        killed = exit_status == QProcess.ExitStatus.CrashExit
        self.process_exited.emit(exit_code, killed)

        if self._state == SupervisorState.RESTARTING and killed:
            watched = self._pending_change
            self._pending_change = None
            self._set_state(SupervisorState.STOPPED)
            name = self._watch_set.display_name(watched) if watched else "unknown"
            self._start_from_event_loop("Restarting", f"File modified: {name}")
            return

        # Natural exit, or a crash that beat our kill: wait for the next change.
        self._pending_change = None
        self._set_state(SupervisorState.STOPPED)
        if killed:
            logger.warning("Process terminated by a signal; waiting for changes")
        elif exit_code != 0:
            logger.warning("Process exited with code %d; waiting for changes", exit_code)
        else:
            logger.info("Process exited cleanly; waiting for changes")
