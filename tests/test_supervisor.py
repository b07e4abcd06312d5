"""Tests for the ProcessSupervisor state machine, using real child processes."""

import gc
import os
import sys

import pytest

from relaunch.core.backends import PollingBackend
from relaunch.core.config import SupervisorConfig
from relaunch.core.scanner import CrashEvent
from relaunch.core.supervisor import (
    ProcessSupervisor,
    SpawnError,
    SupervisorError,
    SupervisorState,
)
from relaunch.core.watcher import FileWatchSet
from relaunch.ui.notifier import Severity

from conftest import CRASH_SCRIPT, SLEEP_SCRIPT


# Exits normally (code 0) when asked to terminate, as if it had quit on
# its own just before the kill landed.
GRACEFUL_SCRIPT = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, lambda *a: sys.exit(0))\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)


def _app_js(supervisor):
    return next(f for f in supervisor.watch_set.files if f.path.endswith("app.js"))


def test_start_spawns_child_and_notifies(make_supervisor, notifier):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    pid = supervisor.start()

    assert pid > 0
    assert supervisor.process_id == pid
    assert supervisor.state == SupervisorState.RUNNING
    assert notifier.calls == [("Started", "Relaunch", Severity.INFO)]
    assert [os.path.basename(f.path) for f in supervisor.watch_set.files] == ["app.js"]


def test_start_with_custom_title_and_message(make_supervisor, notifier):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    supervisor.start("Booting", "Hello there")
    assert notifier.calls == [("Hello there", "Booting", Severity.INFO)]


def test_start_while_running_is_refused(make_supervisor):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    supervisor.start()
    with pytest.raises(SupervisorError):
        supervisor.start()


def test_spawn_failure_is_fatal(make_supervisor):
    supervisor = make_supervisor(command="relaunch-test-no-such-command")
    with pytest.raises(SpawnError, match="relaunch-test-no-such-command"):
        supervisor.start()
    assert supervisor.state == SupervisorState.STOPPED
    assert supervisor.process_id is None


def test_change_while_running_restarts_child(make_supervisor, notifier, qtbot):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    first_pid = supervisor.start()

    with qtbot.waitSignal(supervisor.process_started, timeout=10_000) as blocker:
        supervisor.changed(_app_js(supervisor))
        assert supervisor.state == SupervisorState.RESTARTING

    assert blocker.args[0] != first_pid
    assert supervisor.state == SupervisorState.RUNNING
    assert notifier.calls[-1] == ("File modified: app.js", "Restarting", Severity.INFO)


def test_children_never_overlap(make_supervisor, qtbot):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    events = []
    supervisor.process_started.connect(lambda pid: events.append("start"))
    supervisor.process_exited.connect(lambda code, killed: events.append("exit"))

    supervisor.start()
    for _ in range(2):
        with qtbot.waitSignal(supervisor.process_started, timeout=10_000):
            supervisor.changed(_app_js(supervisor))

    assert events == ["start", "exit", "start", "exit", "start"]


def test_changes_during_restart_are_ignored(make_supervisor, qtbot):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    starts = []
    supervisor.process_started.connect(starts.append)
    supervisor.start()

    with qtbot.waitSignal(supervisor.process_started, timeout=10_000):
        watched = _app_js(supervisor)
        supervisor.changed(watched)
        supervisor.changed(watched)
        supervisor.changed(watched)

    qtbot.wait(300)
    assert len(starts) == 2


def test_crash_is_reported_and_not_restarted(make_supervisor, notifier, qtbot):
    supervisor = make_supervisor(CRASH_SCRIPT)
    crashes = []
    exits = []
    starts = []
    supervisor.crash_detected.connect(crashes.append)
    supervisor.process_exited.connect(lambda code, killed: exits.append((code, killed)))

    supervisor.start()
    supervisor.process_started.connect(starts.append)
    qtbot.waitUntil(lambda: supervisor.state == SupervisorState.STOPPED, timeout=10_000)

    assert crashes == [CrashEvent("TypeError", "x is not a function", "app.js", 10, 5)]
    assert exits == [(1, False)]
    assert ("x is not a function (app.js:10:5)", "TypeError", Severity.ERROR) in notifier.calls
    assert len(supervisor.buffer) == 0
    assert b"TypeError: x is not a function" in supervisor.test_stderr.getvalue()

    # Stays down until a file changes...
    qtbot.wait(300)
    assert starts == []
    assert supervisor.process_id is None

    # ...and a change starts it fresh.
    with qtbot.waitSignal(supervisor.process_started, timeout=10_000):
        supervisor.changed(_app_js(supervisor))
    assert notifier.calls.count(("Started", "Relaunch", Severity.INFO)) == 2


@pytest.mark.skipif(os.name == "nt", reason="needs POSIX signals")
def test_natural_exit_during_restart_does_not_respawn(make_supervisor, qtbot):
    supervisor = make_supervisor(GRACEFUL_SCRIPT)
    exits = []
    starts = []
    supervisor.process_exited.connect(lambda code, killed: exits.append((code, killed)))

    supervisor.start()
    supervisor.process_started.connect(starts.append)
    qtbot.waitUntil(lambda: b"ready" in supervisor.test_stdout.getvalue(), timeout=10_000)

    supervisor.changed(_app_js(supervisor))
    qtbot.waitUntil(lambda: supervisor.state == SupervisorState.STOPPED, timeout=10_000)

    assert exits == [(0, False)]
    qtbot.wait(300)
    assert starts == []


def test_stdout_is_passed_through_unmodified(make_supervisor, qtbot):
    supervisor = make_supervisor("import sys\nsys.stdout.buffer.write(b'hello\\x00world\\n')\n")
    supervisor.start()
    qtbot.waitUntil(lambda: supervisor.state == SupervisorState.STOPPED, timeout=10_000)
    assert supervisor.test_stdout.getvalue() == b"hello\x00world\n"


def test_buffer_survives_restarts(make_supervisor, qtbot):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    buffer = supervisor.buffer
    buffer.append(b"TypeError: half a trace\n")
    supervisor.start()

    with qtbot.waitSignal(supervisor.process_started, timeout=10_000):
        supervisor.changed(_app_js(supervisor))

    assert supervisor.buffer is buffer
    assert buffer.text == "TypeError: half a trace\n"


def test_spawn_failure_after_change_is_reported(make_supervisor, notifier, qtbot, project):
    supervisor = make_supervisor(command="relaunch-test-no-such-command")
    supervisor.watch_set.rebuild(project)

    with qtbot.waitSignal(supervisor.spawn_failed, timeout=1000):
        supervisor.changed(_app_js(supervisor))

    assert supervisor.state == SupervisorState.STOPPED
    assert notifier.calls[-1][2] == Severity.ERROR


def test_shutdown_kills_the_child(make_supervisor):
    supervisor = make_supervisor(SLEEP_SCRIPT)
    supervisor.start()
    supervisor.shutdown()
    assert supervisor.state == SupervisorState.STOPPED
    assert supervisor.process_id is None
    assert supervisor.watch_set.subscriptions == ()


@pytest.mark.parametrize("first_command", [None, "relaunch-test-no-such-command"])
def test_restarts_keep_working_after_another_supervisor_is_collected(
        make_supervisor, notifier, project, qtbot, first_command):
    # A supervisor outside the fixture, so nothing else keeps it alive.
    config = SupervisorConfig(
        command=first_command or sys.executable,
        arguments=[] if first_command else ["-c", SLEEP_SCRIPT],
        watch_root=project,
    )
    earlier = ProcessSupervisor(config, FileWatchSet(PollingBackend()), notifier)
    try:
        earlier.start()
    except SpawnError:
        pass
    earlier.shutdown()
    del earlier
    gc.collect()

    supervisor = make_supervisor(SLEEP_SCRIPT)
    supervisor.start()
    for _ in range(2):
        with qtbot.waitSignal(supervisor.process_started, timeout=10_000):
            supervisor.changed(_app_js(supervisor))
    assert supervisor.state == SupervisorState.RUNNING
