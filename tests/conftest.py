# relaunch/tests/conftest.py
# ---------------------------------------------------------------------
# Ground rules:
# - pytest-qt owns the QApplication (use qapp/qtbot fixtures)
# - Qt runs offscreen so the suite works without a display
# - Child processes are small `python -c` scripts run with sys.executable
# - Every supervisor is shut down after its test so no child outlives it
# ---------------------------------------------------------------------

import gc
import io
import os
import sys

# Must be set before any Qt module creates the application.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from relaunch.core.backends import PollingBackend
from relaunch.core.config import SupervisorConfig
from relaunch.core.supervisor import ProcessSupervisor
from relaunch.core.watcher import FileWatchSet


# ---------- Child scripts ----------
SLEEP_SCRIPT = "import time\ntime.sleep(60)\n"

CRASH_SCRIPT = (
    "import sys\n"
    "sys.stderr.write('TypeError: x is not a function\\n"
    "    at foo (app.js:10:5)\\n')\n"
    "sys.stderr.flush()\n"
    "sys.exit(1)\n"
)


class RecordingNotifier:
    """Collects (message, title, severity) triples."""

    def __init__(self):
        self.calls = []

    def notify(self, message, title, severity):
        self.calls.append((message, title, severity))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def project(tmp_path):
    """A watch root holding a single app.js."""
    (tmp_path / "app.js").write_text("console.log('hi');\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def make_supervisor(qtbot, project, notifier):
    """
    Factory: make_supervisor(script) -> supervisor running `python -c script`.

    The supervisor's stdout/stderr sinks are BytesIO objects exposed as
    supervisor.test_stdout / supervisor.test_stderr.
    Supervisors are shut down and garbage-collected after the test.
    """
    created = []

    def factory(script=SLEEP_SCRIPT, command=None):
        config = SupervisorConfig(
            command=command or sys.executable,
            arguments=[] if command else ["-c", script],
            watch_root=project,
        )
        watch_set = FileWatchSet(PollingBackend())
        stdout, stderr = io.BytesIO(), io.BytesIO()
        supervisor = ProcessSupervisor(
            config, watch_set, notifier, stdout=stdout, stderr=stderr,
        )
        supervisor.test_stdout = stdout
        supervisor.test_stderr = stderr
        created.append(supervisor)
        return supervisor

    yield factory

    for supervisor in created:
        supervisor.shutdown()
    # Drop the supervisors for real so a later test runs next to collected
    # ones, the way a long session does.
    created.clear()
    gc.collect()
