"""
Relaunch: development process supervisor.

Relaunch starts a program, watches the source tree it lives in, and
restarts the program whenever a tracked file changes. The program's
stderr is scanned for stack traces so a crash shows up as a desktop
notification (and a console line) pointing at the file, line and
column that blew up, instead of scrolling past in the terminal.

The version string below is the single source of truth for the
package version, referenced by pyproject.toml and `relaunch --version`.
"""

__version__ = "0.1.0"
