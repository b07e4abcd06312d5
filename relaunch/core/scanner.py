"""
Stack-trace recognition for the child's stderr.

The child's diagnostic stream arrives in arbitrary chunks. A single
read can end in the middle of a stack frame, or even in the middle of
a UTF-8 character. Rather than reassembling lines, every chunk is
appended to a DiagnosticBuffer and the whole buffer is rescanned.
The first time the buffer contains a complete crash signature, a
CrashEvent is produced and the buffer is cleared, which gives
exactly-once recognition no matter how the trace was split.

A crash signature has two parts:

    TypeError: x is not a function           <- error header
        at foo (/srv/app/app.js:10:5)        <- first stack frame

Node also prints a source-context block above the header when it can:

    /srv/app/lib/util.js:3                   <- file:line
      return value.map(fn);                  <- offending source line
             ^                               <- caret under the column

When that block is present, and its source line isn't a `throw`
statement, it points at the real fault site and wins over the stack
frame. A `throw` line means the error was re-thrown somewhere else, so
the stack frame is the better location in that case.
"""

import codecs
import re
from dataclasses import dataclass


# Error header followed by the first "at ... (file:line:col)" frame, with
# only blank lines allowed in between. Node's " [ERR_CODE]" suffix after
# the type is accepted and dropped.
# The closing parenthesis is required so a chunk that ends inside the
# column number can't be mistaken for a complete frame.
_STACK_FRAME = re.compile(
    r"^(?P<error_type>[A-Za-z_$][\w$.]*)(?: \[[^\]\n]+\])?: (?P<message>[^\n]*)\n"
    r"(?:[ \t]*\n)*[ \t]*at [^\n]*?\((?P<file>[^()\n]+):(?P<line>\d+):(?P<column>\d+)\)",
    re.MULTILINE,
)

# "file:line", the offending source line, then whitespace and a caret.
_SOURCE_CONTEXT = re.compile(
    r"^(?P<file>[^\n]+?):(?P<line>\d+)\n"
    r"(?P<source>[^\n]*)\n"
    r"(?P<indent>[ \t]*)\^",
    re.MULTILINE,
)


@dataclass(frozen=True)
class CrashEvent:
    """A recognized crash: what was thrown and where."""
    error_type: str
    message: str
    source_file: str
    line: int
    column: int

    @property
    def location(self) -> str:
        return f"{self.source_file}:{self.line}:{self.column}"

    def describe(self) -> str:
        """One-line summary used as the notification body."""
        return f"{self.message} ({self.location})"


class DiagnosticBuffer:
    """
    Accumulated stderr text that hasn't been matched to a crash yet.

    The supervisor owns exactly one of these for its whole lifetime, so
    a trace that starts just before a restart is still recognized when
    the rest of it arrives. It's only ever cleared by the scanner after
    a successful match (or explicitly by tests).
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, chunk: bytes | str) -> None:
        if isinstance(chunk, str):
            self._text += chunk
        else:
            self._text += self._decoder.decode(chunk)

    def clear(self) -> None:
        # Pending bytes in the decoder belong to text that hasn't arrived
        # yet, so only the decoded text is dropped.
        self._text = ""

    def __len__(self) -> int:
        return len(self._text)


def scan_text(text: str) -> CrashEvent | None:
    """
    Look for a crash signature in text and return its CrashEvent.

    Returns None when no error header + stack frame pair is present.
    The location comes from the source-context block when one is present
    and doesn't show a `throw`; otherwise from the stack frame.
    """
    frame = _STACK_FRAME.search(text)
    if frame is None:
        return None

    source_file = frame.group("file")
    line = int(frame.group("line"))
    column = int(frame.group("column"))

    context = _SOURCE_CONTEXT.search(text)
    if context is not None and "throw" not in context.group("source"):
        source_file = context.group("file")
        line = int(context.group("line"))
        column = len(context.group("indent"))

    return CrashEvent(
        error_type=frame.group("error_type"),
        message=frame.group("message"),
        source_file=source_file,
        line=line,
        column=column,
    )


class ErrorStreamScanner:
    """
    Feeds stderr chunks into a DiagnosticBuffer and reports crashes.

    The buffer is passed in rather than created here so the supervisor
    can keep one buffer across child restarts and tests can inspect it.
    """

    def __init__(self, buffer: DiagnosticBuffer):
        self._buffer = buffer

    @property
    def buffer(self) -> DiagnosticBuffer:
        return self._buffer

    def feed(self, chunk: bytes | str) -> CrashEvent | None:
        """
        Append a chunk and rescan the whole buffer.

        Returns the CrashEvent (and empties the buffer) when the buffer
        now holds a complete crash signature, otherwise None.
        """
        self._buffer.append(chunk)
        event = scan_text(self._buffer.text)
        if event is not None:
            self._buffer.clear()
        return event
