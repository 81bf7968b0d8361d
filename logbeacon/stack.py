"""
logbeacon/stack.py - Stack trace parsing and exception context.

Frames are always returned innermost first, whatever the source format:
Python prints the innermost call last, browsers print it first.
"""

import re
import traceback
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlparse

from .serialization import safe_text

# File "/app/views.py", line 42, in handler
_PYTHON_FRAME = re.compile(r'^\s*File "(?P<file>[^"]+)", line (?P<line>\d+)(?:, in (?P<func>.+?))?\s*$')
# at Object.test (http://host/app.js:10:20)   or   at http://host/app.js:10:20
_CHROME_FRAME = re.compile(r"^\s*at\s+(?:(?P<func>.+?)\s+\()?(?P<file>.*?):(?P<line>\d+):(?P<col>\d+)\)?$")
# test@http://host/app.js:10:20
_FIREFOX_FRAME = re.compile(r"^\s*(?P<func>.*?)@(?P<file>.*?):(?P<line>\d+):(?P<col>\d+)$")


@dataclass(frozen=True)
class StackFrame:
    function_name: str
    file_name: str
    line_number: int
    column_number: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_stack(text: str | None) -> list[StackFrame]:
    """
    Parse stack trace text into frames, innermost first.

    Understands Python tracebacks as well as Chrome ("at fn (file:L:C)") and
    Firefox ("fn@file:L:C") lines, so stacks forwarded from browser code are
    usable too. Lines that match no format are skipped.
    """
    if not text:
        return []

    python_frames: list[StackFrame] = []
    browser_frames: list[StackFrame] = []

    for line in text.splitlines():
        match = _PYTHON_FRAME.match(line)
        if match:
            python_frames.append(
                StackFrame(
                    function_name=match.group("func") or "unknown",
                    file_name=match.group("file"),
                    line_number=int(match.group("line")),
                )
            )
            continue

        match = _CHROME_FRAME.match(line) or _FIREFOX_FRAME.match(line)
        if match:
            browser_frames.append(
                StackFrame(
                    function_name=match.group("func") or "unknown",
                    file_name=match.group("file"),
                    line_number=int(match.group("line")),
                    column_number=int(match.group("col")),
                )
            )

    python_frames.reverse()
    return python_frames + browser_frames


def format_exception(exc: BaseException) -> str:
    """Full traceback text for ``exc``, or "" when it was never raised."""
    if exc.__traceback__ is None:
        return ""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def error_to_context(exc: BaseException) -> dict[str, Any]:
    """
    Convert an exception into structured log context.

    Returns:
        dict: ``message``, ``name``, ``stack`` (traceback text), ``file``,
        ``line`` and ``function`` of the innermost frame (None when the
        exception carries no traceback), and ``frames`` as a list of dicts.
    """
    stack = format_exception(exc)
    if exc.__traceback__ is not None:
        frames = [
            StackFrame(
                function_name=summary.name or "unknown",
                file_name=summary.filename,
                line_number=summary.lineno or 0,
            )
            for summary in reversed(traceback.extract_tb(exc.__traceback__))
        ]
    else:
        frames = []

    top = frames[0] if frames else None
    return {
        "message": safe_text(exc),
        "name": type(exc).__name__,
        "stack": stack,
        "file": top.file_name if top else None,
        "line": top.line_number if top else None,
        "function": top.function_name if top else None,
        "frames": [frame.to_dict() for frame in frames],
    }


def source_from_stack(text: str | None) -> dict[str, str]:
    """
    Derive a ``controller``/``method`` hint from the innermost frame.

    A URL file name is reduced to its path without the leading slash
    (``http://host/js/app.js`` becomes ``js/app.js``); plain paths are kept.
    """
    frames = parse_stack(text)
    if not frames:
        return {}

    frame = frames[0]
    controller = frame.file_name
    parsed = urlparse(controller)
    if parsed.scheme and parsed.netloc:
        controller = parsed.path[1:]

    return {"controller": controller, "method": frame.function_name}
