"""Writing reports to the error stream."""

from __future__ import annotations

import sys
import threading
from collections.abc import Iterable
from typing import TextIO

from .errors import OutputSinkFailure

# Shared by every report so that concurrent faults never interleave.
_write_lock = threading.RLock()


def _stream(stream: TextIO | None) -> TextIO:
    return stream if stream is not None else sys.stderr


def write_report(text: str, stream: TextIO | None = None) -> None:
    """Write a whole report in one locked write."""
    out = _stream(stream)
    if not text.endswith("\n"):
        text += "\n"
    with _write_lock:
        try:
            out.write(text)
            out.flush()
        except (OSError, ValueError, AttributeError) as e:
            raise OutputSinkFailure(f"cannot write fault report: {e!r}") from e


def format_fallback(
    message: str, addresses: Iterable[int], error: BaseException | None = None
) -> str:
    """Plain report used when the pipeline itself failed."""
    parts = ["double fault while reporting"]
    if error is not None:
        parts.append(f" ({type(error).__name__})")
    parts.append("\n")
    parts.append(message)
    parts.append("\n")
    for i, address in enumerate(addresses):
        parts.append("  #%d 0x%x\n" % (i, address))
    return "".join(parts)


def write_fallback(
    message: str,
    addresses: Iterable[int],
    error: BaseException | None = None,
    stream: TextIO | None = None,
) -> None:
    """Best effort write of the fallback report.

    Falls back to the interpreter's original stderr when ``stream`` fails.
    """
    text = format_fallback(message, addresses, error)
    with _write_lock:
        for out in (_stream(stream), sys.__stderr__):
            if out is None:
                continue
            try:
                out.write(text)
                out.flush()
                return
            except Exception:
                continue
