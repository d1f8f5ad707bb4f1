"""Source snippets around a frame's line."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .errors import SourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = 2


@dataclass(frozen=True)
class SourceSnippet:
    lines: tuple[tuple[int, str], ...]
    highlight_line: int

    @property
    def highlighted(self) -> str | None:
        for lineno, text in self.lines:
            if lineno == self.highlight_line:
                return text
        return None


def _read_lines(file_path: str | None, line: int | None) -> list[str]:
    if not file_path or file_path.startswith("<"):
        raise SourceUnavailable(file_path, line, "opaque path")
    if line is None or line < 1:
        raise SourceUnavailable(file_path, line, "no line number")
    if not os.path.isfile(file_path):
        raise SourceUnavailable(file_path, line, "not a file")
    try:
        with open(file_path, encoding="utf-8", errors="replace") as f:
            lines = f.readlines()
    except OSError as e:
        raise SourceUnavailable(file_path, line, str(e)) from e
    if line > len(lines):
        raise SourceUnavailable(file_path, line, f"file has {len(lines)} lines")
    return lines


def load_snippet(
    file_path: str | None, line: int | None, context: int = DEFAULT_CONTEXT
) -> SourceSnippet | None:
    """Extract source code around a line, or None if it cannot be read.

    The file is read on every call; a report should show the source as it
    is on disk now.
    """
    try:
        lines = _read_lines(file_path, line)
    except SourceUnavailable as e:
        logger.debug("%s", e)
        return None
    except Exception as e:
        logger.debug("no source for %s:%s: %r", file_path, line, e)
        return None
    start = max(line - 1 - context, 0)
    end = min(line + context, len(lines))
    snippet = tuple(
        (i + 1, lines[i].rstrip("\r\n").expandtabs(4)) for i in range(start, end)
    )
    return SourceSnippet(lines=snippet, highlight_line=line)
