"""Rendering of fault reports."""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from types import FrameType, TracebackType
from typing import TextIO

from .classify import FrameClassifier
from .frames import (
    Backtrace,
    Frame,
    FrameKind,
    FrameResolver,
    RawFrame,
    capture_stack,
    capture_traceback,
)
from .settings import ENV_VAR, Settings, Verbosity
from .source import SourceSnippet, load_snippet
from .theme import Styler, color_enabled

logger = logging.getLogger(__name__)

MAX_MESSAGE = 2000
MAX_CHAIN = 5

_RELATIONS = {
    "cause": "Caused by:",
    "context": "During handling of:",
}


def truncate_str(s: str, max_len: int) -> str:
    """Truncate string with marker."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 12] + "...[TRUNC]"


def describe_exception(exc: BaseException) -> str:
    """``Type: message`` for an exception, safe against a failing ``__str__``."""
    cls = type(exc)
    name = cls.__qualname__
    if cls.__module__ not in ("builtins", "__main__"):
        name = f"{cls.__module__}.{name}"
    try:
        text = str(exc)
    except Exception:
        text = "<exception str() failed>"
    text = truncate_str(text, MAX_MESSAGE)
    message = f"{name}: {text}" if text else name
    notes = getattr(exc, "__notes__", None)
    if isinstance(notes, list):
        message += "".join(f"\n{note}" for note in notes if isinstance(note, str))
    return message


def display_path(path: str) -> str:
    """Path relative to the working directory when it lies below it."""
    if path.startswith("<"):
        return path
    try:
        rel = os.path.relpath(path, os.getcwd())
    except Exception:
        # no common drive, or the working directory is gone
        return path
    return path if rel.startswith("..") else rel


@dataclass(frozen=True)
class Fault:
    """What is known about a fault before any symbol is resolved."""

    message: str
    raw_frames: tuple[RawFrame, ...] = ()
    thread_name: str | None = None
    location: tuple[str, int] | None = None
    cause: Fault | None = field(default=None, repr=False)
    cause_relation: str | None = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        tb: TracebackType | None = None,
        thread_name: str | None = None,
        *,
        _depth: int = 0,
        _seen: set[int] | None = None,
    ) -> Fault:
        if _seen is None:
            _seen = set()
        _seen.add(id(exc))
        if thread_name is None:
            thread_name = threading.current_thread().name

        raw = capture_traceback(tb if tb is not None else exc.__traceback__)
        location = None
        if raw and raw[0].code is not None and raw[0].lineno is not None:
            location = (raw[0].code.co_filename, raw[0].lineno)

        cause, relation = None, None
        if _depth < MAX_CHAIN:
            if exc.__cause__ is not None:
                cause, relation = exc.__cause__, "cause"
            elif exc.__context__ is not None and not exc.__suppress_context__:
                cause, relation = exc.__context__, "context"
            if cause is not None and id(cause) in _seen:
                cause, relation = None, None

        return cls(
            message=describe_exception(exc),
            raw_frames=tuple(raw),
            thread_name=thread_name,
            location=location,
            cause=(
                cls.from_exception(cause, thread_name=thread_name, _depth=_depth + 1, _seen=_seen)
                if cause is not None
                else None
            ),
            cause_relation=relation,
        )

    @classmethod
    def from_stack(cls, message: str, frame: FrameType | None = None) -> Fault:
        """Fault describing the live stack of the caller."""
        if frame is None:
            frame = sys._getframe(1)
        raw = capture_stack(frame)
        location = None
        if raw and raw[0].code is not None and raw[0].lineno is not None:
            location = (raw[0].code.co_filename, raw[0].lineno)
        return cls(
            message=message,
            raw_frames=tuple(raw),
            thread_name=threading.current_thread().name,
            location=location,
        )

    def chain(self) -> list[tuple[str, Fault]]:
        """(relation, cause) pairs, most recent first."""
        out = []
        cur = self
        while cur.cause is not None:
            out.append((cur.cause_relation or "cause", cur.cause))
            cur = cur.cause
        return out


class ReportRenderer:
    """Turns a :class:`Fault` into report text.

    Every step degrades instead of failing: unresolvable frames render as
    addresses, a failing classifier leaves frames untagged and missing
    source simply means no snippet.
    """

    def __init__(
        self,
        settings: Settings,
        classifier: FrameClassifier | None = None,
        resolver: FrameResolver | None = None,
        snippet_loader: Callable[[str | None, int | None, int], SourceSnippet | None] = load_snippet,
    ) -> None:
        self.settings = settings
        self.classifier = classifier or FrameClassifier.from_settings(settings)
        self.resolver = resolver or FrameResolver()
        self.snippet_loader = snippet_loader

    def styler(self, stream: TextIO | None = None) -> Styler:
        if stream is None:
            stream = self.settings.out if self.settings.out is not None else sys.stderr
        return Styler(self.settings.theme, color_enabled(self.settings.color, stream))

    def backtrace_for(self, raw_frames) -> Backtrace:
        resolved = self.resolver.resolve(raw_frames)
        try:
            return self.classifier.process(resolved)
        except Exception as e:
            logger.debug("frame classification failed: %r", e)
            return resolved

    def render(self, fault: Fault, stream: TextIO | None = None) -> str:
        return self.render_report(fault, self.backtrace_for(fault.raw_frames), stream)

    def render_report(
        self, fault: Fault, backtrace: Backtrace, stream: TextIO | None = None
    ) -> str:
        style = self.styler(stream)
        s = self.settings

        bt_lines, omitted = self.render_backtrace(backtrace, style)
        for relation, cause in self._causes(fault):
            cause_lines, cause_omitted = self._render_cause(relation, cause, style)
            bt_lines += [""] + cause_lines
            omitted += cause_omitted
        msg_lines = self.render_message(fault, style)

        blocks = [bt_lines, msg_lines] if s.backtrace_first else [msg_lines, bt_lines]
        if s.raw_backtrace:
            blocks.append(self.render_raw(fault, style))
        footer = self.render_footer(omitted, style)
        if footer:
            blocks.append(footer)

        lines: list[str] = []
        for block in blocks:
            if lines:
                lines.append("")
            lines.extend(block)
        return "\n".join(lines) + "\n"

    def _causes(self, fault: Fault) -> list[tuple[str, Fault]]:
        causes = fault.chain()
        if not self.settings.most_recent_first:
            causes.reverse()
        return causes

    def _render_cause(
        self, relation: str, cause: Fault, style: Styler
    ) -> tuple[list[str], int]:
        relation = _RELATIONS.get(relation, "Caused by:")
        first, *rest = cause.message.splitlines() or [""]
        lines = [f"{style(relation, 'title')} {style(first, 'message')}"]
        lines += [f"  {style(line, 'message')}" for line in rest]
        bt_lines, omitted = self.render_backtrace(self.backtrace_for(cause.raw_frames), style)
        return lines + bt_lines, omitted

    def level_for(self, frame: Frame) -> Verbosity:
        if frame.kind is FrameKind.USER_CODE:
            return self.settings.verbosity
        if self.settings.is_allow_listed(frame.file_path):
            return Verbosity.FULL
        return self.settings.lib_verbosity

    def render_backtrace(self, backtrace: Backtrace, style: Styler) -> tuple[list[str], int]:
        """Frame blocks plus the number of frames collapsed away."""
        order = "first" if self.settings.most_recent_first else "last"
        lines = [style(f"Backtrace (most recent call {order}):", "title")]
        indexed = list(enumerate(backtrace))
        if not self.settings.most_recent_first:
            indexed.reverse()
        if not indexed:
            lines.append("  <no frames captured>")

        run = total = 0
        for index, frame in indexed:
            level = self.level_for(frame)
            if level is Verbosity.MINIMAL and frame.kind is not FrameKind.USER_CODE:
                run += 1
                continue
            if run:
                lines.append(self._omitted(run, style))
                total += run
                run = 0
            lines.extend(self.render_frame(index, frame, level, style))
        if run:
            lines.append(self._omitted(run, style))
            total += run
        return lines, total

    def _omitted(self, count: int, style: Styler) -> str:
        noun = "frame" if count == 1 else "frames"
        return "  " + style(f"... {count} {noun} omitted ...", "omitted")

    def render_frame(
        self, index: int, frame: Frame, level: Verbosity, style: Styler
    ) -> list[str]:
        if not frame.is_resolved:
            return [f"  #{index} {style('<unknown>', 'unknown_symbol')} at 0x{frame.address:x}"]

        role = "user_symbol" if frame.kind is FrameKind.USER_CODE else "dependency_symbol"
        name = style(frame.symbol_name or "<unknown>", role)
        if frame.file_path and frame.line is not None:
            header = f"  #{index} {self._location(frame, style)}, in {name}"
        else:
            header = f"  #{index} <unknown source>, in {name}"
        lines = [header]

        show_source = level is Verbosity.FULL or (
            level is Verbosity.MEDIUM and frame.kind is FrameKind.USER_CODE
        )
        if show_source and frame.file_path and frame.line is not None:
            lines.extend(self._snippet(frame, style))
        return lines

    def _location(self, frame: Frame, style: Styler) -> str:
        path = style(display_path(frame.file_path), "location")
        if self.settings.lineno_suffix:
            suffix = f"{frame.line}" if frame.column is None else f"{frame.line}:{frame.column}"
            return f'File "{path}:{style(suffix, "lineno")}"'
        text = f'File "{path}", line {style(frame.line, "lineno")}'
        if frame.column is not None:
            text += f", column {frame.column}"
        return text

    def _snippet(self, frame: Frame, style: Styler) -> list[str]:
        try:
            snippet = self.snippet_loader(
                frame.file_path, frame.line, self.settings.context_lines
            )
        except Exception as e:
            logger.debug("snippet loader failed for %s: %r", frame.file_path, e)
            snippet = None
        if not snippet or not snippet.lines:
            return []
        width = len(str(snippet.lines[-1][0]))
        lines = []
        for lineno, text in snippet.lines:
            number = f"{lineno:>{width}}"
            if lineno == snippet.highlight_line:
                lines.append(
                    f"    {style('>', 'marker')} {style(number, 'lineno')} | "
                    f"{style(text, 'highlight_line')}"
                )
            else:
                lines.append(f"      {number} | {style(text, 'context_line')}")
        return lines

    def render_message(self, fault: Fault, style: Styler) -> list[str]:
        message_lines = fault.message.splitlines() or [""]
        if self.settings.message is not None:
            header = (self.settings.message.splitlines() or [""])[0]
            rest = message_lines
        else:
            header, rest = message_lines[0], message_lines[1:]
        lines = [style(header, "header")]
        lines += [f"  {style(line, 'message')}" for line in rest]

        if fault.location is not None:
            path, line = fault.location
            path = style(display_path(path), "location")
            if self.settings.lineno_suffix:
                lines.append(f"in {path}:{style(line, 'lineno')}")
            else:
                lines.append(f"in {path}, line {style(line, 'lineno')}")
        if fault.thread_name is not None:
            lines.append(f"thread: {style(fault.thread_name, 'message')}")
        return lines

    def render_raw(self, fault: Fault, style: Styler) -> list[str]:
        """Untrimmed dump of every captured frame."""
        lines = [style("Raw backtrace:", "title")]
        for i, frame in enumerate(self.resolver.resolve(fault.raw_frames)):
            text = f"  {i:>3}: 0x{frame.address:016x}"
            if frame.symbol_name:
                text += f" - {frame.symbol_name}"
            if frame.file_path:
                text += f"\n         at {frame.file_path}:{frame.line}"
            lines.append(text)
        return lines

    def render_footer(self, omitted: int, style: Styler) -> list[str]:
        lines = []
        if omitted:
            lines.append(f"Some frames were hidden. Run with {ENV_VAR}=1 to display them.")
        if self.settings.verbosity < Verbosity.FULL:
            lines.append(f"Run with {ENV_VAR}=full to include source snippets.")
        return [style(line, "hint") for line in lines]


def format_fault(fault: Fault, settings: Settings | None = None, stream: TextIO | None = None) -> str:
    return ReportRenderer(settings or Settings.auto()).render(fault, stream)


def format_exception(
    exc: BaseException, settings: Settings | None = None, stream: TextIO | None = None
) -> str:
    """Render a report for ``exc`` without writing it anywhere."""
    return format_fault(Fault.from_exception(exc), settings, stream)
