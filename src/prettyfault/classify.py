"""Frame classification and trimming.

A frame is tagged by running an ordered list of matchers over it; the first
matcher that returns a :class:`FrameKind` wins and frames no matcher claims
are user code. Trimming then drops the outermost run of runtime frames (the
interpreter and thread bootstrap, test runners, this package's own hook) so
a report ends at the code that actually ran into the fault.
"""

from __future__ import annotations

import logging
import os
import sysconfig
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING

from .frames import Backtrace, Frame, FrameKind

if TYPE_CHECKING:
    from .settings import Settings

logger = logging.getLogger(__name__)

Matcher = Callable[[Frame], "FrameKind | None"]

RUNTIME_MODULES = (
    "prettyfault",
    "runpy",
    "threading",
    "importlib._bootstrap",
    "importlib._bootstrap_external",
    "concurrent.futures",
    "_pytest",
    "pluggy",
)

RUNTIME_FILE_PREFIXES = (
    "<frozen runpy>",
    "<frozen importlib._bootstrap",
)

DEPENDENCY_MARKERS = (
    "/site-packages/",
    "/dist-packages/",
)


def _external_roots() -> tuple[str, ...]:
    paths = sysconfig.get_paths()
    roots = {
        os.path.normpath(paths[key])
        for key in ("stdlib", "platstdlib", "purelib", "platlib")
        if paths.get(key)
    }
    return tuple(sorted(roots))


def _under(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class RuntimeMatcher:
    """Tags frames of the fault-dispatch and bootstrap machinery."""

    def __init__(
        self,
        modules: Iterable[str] = RUNTIME_MODULES,
        file_prefixes: Iterable[str] = RUNTIME_FILE_PREFIXES,
    ) -> None:
        self.modules = tuple(modules)
        self.file_prefixes = tuple(file_prefixes)

    def __call__(self, frame: Frame) -> FrameKind | None:
        module = frame.module
        if module and any(module == m or module.startswith(m + ".") for m in self.modules):
            return FrameKind.RUNTIME_INTERNAL
        if frame.file_path and frame.file_path.startswith(self.file_prefixes):
            return FrameKind.RUNTIME_INTERNAL
        return None


class DependencyPathMatcher:
    """Tags frames whose source lives outside the caller's code."""

    def __init__(self, external_roots: Iterable[str] | None = None) -> None:
        if external_roots is None:
            external_roots = _external_roots()
        self.external_roots = tuple(external_roots)

    def __call__(self, frame: Frame) -> FrameKind | None:
        path = frame.file_path
        # some filenames come from exec() or frozen modules and have no real
        # location; they are not part of the user code
        if not path or path.startswith("<"):
            return FrameKind.DEPENDENCY_CODE
        normalized = path.replace(os.sep, "/")
        if any(marker in normalized for marker in DEPENDENCY_MARKERS):
            return FrameKind.DEPENDENCY_CODE
        path = os.path.normpath(path)
        if any(_under(path, root) for root in self.external_roots):
            return FrameKind.DEPENDENCY_CODE
        return None


class SourceRootMatcher:
    """Tags every frame outside the declared source roots as a dependency."""

    def __init__(self, source_roots: Iterable[str]) -> None:
        self.source_roots = tuple(os.path.abspath(r) for r in source_roots)

    def __call__(self, frame: Frame) -> FrameKind | None:
        if not self.source_roots or not frame.file_path:
            return None
        path = os.path.abspath(frame.file_path)
        if any(_under(path, root) for root in self.source_roots):
            return None
        return FrameKind.DEPENDENCY_CODE


def default_matchers(source_roots: Sequence[str] = ()) -> list[Matcher]:
    matchers: list[Matcher] = [RuntimeMatcher(), DependencyPathMatcher()]
    if source_roots:
        matchers.append(SourceRootMatcher(source_roots))
    return matchers


class FrameClassifier:
    def __init__(self, matchers: Sequence[Matcher] | None = None) -> None:
        self.matchers = list(default_matchers() if matchers is None else matchers)

    @classmethod
    def from_settings(cls, settings: Settings) -> FrameClassifier:
        return cls(list(settings.extra_matchers) + default_matchers(settings.source_roots))

    def classify(self, frame: Frame) -> FrameKind:
        if not frame.is_resolved:
            return FrameKind.UNKNOWN
        for matcher in self.matchers:
            try:
                kind = matcher(frame)
            except Exception as e:
                logger.debug("matcher %r failed on %r: %r", matcher, frame.symbol_name, e)
                continue
            if kind is not None:
                return kind
        return FrameKind.USER_CODE

    def tag(self, backtrace: Backtrace) -> Backtrace:
        return Backtrace(tuple(f.with_kind(self.classify(f)) for f in backtrace))

    def process(self, backtrace: Backtrace) -> Backtrace:
        return trim(self.tag(backtrace))


def trim(backtrace: Backtrace) -> Backtrace:
    """Drop the outermost run of runtime frames.

    Only a suffix is ever removed, and at least the innermost frame is kept.
    Without any runtime frame nothing is removed.
    """
    frames = backtrace.frames
    cutoff = len(frames)
    while cutoff > 0 and frames[cutoff - 1].kind is FrameKind.RUNTIME_INTERNAL:
        cutoff -= 1
    if cutoff == len(frames):
        return backtrace
    return Backtrace(frames[: max(cutoff, 1)])
