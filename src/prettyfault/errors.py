"""Failure modes of the reporting pipeline."""

from __future__ import annotations


class FaultReportError(Exception):
    """Base class for errors raised while building a fault report."""


class SymbolResolutionFailure(FaultReportError):
    """A single frame could not be resolved to a symbol."""

    def __init__(self, address: int, reason: str) -> None:
        super().__init__(f"cannot resolve 0x{address:x}: {reason}")
        self.address = address
        self.reason = reason


class SourceUnavailable(FaultReportError):
    """No source snippet can be produced for a frame."""

    def __init__(self, file_path: str | None, line: int | None, reason: str) -> None:
        super().__init__(f"no source for {file_path}:{line}: {reason}")
        self.file_path = file_path
        self.line = line
        self.reason = reason


class ReentrantFault(FaultReportError):
    """A fault happened while a fault report was being produced."""

    def __init__(self, original: BaseException | None = None) -> None:
        super().__init__("fault raised while reporting a fault")
        self.original = original


class OutputSinkFailure(FaultReportError):
    """The report could not be written to its stream."""
