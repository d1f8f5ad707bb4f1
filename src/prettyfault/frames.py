"""Stack capture and symbol resolution."""

from __future__ import annotations

import enum
import logging
import sys
import time
import traceback
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from types import CodeType, FrameType, TracebackType

from .errors import SymbolResolutionFailure

logger = logging.getLogger(__name__)

#: Per-frame resolution budget in seconds.
DEFAULT_BUDGET = 0.05
DEFAULT_MAX_FRAMES = 512


class FrameKind(enum.Enum):
    USER_CODE = "user"
    DEPENDENCY_CODE = "dependency"
    RUNTIME_INTERNAL = "runtime"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RawFrame:
    """A stack entry as captured, before any symbol lookup."""

    address: int
    code: CodeType | None = None
    lasti: int = -1
    lineno: int | None = None
    module: str | None = None


@dataclass(frozen=True)
class Frame:
    """A resolved stack entry."""

    address: int
    symbol_name: str | None = None
    file_path: str | None = None
    line: int | None = None
    column: int | None = None
    module: str | None = None
    kind: FrameKind = FrameKind.UNKNOWN

    @property
    def is_resolved(self) -> bool:
        return self.symbol_name is not None or self.file_path is not None

    def with_kind(self, kind: FrameKind) -> Frame:
        return replace(self, kind=kind)


@dataclass(frozen=True)
class Backtrace:
    """Resolved frames, innermost (closest to the fault) first."""

    frames: tuple[Frame, ...] = ()

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self) -> Iterator[Frame]:
        return iter(self.frames)

    def __getitem__(self, index):
        return self.frames[index]

    @property
    def symbols(self) -> list[str | None]:
        return [f.symbol_name for f in self.frames]


def _raw_from_frame(frame: FrameType, lasti: int, lineno: int | None) -> RawFrame:
    code = frame.f_code
    try:
        module = frame.f_globals.get("__name__")
    except Exception:
        module = None
    return RawFrame(
        address=id(code) + max(lasti, 0),
        code=code,
        lasti=lasti,
        lineno=lineno,
        module=module if isinstance(module, str) else None,
    )


def capture_traceback(tb: TracebackType | None) -> list[RawFrame]:
    """Collect raw frames from a traceback, innermost first."""
    raw = [_raw_from_frame(t.tb_frame, t.tb_lasti, t.tb_lineno) for t in _walk(tb)]
    raw.reverse()
    return raw


def _walk(tb: TracebackType | None) -> Iterator[TracebackType]:
    while tb is not None:
        yield tb
        tb = tb.tb_next


def capture_stack(frame: FrameType | None = None, limit: int | None = None) -> list[RawFrame]:
    """Collect raw frames of the live stack, innermost first.

    Starts at the caller of this function unless ``frame`` is given.
    """
    if frame is None:
        frame = sys._getframe(1)
    raw = []
    for f, lineno in traceback.walk_stack(frame):
        raw.append(_raw_from_frame(f, f.f_lasti, lineno))
        if limit is not None and len(raw) >= limit:
            break
    return raw


def raw_addresses(raw_frames: Iterable[RawFrame]) -> list[int]:
    return [r.address for r in raw_frames]


def _column(code: CodeType, lasti: int) -> int | None:
    positions = getattr(code, "co_positions", None)
    if positions is None or lasti < 0:
        return None
    # one entry per 2-byte code unit
    for i, (_, _, col, _) in enumerate(positions()):
        if i == lasti // 2:
            return col + 1 if col is not None else None
    return None


class FrameResolver:
    """Turns raw frames into symbolic :class:`Frame` records.

    Resolution never fails as a whole: a frame that cannot be resolved, or
    that is reached after the time budget ran out, becomes an address-only
    frame of kind ``UNKNOWN``.
    """

    def __init__(self, budget: float = DEFAULT_BUDGET, max_frames: int = DEFAULT_MAX_FRAMES):
        self.budget = budget
        self.max_frames = max_frames

    def resolve(self, raw_frames: Iterable[RawFrame]) -> Backtrace:
        raw_frames = list(raw_frames)
        deadline = time.monotonic() + self.budget * max(len(raw_frames), 1)
        frames = []
        for i, raw in enumerate(raw_frames):
            if i >= self.max_frames or time.monotonic() > deadline:
                frames.append(Frame(address=raw.address))
                continue
            frames.append(self.resolve_one(raw))
        return Backtrace(tuple(frames))

    def resolve_one(self, raw: RawFrame) -> Frame:
        try:
            return self._resolve(raw)
        except SymbolResolutionFailure as e:
            logger.debug("%s", e)
        except Exception as e:
            logger.debug("cannot resolve 0x%x: %r", raw.address, e)
        return Frame(address=raw.address)

    def _resolve(self, raw: RawFrame) -> Frame:
        code = raw.code
        if code is None:
            raise SymbolResolutionFailure(raw.address, "no code object")
        name = getattr(code, "co_qualname", None) or code.co_name
        line = raw.lineno if raw.lineno is not None else code.co_firstlineno
        return Frame(
            address=raw.address,
            symbol_name=name,
            file_path=code.co_filename or None,
            line=line,
            column=_column(code, raw.lasti),
            module=raw.module,
        )
