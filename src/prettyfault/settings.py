"""Configuration for fault reports."""

from __future__ import annotations

import dataclasses
import enum
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TextIO

from .theme import ColorMode, Theme

if TYPE_CHECKING:
    from .frames import Frame, FrameKind

ENV_VAR = "PRETTYFAULT_BACKTRACE"


class Verbosity(enum.IntEnum):
    """How much of a backtrace is shown, ordered from least to most."""

    MINIMAL = 0  # user frames only, other frames collapsed
    MEDIUM = 1  # every frame, snippets for user code
    FULL = 2  # every frame with snippets

    @classmethod
    def from_env(cls) -> Verbosity:
        """Get the verbosity level from the ``PRETTYFAULT_BACKTRACE`` env variable."""
        value = os.environ.get(ENV_VAR, "")
        if value == "full":
            return cls.FULL
        if value and value != "0":
            return cls.MEDIUM
        return cls.MINIMAL

    @classmethod
    def parse(cls, value: str | Verbosity) -> Verbosity:
        if isinstance(value, Verbosity):
            return value
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(
                f"verbosity must be 'minimal', 'medium' or 'full', got {value!r}"
            ) from None


@dataclass(frozen=True)
class Settings:
    """Configuration for fault printing.

    Instances are immutable; derive variants with :meth:`replace`. The hook
    keeps the instance it was installed with, so every thread reporting a
    fault reads the same snapshot.
    """

    verbosity: Verbosity = Verbosity.MINIMAL
    lib_verbosity: Verbosity = Verbosity.MINIMAL
    message: str | None = None
    backtrace_first: bool = True
    most_recent_first: bool = True
    color: ColorMode = ColorMode.AUTO
    theme: Theme = field(default_factory=Theme)
    lib_allow_list: tuple[str, ...] = ()
    source_roots: tuple[str, ...] = ()
    context_lines: int = 2
    lineno_suffix: bool = False
    raw_backtrace: bool = False
    native_faults: bool = False
    out: TextIO | None = None  # None means sys.stderr at report time
    extra_matchers: tuple[Callable[[Frame], FrameKind | None], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "verbosity", Verbosity.parse(self.verbosity))
        object.__setattr__(self, "lib_verbosity", Verbosity.parse(self.lib_verbosity))
        if isinstance(self.color, str):
            object.__setattr__(self, "color", ColorMode(self.color))
        for name in ("lib_allow_list", "source_roots", "extra_matchers"):
            value = getattr(self, name)
            if isinstance(value, str):
                raise ValueError(f"{name} must be a sequence, not a single string")
            object.__setattr__(self, name, tuple(value))
        if self.context_lines < 0:
            raise ValueError("context_lines must be >= 0")

    @classmethod
    def new(cls, **changes: Any) -> Settings:
        """Settings driven by ``PRETTYFAULT_BACKTRACE``."""
        level = Verbosity.from_env()
        changes.setdefault("verbosity", level)
        changes.setdefault("lib_verbosity", level)
        return cls(**changes)

    @classmethod
    def debug(cls, **changes: Any) -> Settings:
        """Common settings for debugging."""
        changes.setdefault("verbosity", Verbosity.FULL)
        changes.setdefault("lib_verbosity", Verbosity.MEDIUM)
        return cls(**changes)

    @classmethod
    def auto(cls, **changes: Any) -> Settings:
        """``debug()`` normally, ``new()`` when running under ``python -O``."""
        if __debug__:
            return cls.debug(**changes)
        return cls.new(**changes)

    def replace(self, **changes: Any) -> Settings:
        return dataclasses.replace(self, **changes)

    def is_allow_listed(self, file_path: str | None) -> bool:
        if not file_path:
            return False
        path = os.path.normpath(file_path)
        for prefix in self.lib_allow_list:
            root = os.path.normpath(prefix)
            # whole path components only
            if path == root or path.startswith(root.rstrip(os.sep) + os.sep):
                return True
        return False
