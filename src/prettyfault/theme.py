"""Color theme and terminal styling."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import TextIO

from colorama import Fore, Style


class ColorMode(enum.Enum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


@dataclass(frozen=True)
class Theme:
    """ANSI codes used for each part of a report."""

    header: str = Style.BRIGHT
    message: str = Fore.YELLOW
    location: str = Style.BRIGHT
    title: str = Style.BRIGHT
    user_symbol: str = Fore.GREEN
    dependency_symbol: str = Fore.CYAN
    unknown_symbol: str = Fore.RED
    lineno: str = Fore.YELLOW
    context_line: str = Style.DIM
    highlight_line: str = Style.BRIGHT
    marker: str = Fore.RED + Style.BRIGHT
    omitted: str = Style.DIM
    hint: str = Style.DIM


def color_enabled(mode: ColorMode, stream: TextIO | None) -> bool:
    """Decide whether escape codes should be emitted for ``stream``."""
    if mode is ColorMode.ALWAYS:
        return True
    if mode is ColorMode.NEVER:
        return False
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    try:
        return bool(stream is not None and stream.isatty())
    except Exception:
        return False


class Styler:
    """Wraps text in theme codes, or passes it through when disabled."""

    def __init__(self, theme: Theme, enabled: bool) -> None:
        self.theme = theme
        self.enabled = enabled

    def __call__(self, text: object, *roles: str) -> str:
        text = str(text)
        if not self.enabled or not roles:
            return text
        codes = "".join(getattr(self.theme, role) for role in roles)
        return f"{codes}{text}{Style.RESET_ALL}"
