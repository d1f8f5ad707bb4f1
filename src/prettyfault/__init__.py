"""Pretty, source-annotated reports for unhandled exceptions.

The most common way to use it is to call :func:`install`, which replaces
``sys.excepthook`` and ``threading.excepthook``. Normally the backtrace
shows source snippets; under ``python -O`` only a short report is printed
unless ``PRETTYFAULT_BACKTRACE`` asks for more.

    import prettyfault
    prettyfault.install()

For more configuration see :class:`Settings`.
"""

from __future__ import annotations

from .classify import FrameClassifier
from .frames import Backtrace, Frame, FrameKind, FrameResolver
from .hook import (
    current_settings,
    debug_install,
    install,
    is_installed,
    report_exception,
    report_stack,
    uninstall,
)
from .render import Fault, ReportRenderer, format_exception, format_fault
from .settings import Settings, Verbosity
from .source import SourceSnippet, load_snippet
from .theme import ColorMode, Theme

__version__ = "0.1.0"
__all__ = [
    "Backtrace",
    "ColorMode",
    "Fault",
    "Frame",
    "FrameClassifier",
    "FrameKind",
    "FrameResolver",
    "ReportRenderer",
    "Settings",
    "SourceSnippet",
    "Theme",
    "Verbosity",
    "current_settings",
    "debug_install",
    "format_exception",
    "format_fault",
    "install",
    "is_installed",
    "load_snippet",
    "report_exception",
    "report_stack",
    "uninstall",
]
