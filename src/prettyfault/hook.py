"""Process-wide fault hook."""

from __future__ import annotations

import faulthandler
import logging
import sys
import threading
from contextlib import contextmanager
from types import TracebackType

import colorama

from .errors import OutputSinkFailure, ReentrantFault
from .frames import capture_stack, capture_traceback, raw_addresses
from .output import write_fallback, write_report
from .render import Fault, ReportRenderer, describe_exception
from .settings import Settings

logger = logging.getLogger(__name__)


class _Installation:
    """Holds the settings the hook was installed with.

    The settings object itself is immutable; installing again swaps the
    reference in one assignment, so a reporting thread always sees a whole
    snapshot.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.settings: Settings | None = None
        self.original_excepthook = None
        self.original_threading_excepthook = None
        self.faulthandler_enabled = False


_installation = _Installation()
_local = threading.local()


def current_settings() -> Settings | None:
    return _installation.settings


def is_installed() -> bool:
    return _installation.settings is not None


def install(settings: Settings | None = None) -> None:
    """Install the fault hook for the main thread and all other threads.

    Calling this again replaces the settings; the hook itself is only
    registered once.
    """
    if settings is None:
        settings = Settings.auto()
    colorama.just_fix_windows_console()
    with _installation.lock:
        if _installation.settings is None:
            _installation.original_excepthook = sys.excepthook
            _installation.original_threading_excepthook = threading.excepthook
        _installation.settings = settings
        sys.excepthook = _excepthook
        threading.excepthook = _threading_excepthook
        if settings.native_faults and not faulthandler.is_enabled():
            out = settings.out if settings.out is not None else sys.stderr
            try:
                faulthandler.enable(file=out, all_threads=True)
                _installation.faulthandler_enabled = True
            except (OSError, ValueError, AttributeError) as e:
                # faulthandler needs a stream backed by a real file descriptor
                logger.debug("cannot enable faulthandler on %r: %r", out, e)


def debug_install() -> None:
    """Install the fault hook with debug settings."""
    install(Settings.debug())


def uninstall() -> None:
    """Restore the hooks that were active before :func:`install`."""
    with _installation.lock:
        if _installation.settings is None:
            return
        if sys.excepthook is _excepthook:
            sys.excepthook = _installation.original_excepthook or sys.__excepthook__
        if threading.excepthook is _threading_excepthook:
            threading.excepthook = (
                _installation.original_threading_excepthook or threading.__excepthook__
            )
        if _installation.faulthandler_enabled:
            faulthandler.disable()
            _installation.faulthandler_enabled = False
        _installation.settings = None
        _installation.original_excepthook = None
        _installation.original_threading_excepthook = None


def _passthrough(exc: BaseException | None) -> bool:
    return isinstance(exc, (KeyboardInterrupt, SystemExit)) or exc is None


def _excepthook(exc_type, exc_value, exc_tb) -> None:
    settings = _installation.settings
    if settings is None or _passthrough(exc_value):
        original = _installation.original_excepthook or sys.__excepthook__
        original(exc_type, exc_value, exc_tb)
        return
    try:
        report_exception(exc_value, settings, tb=exc_tb)
    except OutputSinkFailure as e:
        logger.debug("%s", e)
        sys.__excepthook__(exc_type, exc_value, exc_tb)


def _threading_excepthook(args) -> None:
    settings = _installation.settings
    if settings is None or _passthrough(args.exc_value):
        original = _installation.original_threading_excepthook or threading.__excepthook__
        original(args)
        return
    thread_name = args.thread.name if args.thread is not None else None
    try:
        report_exception(args.exc_value, settings, tb=args.exc_traceback, thread_name=thread_name)
    except OutputSinkFailure as e:
        logger.debug("%s", e)
        threading.__excepthook__(args)


def report_exception(
    exc: BaseException,
    settings: Settings | None = None,
    *,
    tb: TracebackType | None = None,
    thread_name: str | None = None,
) -> None:
    """Render and write a report for ``exc``.

    Raises :class:`OutputSinkFailure` when the report cannot be written.
    Any other failure while building the report produces the raw fallback
    instead.
    """
    if settings is None:
        settings = _installation.settings or Settings.auto()
    if tb is None:
        tb = exc.__traceback__

    try:
        with _reporting(exc):
            text = ReportRenderer(settings).render(
                Fault.from_exception(exc, tb, thread_name), settings.out
            )
    except Exception as e:
        _double_fault(exc, tb, e, settings)
        return

    write_report(text, settings.out)


def report_stack(message: str, settings: Settings | None = None) -> None:
    """Write a report for the caller's current stack.

    Failures are handled as in :func:`report_exception`.
    """
    if settings is None:
        settings = _installation.settings or Settings.auto()
    frame = sys._getframe(1)

    try:
        with _reporting():
            text = ReportRenderer(settings).render(
                Fault.from_stack(message, frame), settings.out
            )
    except Exception as e:
        logger.debug("fault while reporting stack %r: %r", message, e)
        try:
            addresses = raw_addresses(capture_stack(frame))
        except Exception:
            addresses = []
        write_fallback(message, addresses, e, settings.out)
        return

    write_report(text, settings.out)


@contextmanager
def _reporting(exc: BaseException | None = None):
    """Mark this thread as reporting; nested use raises :class:`ReentrantFault`."""
    if getattr(_local, "reporting", False):
        raise ReentrantFault(exc)
    _local.reporting = True
    try:
        yield
    finally:
        _local.reporting = False


def _double_fault(
    exc: BaseException, tb: TracebackType | None, error: Exception, settings: Settings
) -> None:
    logger.debug("fault while reporting %r: %r", exc, error)
    try:
        message = describe_exception(exc)
    except Exception:
        message = type(exc).__name__
    try:
        addresses = raw_addresses(capture_traceback(tb))
    except Exception:
        addresses = []
    write_fallback(message, addresses, error, settings.out)
