"""Pytest plugin that attaches a prettyfault report to failed tests."""

from __future__ import annotations

import logging

import pytest

from .render import Fault, ReportRenderer
from .settings import Settings, Verbosity
from .theme import ColorMode

logger = logging.getLogger(__name__)


def pytest_addoption(parser):
    group = parser.getgroup("prettyfault")
    group.addoption(
        "--prettyfault",
        action="store",
        default=None,
        choices=["minimal", "medium", "full"],
        help="attach a prettyfault report of the given verbosity to failed tests",
    )


def pytest_configure(config):
    """Register the no_prettyfault marker."""
    config.addinivalue_line(
        "markers",
        "no_prettyfault: do not attach a prettyfault report for this test",
    )


def render_failure(exc: BaseException, tb, level: str) -> str:
    """Uncolored report for a failed test."""
    verbosity = Verbosity.parse(level)
    settings = Settings(
        verbosity=verbosity,
        lib_verbosity=min(verbosity, Verbosity.MEDIUM),
        color=ColorMode.NEVER,
    )
    return ReportRenderer(settings).render(Fault.from_exception(exc, tb))


def attach_report(report, exc: BaseException, tb, level: str) -> None:
    """Add the report section, never masking the test failure itself."""
    try:
        text = render_failure(exc, tb, level)
    except Exception as e:
        logger.debug("could not render report for %r: %r", exc, e)
        return
    report.sections.append(("prettyfault", text))


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()

    # Only test call failures, not setup/teardown
    if report.when != "call" or not report.failed:
        return
    if item.get_closest_marker("no_prettyfault"):
        return
    level = item.config.getoption("prettyfault", None)
    if level is None or call.excinfo is None:
        return

    attach_report(report, call.excinfo.value, call.excinfo.tb, level)
