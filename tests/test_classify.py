"""Tests for frame classification and trimming."""

import threading

import pytest

from prettyfault.classify import (
    DependencyPathMatcher,
    FrameClassifier,
    RuntimeMatcher,
    SourceRootMatcher,
    trim,
)
from prettyfault.frames import Backtrace, Frame, FrameKind, FrameResolver, capture_traceback
from prettyfault.settings import Settings

USER = FrameKind.USER_CODE
DEP = FrameKind.DEPENDENCY_CODE
RUNTIME = FrameKind.RUNTIME_INTERNAL


def make_frame(name, module="app", path="/work/app.py", line=10, address=0x1000):
    return Frame(address=address, symbol_name=name, file_path=path, line=line, module=module)


def fault_backtrace():
    return Backtrace(
        (
            make_frame("user_fn"),
            make_frame("dep_fn", module="dep", path="/venv/lib/site-packages/dep/core.py"),
            make_frame("runtime_dispatch", module="prettyfault.hook"),
            make_frame("runtime_print", module="prettyfault.render"),
            make_frame("runtime_entry", module="threading", path="/usr/lib/threading.py"),
        )
    )


@pytest.fixture
def classifier():
    return FrameClassifier([RuntimeMatcher(), DependencyPathMatcher(external_roots=())])


def test_runtime_matcher():
    matcher = RuntimeMatcher()

    assert matcher(make_frame("run", module="threading")) is RUNTIME
    assert matcher(make_frame("hook", module="prettyfault.hook")) is RUNTIME
    assert matcher(make_frame("call", module="_pytest.python")) is RUNTIME
    assert matcher(make_frame("x", module=None, path="<frozen runpy>")) is RUNTIME
    assert matcher(make_frame("x", module="prettyfaultish")) is None
    assert matcher(make_frame("x", module="app")) is None


def test_dependency_path_matcher():
    matcher = DependencyPathMatcher(external_roots=["/usr/lib/python3.12"])

    assert matcher(make_frame("f", path="/venv/lib/python3.12/site-packages/a.py")) is DEP
    assert matcher(make_frame("f", path="/usr/lib/python3/dist-packages/a.py")) is DEP
    assert matcher(make_frame("f", path="/usr/lib/python3.12/json/decoder.py")) is DEP
    assert matcher(make_frame("f", path="<string>")) is DEP
    assert matcher(make_frame("f", path=None)) is DEP
    assert matcher(make_frame("f", path="/usr/lib/python3.12x/a.py")) is None
    assert matcher(make_frame("f", path="/work/app.py")) is None


def test_source_root_matcher(tmp_path):
    matcher = SourceRootMatcher([str(tmp_path)])

    assert matcher(make_frame("f", path=str(tmp_path / "pkg" / "mod.py"))) is None
    assert matcher(make_frame("f", path="/elsewhere/mod.py")) is DEP
    assert matcher(make_frame("f", path=None)) is None


def test_classify_defaults_to_user_code(classifier):
    assert classifier.classify(make_frame("main")) is USER


def test_unresolved_frame_stays_unknown(classifier):
    assert classifier.classify(Frame(address=0x10)) is FrameKind.UNKNOWN


def test_first_matching_rule_wins():
    """Test that matchers run in order and the first answer is used."""
    always_dep = lambda frame: DEP  # noqa: E731
    always_runtime = lambda frame: RUNTIME  # noqa: E731

    assert FrameClassifier([always_dep, always_runtime]).classify(make_frame("f")) is DEP
    assert FrameClassifier([lambda f: None, always_runtime]).classify(make_frame("f")) is RUNTIME


def test_failing_matcher_is_skipped():
    """Test that a matcher raising on one frame falls through to the next rule."""

    def picky(frame):
        if frame.symbol_name == "dep_fn":
            raise RuntimeError("bad rule")
        return None

    classifier = FrameClassifier([picky, DependencyPathMatcher(external_roots=())])
    dep = make_frame("dep_fn", module="dep", path="/venv/lib/site-packages/dep/core.py")

    assert classifier.classify(dep) is DEP
    assert classifier.classify(make_frame("user_fn")) is USER


def test_from_settings_uses_source_roots_and_extra_matchers(tmp_path):
    def vendored(frame):
        return DEP if frame.symbol_name == "vendored" else None

    settings = Settings(source_roots=(str(tmp_path),), extra_matchers=(vendored,))
    classifier = FrameClassifier.from_settings(settings)

    inside = make_frame("mine", path=str(tmp_path / "a.py"))
    assert classifier.classify(inside) is USER
    assert classifier.classify(make_frame("other", path="/other/a.py")) is DEP
    assert classifier.classify(make_frame("vendored", path=str(tmp_path / "v.py"))) is DEP


def test_trim_scenario(classifier):
    """Test that the outer runtime run is removed, keeping user and dependency frames."""
    trimmed = classifier.process(fault_backtrace())

    assert trimmed.symbols == ["user_fn", "dep_fn"]
    assert [f.kind for f in trimmed] == [USER, DEP]


def test_trim_is_idempotent(classifier):
    once = classifier.process(fault_backtrace())
    twice = classifier.process(once)

    assert twice == once


def test_trim_without_runtime_frames_keeps_everything(classifier):
    """Test that a backtrace without runtime frames is left alone."""
    backtrace = classifier.tag(
        Backtrace((make_frame("a"), make_frame("b", path="<string>")))
    )

    assert trim(backtrace) == backtrace


def test_trim_keeps_runtime_frames_in_the_middle(classifier):
    backtrace = Backtrace(
        (
            make_frame("inner"),
            make_frame("dispatch", module="threading"),
            make_frame("outer"),
        )
    )

    assert classifier.process(backtrace).symbols == ["inner", "dispatch", "outer"]


def test_trim_keeps_innermost_frame(classifier):
    """Test that trimming never removes the whole backtrace."""
    backtrace = Backtrace(
        (
            make_frame("a", module="runpy"),
            make_frame("b", module="runpy"),
        )
    )

    trimmed = classifier.process(backtrace)
    assert trimmed.symbols == ["a"]
    assert classifier.process(trimmed) == trimmed


def test_trim_empty_backtrace():
    assert trim(Backtrace()) == Backtrace()


def test_thread_bootstrap_frames_are_trimmed(monkeypatch):
    """Test that Thread.run and the bootstrap frames are cut from a thread fault."""
    caught = []
    monkeypatch.setattr(threading, "excepthook", caught.append)

    def worker_target():
        raise LookupError("missing")

    t = threading.Thread(target=worker_target)
    t.start()
    t.join()

    assert len(caught) == 1
    raw = capture_traceback(caught[0].exc_traceback)
    full = FrameResolver().resolve(raw)
    trimmed = FrameClassifier().process(full)

    assert len(full) > len(trimmed)
    assert trimmed[0].symbol_name.endswith("worker_target")
    assert all(f.kind is not RUNTIME for f in trimmed)
