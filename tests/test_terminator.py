"""Tests for ProcessTerminator."""

import errno
import os
import signal

import pytest

from conftest import FakeInspector, posix_only, wait_for
from procvisor.inspector import default_inspector
from procvisor.terminator import ProcessTerminator, send_signal


@pytest.fixture
def kills(monkeypatch):
    """Record os.kill calls instead of sending signals. Pids in ``dead`` raise ESRCH."""
    calls: list[tuple[int, int]] = []
    dead: set[int] = set()

    def _kill(pid, sig):
        calls.append((pid, sig))
        if pid in dead:
            raise ProcessLookupError(errno.ESRCH, "No such process")

    monkeypatch.setattr(os, "kill", _kill)
    return calls, dead


class TestSendSignal:
    """Tests for send_signal."""

    def test_delivered(self, kills):
        calls, _ = kills
        outcome = send_signal(10, signal.SIGTERM)

        assert outcome.ok
        assert outcome.code == 0
        assert calls == [(10, signal.SIGTERM)]

    def test_no_such_process(self, kills):
        _, dead = kills
        dead.add(10)
        outcome = send_signal(10)

        assert not outcome.ok
        assert outcome.code == -1
        assert outcome.errno == errno.ESRCH

    def test_permission_denied(self, monkeypatch):
        def _kill(pid, sig):
            raise PermissionError(errno.EPERM, "Operation not permitted")

        monkeypatch.setattr(os, "kill", _kill)
        outcome = send_signal(1)

        assert outcome.errno == errno.EPERM

    @pytest.mark.parametrize("pid", [0, -1, -42])
    def test_refuses_group_pids(self, kills, pid):
        calls, _ = kills
        assert not send_signal(pid).ok
        assert calls == []


class TestStopOrdering:
    """Tests for stop() with a scripted process chain."""

    def test_descendants_before_root(self, kills):
        calls, _ = kills
        inspector = FakeInspector()
        inspector.children = {10: 11, 11: 12}

        outcome = ProcessTerminator(inspector).stop(10)

        assert [pid for pid, _ in calls] == [11, 12, 10]
        assert all(sig == signal.SIGTERM for _, sig in calls)
        assert outcome.ok
        assert outcome.pid == 10

    def test_descendant_failures_are_ignored(self, kills):
        calls, dead = kills
        dead.add(11)
        inspector = FakeInspector()
        inspector.children = {10: 11, 11: 12}

        outcome = ProcessTerminator(inspector).stop(10)

        assert [pid for pid, _ in calls] == [11, 12, 10]
        assert outcome.ok

    def test_root_failure_is_returned(self, kills):
        _, dead = kills
        dead.add(10)

        outcome = ProcessTerminator(FakeInspector()).stop(10)

        assert outcome.code == -1
        assert outcome.errno == errno.ESRCH

    def test_custom_signal(self, kills):
        calls, _ = kills
        ProcessTerminator(FakeInspector(), sig=signal.SIGKILL).stop(10)
        assert calls == [(10, signal.SIGKILL)]

    def test_root_zero_signals_nothing(self, kills):
        calls, _ = kills
        inspector = FakeInspector()
        # What /proc reports: init is the child of pid 0
        inspector.children = {0: 1, 1: 130}

        outcome = ProcessTerminator(inspector).stop(0)

        assert calls == []
        assert outcome.code == -1
        assert outcome.errno == errno.ESRCH

    @posix_only
    def test_root_zero_with_platform_inspector(self, kills):
        calls, _ = kills

        outcome = ProcessTerminator(default_inspector()).stop(0)

        assert calls == []
        assert outcome.code == -1

    def test_cyclic_report_terminates(self, kills):
        calls, _ = kills
        inspector = FakeInspector()
        inspector.children = {10: 11, 11: 10}

        ProcessTerminator(inspector).stop(10)

        assert [pid for pid, _ in calls] == [11, 10]


@posix_only
class TestStopLiveChain:
    """stop() against real processes."""

    def test_stops_root_and_subprocess(self, launcher, sh_spec):
        inspector = default_inspector()
        root = launcher.launch(sh_spec("sleep 30; true"))

        assert wait_for(lambda: len(inspector.children_of(root)) == 1)
        (child,) = inspector.children_of(root)

        outcome = ProcessTerminator(inspector).stop(root)

        assert outcome.code == 0
        assert wait_for(lambda: not inspector.is_running(root), timeout=10)
        assert wait_for(lambda: not inspector.is_running(child), timeout=10)

    def test_stop_twice_on_dead_chain(self, launcher, sh_spec):
        inspector = default_inspector()
        root = launcher.launch(sh_spec("sleep 30; true"))
        assert wait_for(lambda: len(inspector.children_of(root)) == 1)

        terminator = ProcessTerminator(inspector)
        assert terminator.stop(root).code == 0
        assert wait_for(lambda: not inspector.is_running(root), timeout=10)
        # Reaped by the launcher's reaper, so the pid is gone entirely
        assert wait_for(lambda: terminator.stop(root).code == -1, timeout=5)

        second = terminator.stop(root)
        third = terminator.stop(root)
        assert second.code == -1
        assert third.code == -1
        assert third.errno == errno.ESRCH
