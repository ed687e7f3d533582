"""Tests for the SIGCHLD reaper."""

import os
import signal
import threading

from conftest import posix_only, wait_for
from procvisor.reaper import Reaper, default_reaper


def _fork_exit(code: int) -> int:
    pid = os.fork()
    if pid == 0:
        os._exit(code)
    return pid


@posix_only
class TestReaper:
    """Tests for Reaper."""

    def test_install_is_idempotent(self):
        reaper = Reaper()
        try:
            assert reaper.install()
            handler = signal.getsignal(signal.SIGCHLD)
            assert reaper.install()
            assert signal.getsignal(signal.SIGCHLD) is handler
            assert reaper.installed
        finally:
            reaper.uninstall()

    def test_uninstall_restores_previous_handler(self):
        previous = signal.getsignal(signal.SIGCHLD)
        reaper = Reaper()
        reaper.install()
        reaper.uninstall()

        assert not reaper.installed
        assert signal.getsignal(signal.SIGCHLD) == previous

    def test_uninstall_without_install(self):
        Reaper().uninstall()

    def test_install_off_main_thread_polls(self):
        handler = signal.getsignal(signal.SIGCHLD)
        reaper = Reaper()
        result = []
        thread = threading.Thread(target=lambda: result.append(reaper.install()))
        thread.start()
        thread.join()

        try:
            assert result == [False]
            assert reaper.installed
            assert reaper.polling
            assert signal.getsignal(signal.SIGCHLD) == handler

            pid = _fork_exit(4)
            assert wait_for(lambda: reaper.last_pid == pid)
            assert reaper.last_exit_code == 4
        finally:
            reaper.uninstall()

        assert not reaper.installed
        assert not reaper.polling
        assert signal.getsignal(signal.SIGCHLD) == handler

    def test_drain_without_children(self):
        reaper = Reaper()
        assert reaper.drain() == 0
        assert reaper.last_status is None
        assert reaper.last_exit_code is None

    def test_drain_collects_exit_status(self):
        reaper = Reaper()
        pid = _fork_exit(3)

        assert wait_for(lambda: reaper.drain() > 0 or reaper.last_pid == pid)
        assert reaper.last_pid == pid
        assert reaper.last_exit_code == 3
        assert reaper.reaped == 1

    def test_handler_reaps_on_sigchld(self, reaper):
        pid = _fork_exit(5)

        assert wait_for(lambda: reaper.last_pid == pid)
        assert reaper.last_exit_code == 5
        # Nothing left for waitpid
        assert reaper.drain() == 0

    def test_drain_collects_several_children(self):
        reaper = Reaper()
        pids = {_fork_exit(0) for _ in range(3)}

        assert wait_for(lambda: (reaper.drain(), reaper.reaped)[1] >= 3)
        assert reaper.reaped == 3
        assert reaper.last_pid in pids

    def test_redundant_instances(self):
        first = Reaper()
        second = Reaper()
        first.install()
        second.install()
        try:
            pid = _fork_exit(7)
            assert wait_for(lambda: pid in (first.last_pid, second.last_pid))
            total = first.reaped + second.reaped
            assert total == 1
        finally:
            second.uninstall()
            first.uninstall()

    def test_uninstall_out_of_order(self):
        previous = signal.getsignal(signal.SIGCHLD)
        first = Reaper()
        second = Reaper()
        first.install()
        second.install()
        try:
            first.uninstall()
            assert not first.installed
            assert signal.getsignal(signal.SIGCHLD) == second._on_sigchld
        finally:
            second.uninstall()

        # first's handler is not brought back once first is uninstalled
        assert signal.getsignal(signal.SIGCHLD) == previous

    def test_default_reaper_is_shared(self):
        assert default_reaper() is default_reaper()
