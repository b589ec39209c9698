"""Tests for kill orchestration."""

import os
import signal
import subprocess
import sys

import psutil
import pytest

from procscope import killer
from procscope.errors import InvalidRequest
from procscope.killer import KillOrchestrator, matches_query
from procscope.models import KillFailure, ProcessSnapshot, ProcessStatus

# Well above any pid_max, so psutil always reports these as gone
GONE = 999_999_000


def snapshot_of(*records) -> ProcessSnapshot:
    return ProcessSnapshot(processes=tuple(records), collected_at_epoch_ms=0)


def orchestrator(*records, **kwargs) -> KillOrchestrator:
    snapshot = snapshot_of(*records)
    return KillOrchestrator(lambda: snapshot, **kwargs)


class TestMatchesQuery:
    """Tests for the query matcher."""

    def test_case_insensitive_name(self, make_record):
        """Test 'node' is matched by NODE, Node and nod."""
        record = make_record(10, name="node", cmd="")

        for query in ("NODE", "Node", "nod"):
            assert matches_query(record, query)

    def test_matches_cmd_pid_and_status(self, make_record):
        """Test the cmd, pid and status fields are searched too."""
        record = make_record(4242, name="x", cmd="/usr/bin/Python3 server.py", status=ProcessStatus.ZOMBIE)

        assert matches_query(record, "python3 SERVER")
        assert matches_query(record, "424")
        assert matches_query(record, "zomb")
        assert not matches_query(record, "ruby")

    def test_ignores_other_fields(self, make_record):
        """Test fields outside the match list are not searched."""
        record = make_record(1, name="a", cmd="b", exe="/opt/special/bin")

        assert not matches_query(record, "special")


class TestDirectKill:
    """Tests for kill_process."""

    def test_already_exited_pid_is_success(self):
        """Test killing a vanished pid reports it as killed."""
        result = orchestrator().kill_process(GONE)

        assert result.matched == 1
        assert result.attempted == 1
        assert result.killed == (GONE,)
        assert result.failed == ()

    def test_kill_twice_is_idempotent(self, spawn_sleeper, make_record):
        """Test a second kill of the same pid still succeeds."""
        proc = spawn_sleeper()
        orch = orchestrator(make_record(proc.pid))

        first = orch.kill_process(proc.pid)
        proc.wait(timeout=5.0)
        second = orch.kill_process(proc.pid)

        assert first.killed == (proc.pid,)
        assert second.killed == (proc.pid,)
        assert second.failed == ()

    def test_pid_missing_from_snapshot_is_still_targeted(self, spawn_sleeper):
        """Test the direct pid is signalled even when the snapshot missed it."""
        proc = spawn_sleeper()

        result = orchestrator().kill_process(proc.pid)

        assert result.killed == (proc.pid,)
        assert proc.wait(timeout=5.0) == -signal.SIGTERM

    def test_parent_with_children(self, spawn_sleeper, make_record):
        """Test R with children C1, C2 signals all three exactly once."""
        root, child1, child2, bystander = (spawn_sleeper() for _ in range(4))
        orch = orchestrator(
            make_record(root.pid),
            make_record(child1.pid, parent_pid=root.pid),
            make_record(child2.pid, parent_pid=root.pid),
            make_record(bystander.pid),
        )

        result = orch.kill_process(root.pid, include_children=True)

        assert result.matched == 1
        assert result.attempted == 3
        signalled = list(result.killed) + [f.pid for f in result.failed]
        assert sorted(signalled) == sorted([root.pid, child1.pid, child2.pid])
        # Children go before their parent
        assert result.killed[-1] == root.pid
        for proc in (root, child1, child2):
            proc.wait(timeout=5.0)
        assert bystander.poll() is None

    def test_without_children(self, spawn_sleeper, make_record):
        """Test include_children=False leaves descendants alone."""
        root, child = spawn_sleeper(), spawn_sleeper()
        orch = orchestrator(make_record(root.pid), make_record(child.pid, parent_pid=root.pid))

        result = orch.kill_process(root.pid, include_children=False)

        assert result.attempted == 1
        assert result.killed == (root.pid,)
        root.wait(timeout=5.0)
        assert child.poll() is None

    def test_grandchildren_are_included(self, make_record):
        """Test the closure is transitive."""
        orch = orchestrator(
            make_record(GONE + 1),
            make_record(GONE + 2, parent_pid=GONE + 1),
            make_record(GONE + 3, parent_pid=GONE + 2),
            make_record(GONE + 4, parent_pid=GONE + 3),
        )

        result = orch.kill_process(GONE + 1)

        assert result.attempted == 4
        assert result.killed == (GONE + 4, GONE + 3, GONE + 2, GONE + 1)

    def test_cyclic_parent_links_terminate(self, make_record):
        """Test a parent cycle does not loop and signals each pid once."""
        orch = orchestrator(
            make_record(GONE + 1, parent_pid=GONE + 2),
            make_record(GONE + 2, parent_pid=GONE + 1),
        )

        result = orch.kill_process(GONE + 1)

        assert result.attempted == 2
        assert sorted(result.killed) == [GONE + 1, GONE + 2]

    def test_force_sends_sigkill(self, spawn_sleeper, make_record):
        """Test force uses the unconditional signal."""
        proc = spawn_sleeper()

        result = orchestrator(make_record(proc.pid)).kill_process(proc.pid, force=True)

        assert result.killed == (proc.pid,)
        expected = -signal.SIGKILL if hasattr(signal, "SIGKILL") else None
        code = proc.wait(timeout=5.0)
        if expected is not None:
            assert code == expected

    @pytest.mark.parametrize("pid", [0, -5])
    def test_rejects_non_positive_pid(self, pid):
        """Test non-positive pids are rejected before any signal."""
        with pytest.raises(InvalidRequest):
            orchestrator().kill_process(pid)

    def test_refuses_own_process(self):
        """Test the caller's own pid is reported as a failure, not signalled."""
        result = orchestrator().kill_process(os.getpid())

        assert result.attempted == 1
        assert result.killed == ()
        assert result.failed == (KillFailure(os.getpid(), "refusing to signal own process"),)

    def test_detects_pid_reuse(self, spawn_sleeper, make_record):
        """Test a live process with a different start time is not signalled."""
        proc = spawn_sleeper()

        result = orchestrator(make_record(proc.pid, create_time=1.0)).kill_process(proc.pid)

        assert result.killed == ()
        assert result.failed == (KillFailure(proc.pid, "pid reused by a different process"),)
        assert proc.poll() is None

    def test_matching_create_time_is_signalled(self, spawn_sleeper, make_record):
        """Test the reuse guard passes the original process."""
        proc = spawn_sleeper()
        created = psutil.Process(proc.pid).create_time()

        result = orchestrator(make_record(proc.pid, create_time=created)).kill_process(proc.pid)

        assert result.killed == (proc.pid,)


class TestFailureIsolation:
    """Tests for per-target failure handling."""

    def test_permission_denied_does_not_abort_batch(self, monkeypatch, make_record):
        """Test one denied target is reported while the rest succeed."""
        denied_pid = GONE + 2
        real_process = psutil.Process

        def fake_process(pid):
            if pid == denied_pid:
                raise psutil.AccessDenied(pid)
            return real_process(pid)

        monkeypatch.setattr(killer.psutil, "Process", fake_process)
        orch = orchestrator(
            make_record(GONE + 1),
            make_record(denied_pid, parent_pid=GONE + 1),
            make_record(GONE + 3, parent_pid=GONE + 1),
        )

        result = orch.kill_process(GONE + 1)

        assert result.attempted == 3
        assert result.failed == (KillFailure(denied_pid, "permission denied"),)
        assert sorted(result.killed) == [GONE + 1, GONE + 3]
        assert not result.ok

    def test_unexpected_os_error_is_scoped_to_pid(self, monkeypatch, make_record):
        """Test other signal errors become a failure reason for that pid."""

        class Broken:
            def __init__(self, pid):
                self.pid = pid

            def terminate(self):
                raise OSError("signal delivery failed")

        monkeypatch.setattr(killer.psutil, "Process", Broken)

        result = orchestrator(make_record(GONE)).kill_process(GONE)

        assert result.failed == (KillFailure(GONE, "signal delivery failed"),)


class TestQueryKill:
    """Tests for kill_matching."""

    def test_no_matches(self, make_record):
        """Test a query matching nothing signals nothing."""
        result = orchestrator(make_record(GONE, name="bash")).kill_matching("no-such-thing")

        assert result.matched == 0
        assert result.attempted == 0
        assert result.killed == ()
        assert result.failed == ()

    def test_case_insensitive_match(self, make_record):
        """Test 'NODE' selects a process named node."""
        orch = orchestrator(
            make_record(GONE + 1, name="node", cmd="node server.js"),
            make_record(GONE + 2, name="bash", cmd="-bash"),
        )

        result = orch.kill_matching("NODE", include_children=False)

        assert result.matched == 1
        assert result.killed == (GONE + 1,)

    def test_shared_descendant_signalled_once(self, make_record):
        """Test a pid reachable from two matched roots is attempted once."""
        orch = orchestrator(
            make_record(GONE + 1, name="worker-a", cmd=""),
            make_record(GONE + 2, name="worker-b", cmd="", parent_pid=GONE + 1),
            make_record(GONE + 3, name="helper", cmd="", parent_pid=GONE + 2),
        )

        result = orch.kill_matching("worker")

        assert result.matched == 2
        assert result.attempted == 3
        assert sorted(result.killed) == [GONE + 1, GONE + 2, GONE + 3]
        assert len(result.killed) == len(set(result.killed))

    def test_query_is_trimmed(self, make_record):
        """Test surrounding whitespace in the query is ignored."""
        result = orchestrator(make_record(GONE, name="redis-server")).kill_matching("  redis  ")

        assert result.matched == 1

    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query_is_rejected(self, query):
        """Test an empty query is refused instead of matching everything."""
        with pytest.raises(InvalidRequest):
            orchestrator().kill_matching(query)

    def test_own_process_and_ancestors_are_never_matched(self, make_record):
        """Test the caller and its ancestors are left out of the selection."""
        own = psutil.Process()
        parent_pid = own.ppid()
        orch = orchestrator(
            make_record(own.pid, parent_pid=parent_pid, name="caller", cmd="caller target-x"),
            make_record(parent_pid, name="sh", cmd="sh -c caller target-x"),
            make_record(GONE, name="target-x", cmd=""),
        )

        result = orch.kill_matching("target-x", include_children=False)

        assert result.matched == 1
        assert result.attempted == 1
        assert result.killed == (GONE,)
        assert result.failed == ()

    def test_query_matching_only_the_caller_selects_nothing(self, make_record):
        """Test a query found only in our own command line is a no-op."""
        orch = orchestrator(make_record(os.getpid(), name="caller", cmd="caller only-me"))

        result = orch.kill_matching("only-me")

        assert (result.matched, result.attempted, result.failed) == (0, 0, ())

    def test_does_not_refresh_snapshot(self, make_record):
        """Test the provider is consulted once per request."""
        calls = []
        snapshot = snapshot_of(make_record(GONE, name="svc"))

        def provider():
            calls.append(1)
            return snapshot

        KillOrchestrator(provider).kill_matching("svc")

        assert calls == [1]


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signal handling")
class TestWaitTimeout:
    """Tests for waiting on signalled processes."""

    def test_survivor_is_reported(self, make_record):
        """Test a process ignoring SIGTERM is a failure once the wait expires."""
        code = (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(60)\n"
        )
        proc = subprocess.Popen([sys.executable, "-c", code], stdout=subprocess.PIPE, text=True)
        try:
            assert proc.stdout.readline().strip() == "ready"

            result = orchestrator(make_record(proc.pid), wait_timeout=0.5).kill_process(proc.pid)

            assert result.killed == ()
            assert result.failed == (KillFailure(proc.pid, "still running after 0.5s"),)
            assert proc.poll() is None
        finally:
            proc.kill()
            proc.wait(timeout=5.0)
            proc.stdout.close()

    def test_unreaped_zombie_is_killed(self, make_record):
        """Test a target left as a zombie by a non-reaping parent counts as killed."""
        code = (
            "import subprocess, sys, time\n"
            "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
            "print(child.pid, flush=True)\n"
            "time.sleep(60)\n"
        )
        parent = subprocess.Popen([sys.executable, "-c", code], stdout=subprocess.PIPE, text=True)
        try:
            pid = int(parent.stdout.readline())
            orch = orchestrator(make_record(pid, parent_pid=parent.pid), wait_timeout=1.0)

            result = orch.kill_process(pid, include_children=False)

            assert result.killed == (pid,)
            assert result.failed == ()
        finally:
            parent.kill()
            parent.wait(timeout=5.0)
            parent.stdout.close()

    def test_exited_process_is_killed(self, spawn_sleeper, make_record):
        """Test a process that exits within the wait is reported killed."""
        proc = spawn_sleeper()

        result = orchestrator(make_record(proc.pid), wait_timeout=5.0).kill_process(proc.pid)

        assert result.killed == (proc.pid,)
        assert result.failed == ()
