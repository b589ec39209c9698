"""Kill orchestration: resolve targets from a snapshot, signal, report."""

import logging
import os
from collections.abc import Callable, Iterable

import psutil

from procscope.errors import InvalidRequest
from procscope.models import KillFailure, KillResult, ProcessRecord, ProcessSnapshot
from procscope.tree import child_map, descendants

logger = logging.getLogger(__name__)

# Fields a query is matched against, in order
MATCH_FIELDS: tuple[Callable[[ProcessRecord], str], ...] = (
    lambda p: p.name,
    lambda p: p.cmd,
    lambda p: str(p.pid),
    lambda p: p.status.value,
)

# Allowed drift between snapshot and live create_time before we call it reuse
CREATE_TIME_TOLERANCE = 1.0


def matches_query(record: ProcessRecord, query: str) -> bool:
    """Case-insensitive substring match over name, cmd, pid and status."""
    needle = query.casefold()
    return any(needle in field(record).casefold() for field in MATCH_FIELDS)


def _dedupe(pids: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    result = []
    for pid in pids:
        if pid not in seen:
            seen.add(pid)
            result.append(pid)
    return result


def _is_terminated(proc: psutil.Process) -> bool:
    # An unreaped zombie still looks alive to wait_procs
    try:
        return proc.status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True
    except psutil.Error:
        return False


class KillOrchestrator:
    """
    Resolves kill requests against the current snapshot and signals targets.

    The snapshot is only used to pick targets; signals go straight to the OS
    and each target is reported on its own. The orchestrator never refreshes
    the snapshot.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], ProcessSnapshot],
        wait_timeout: float | None = None,
    ) -> None:
        """
        Initialize the KillOrchestrator.

        Args:
            snapshot_provider: Returns the snapshot used to resolve targets.
            wait_timeout: If set, wait this long for targets to exit and
                report survivors as failures. Otherwise a delivered signal
                counts as success.
        """
        self._snapshot_provider = snapshot_provider
        self._wait_timeout = wait_timeout
        self._self_pid = os.getpid()

    def kill_process(
        self, pid: int, include_children: bool = True, force: bool = False
    ) -> KillResult:
        """Terminate ``pid``, and its descendants when requested."""
        if pid <= 0:
            raise InvalidRequest("PID must be a positive integer")

        snapshot = self._snapshot_provider()
        return self._execute(snapshot, [pid], include_children, force)

    def kill_matching(
        self, query: str, include_children: bool = True, force: bool = False
    ) -> KillResult:
        """Terminate every snapshot process whose fields contain ``query``."""
        query = query.strip()
        if not query:
            raise InvalidRequest("Query cannot be empty")

        snapshot = self._snapshot_provider()
        lineage = self._own_lineage()
        matched = [
            proc.pid
            for proc in snapshot.processes
            if proc.pid not in lineage and matches_query(proc, query)
        ]
        logger.debug("Query %r matched %d processes", query, len(matched))
        return self._execute(snapshot, matched, include_children, force)

    def _own_lineage(self) -> set[int]:
        """Our own pid plus every ancestor; their command lines carry the query."""
        lineage = {self._self_pid}
        try:
            lineage.update(parent.pid for parent in psutil.Process(self._self_pid).parents())
        except psutil.Error as exc:
            logger.debug("Could not resolve ancestors of %d: %s", self._self_pid, exc)
        return lineage

    def resolve_targets(
        self, snapshot: ProcessSnapshot, matched: list[int], include_children: bool
    ) -> list[int]:
        """Expand matched pids into the ordered, duplicate-free target list."""
        if not include_children:
            return _dedupe(matched)

        children = child_map(snapshot.processes)
        targets: list[int] = []
        for pid in matched:
            targets.extend(descendants(pid, children))
            targets.append(pid)
        return _dedupe(targets)

    def _execute(
        self,
        snapshot: ProcessSnapshot,
        matched: list[int],
        include_children: bool,
        force: bool,
    ) -> KillResult:
        targets = self.resolve_targets(snapshot, matched, include_children)

        killed: list[int] = []
        failed: list[KillFailure] = []
        signalled: list[psutil.Process] = []

        for pid in targets:
            outcome = self._signal(pid, snapshot.get(pid), force)
            if isinstance(outcome, KillFailure):
                failed.append(outcome)
            elif outcome is None:
                killed.append(pid)
            else:
                signalled.append(outcome)

        if signalled and self._wait_timeout is not None:
            _, alive = psutil.wait_procs(signalled, timeout=self._wait_timeout)
            survivors = {proc.pid for proc in alive if not _is_terminated(proc)}
            reason = f"still running after {self._wait_timeout:g}s"
            failed.extend(KillFailure(p.pid, reason) for p in signalled if p.pid in survivors)
            signalled = [p for p in signalled if p.pid not in survivors]

        killed.extend(proc.pid for proc in signalled)
        # Report in signal order
        order = {pid: index for index, pid in enumerate(targets)}
        killed.sort(key=order.__getitem__)
        failed.sort(key=lambda f: order[f.pid])

        result = KillResult(
            matched=len(set(matched)),
            attempted=len(targets),
            killed=tuple(killed),
            failed=tuple(failed),
        )
        logger.info(
            "Kill request: matched=%d attempted=%d killed=%d failed=%d force=%s",
            result.matched,
            result.attempted,
            len(result.killed),
            len(result.failed),
            force,
        )
        return result

    def _signal(
        self, pid: int, record: ProcessRecord | None, force: bool
    ) -> psutil.Process | KillFailure | None:
        """
        Send one signal to ``pid``.

        Returns the signalled Process, None when the process is already
        gone, or a KillFailure.
        """
        if pid == self._self_pid:
            return KillFailure(pid, "refusing to signal own process")

        try:
            proc = psutil.Process(pid)
            if record is not None and record.create_time is not None:
                live_created = proc.create_time()
                if abs(live_created - record.create_time) > CREATE_TIME_TOLERANCE:
                    return KillFailure(pid, "pid reused by a different process")
            if force:
                proc.kill()
            else:
                proc.terminate()
        except psutil.NoSuchProcess:
            # Already gone is the outcome we wanted
            logger.debug("Process %d already exited", pid)
            return None
        except psutil.AccessDenied:
            logger.warning("Permission denied signalling process %d", pid)
            return KillFailure(pid, "permission denied")
        except (psutil.Error, OSError) as exc:
            logger.warning("Failed to signal process %d: %s", pid, exc)
            return KillFailure(pid, str(exc) or type(exc).__name__)

        return proc
