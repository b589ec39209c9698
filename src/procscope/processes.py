"""Process table enumeration."""

import logging
import time
from typing import Any

import psutil

from procscope.models import ProcessRecord, ProcessSnapshot, ProcessStatus
from procscope.tree import SortKey, sort_records

logger = logging.getLogger(__name__)

# Attributes fetched per process; denied ones come back as None
PROCESS_ATTRS = [
    "pid",
    "ppid",
    "name",
    "exe",
    "cmdline",
    "status",
    "cpu_percent",
    "memory_info",
    "io_counters",
    "create_time",
]


def record_from_info(info: dict[str, Any], now: float | None = None) -> ProcessRecord:
    """Build a ProcessRecord from a psutil ``as_dict``/``info`` mapping."""
    if now is None:
        now = time.time()

    cmdline = info.get("cmdline") or []
    mem_info = info.get("memory_info")
    io_counters = info.get("io_counters")
    create_time = info.get("create_time")
    run_time = int(max(0.0, now - create_time)) if create_time else 0

    return ProcessRecord(
        pid=int(info["pid"]),
        parent_pid=info.get("ppid"),
        name=info.get("name") or "",
        cmd=" ".join(arg for arg in cmdline if arg),
        exe=info.get("exe") or None,
        status=ProcessStatus.from_raw(info.get("status")),
        cpu_percent=max(0.0, float(info.get("cpu_percent") or 0.0)),
        memory_bytes=mem_info.rss if mem_info else 0,
        virtual_memory_bytes=mem_info.vms if mem_info else 0,
        read_bytes=getattr(io_counters, "read_bytes", 0) if io_counters else 0,
        written_bytes=getattr(io_counters, "write_bytes", 0) if io_counters else 0,
        run_time_seconds=run_time,
        create_time=create_time,
    )


def snapshot_processes() -> list[ProcessRecord]:
    """
    Scan the process table once.

    Processes that exit mid-scan are skipped and fields the host refuses to
    disclose fall back to empty defaults. The result never holds the same
    pid twice and is ordered by CPU, then memory, then pid.
    """
    records: list[ProcessRecord] = []
    seen: set[int] = set()
    now = time.time()

    for proc in psutil.process_iter(attrs=PROCESS_ATTRS):
        try:
            with proc.oneshot():
                info = proc.info
                pid = info.get("pid")
                if pid is None or pid in seen:
                    continue
                records.append(record_from_info(info, now))
                seen.add(pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            # Died mid-scan or fully hidden from us
            logger.debug("Skipping process %s during scan", proc.pid)
            continue

    return sort_records(records, SortKey.CPU)


def collect_snapshot() -> ProcessSnapshot:
    """Run one enumeration pass and wrap it in a ProcessSnapshot."""
    processes = snapshot_processes()
    return ProcessSnapshot(
        processes=tuple(processes),
        collected_at_epoch_ms=int(time.time() * 1000),
    )
