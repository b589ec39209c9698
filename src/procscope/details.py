"""On-demand enrichment of a single process."""

import logging
import os
from dataclasses import replace

import psutil

from procscope.errors import InvalidRequest, PermissionDenied, ProcessNotFound
from procscope.models import ProcessDetails
from procscope.processes import PROCESS_ATTRS, record_from_info

logger = logging.getLogger(__name__)


def _read_root(pid: int) -> str | None:
    """Filesystem root of the process, where the host exposes it."""
    link = f"/proc/{pid}/root"
    try:
        return os.readlink(link) or None
    except OSError:
        return None


def _open_handles(proc: psutil.Process) -> int | None:
    """Count of open descriptors/handles, or None if unavailable."""
    counter = getattr(proc, "num_fds", None) or getattr(proc, "num_handles", None)
    if counter is None:
        return None
    try:
        return counter()
    except (psutil.AccessDenied, psutil.ZombieProcess, NotImplementedError):
        logger.debug("Open handle count unavailable for pid %s", proc.pid)
        return None


def get_process_details(pid: int) -> ProcessDetails:
    """
    Resolve working directory, root and open handle count for ``pid``.

    Raises:
        InvalidRequest: pid is not a positive integer.
        ProcessNotFound: no live process has this pid.
        PermissionDenied: the host refused to disclose the process.
    """
    if pid <= 0:
        raise InvalidRequest("PID must be a positive integer")

    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            info = proc.as_dict(attrs=PROCESS_ATTRS)
            cwd = proc.cwd() or None
        handles = _open_handles(proc)
    except psutil.ZombieProcess:
        # Exited but not yet reaped; nothing left to enrich
        raise ProcessNotFound(pid) from None
    except psutil.NoSuchProcess:
        raise ProcessNotFound(pid) from None
    except psutil.AccessDenied:
        raise PermissionDenied(pid, "details unavailable") from None

    root = _read_root(pid)
    record = replace(record_from_info(info), cwd=cwd, root=root)
    return ProcessDetails(
        process=record,
        cwd=cwd,
        root=root,
        open_file_handles=handles,
    )
