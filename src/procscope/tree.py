"""Parent/child forest construction over process records."""

from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import Any, NamedTuple

from procscope.models import ProcessRecord

SortFunc = Callable[[ProcessRecord], Any]


class SortKey(Enum):
    """Sort orders for process listings."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"

    @property
    def key(self) -> SortFunc:
        """Key function implementing this order, tie-breaks included."""
        return _SORT_FUNCS[self]


_SORT_FUNCS: dict[SortKey, SortFunc] = {
    SortKey.CPU: lambda p: (-p.cpu_percent, -p.memory_bytes, p.pid),
    SortKey.MEM: lambda p: (-p.memory_bytes, p.pid),
    SortKey.PID: lambda p: p.pid,
    SortKey.NAME: lambda p: (p.name.lower(), p.pid),
}


class TreeRow(NamedTuple):
    record: ProcessRecord
    depth: int


def _resolve(key: SortKey | SortFunc) -> SortFunc:
    return key.key if isinstance(key, SortKey) else key


def sort_records(
    records: Iterable[ProcessRecord], key: SortKey | SortFunc = SortKey.CPU
) -> list[ProcessRecord]:
    """Return records in the requested flat order."""
    return sorted(records, key=_resolve(key))


def child_map(records: Iterable[ProcessRecord]) -> dict[int, list[int]]:
    """Map each parent pid to its child pids, in record order."""
    children: dict[int, list[int]] = {}
    for record in records:
        parent = record.parent_pid
        if parent is None or parent == record.pid:
            continue
        children.setdefault(parent, []).append(record.pid)
    return children


def descendants(pid: int, children: Mapping[int, list[int]]) -> list[int]:
    """
    Transitive children of ``pid``, deepest first.

    Each pid appears once and ``pid`` itself is never included, even when
    the parent links loop back to it.
    """
    result: list[int] = []
    visited = {pid}
    stack: list[tuple[int, bool]] = [(pid, False)]

    while stack:
        node, expanded = stack.pop()
        if expanded:
            if node != pid:
                result.append(node)
            continue
        stack.append((node, True))
        for child in reversed(children.get(node, ())):
            if child not in visited:
                visited.add(child)
                stack.append((child, False))

    return result


def build_tree(
    records: Iterable[ProcessRecord], key: SortKey | SortFunc = SortKey.CPU
) -> list[TreeRow]:
    """
    Flatten the parent/child forest into pre-order rows.

    A record is a root when its parent is missing from ``records`` or is
    itself. Siblings follow ``key``. Records that no root reaches (parent
    cycles left behind by pid reuse) are appended as depth-0 rows in the
    same order, so every pid is emitted exactly once.
    """
    ordered = sort_records(records, key)
    by_pid: dict[int, ProcessRecord] = {}
    for record in ordered:
        by_pid.setdefault(record.pid, record)

    children = child_map(by_pid.values())
    rows: list[TreeRow] = []
    visited: set[int] = set()

    for record in by_pid.values():
        parent = record.parent_pid
        if parent is not None and parent != record.pid and parent in by_pid:
            continue

        stack = [(record.pid, 0)]
        while stack:
            pid, depth = stack.pop()
            if pid in visited:
                continue
            visited.add(pid)
            rows.append(TreeRow(by_pid[pid], depth))
            for child in reversed(children.get(pid, ())):
                if child not in visited:
                    stack.append((child, depth + 1))

    # Unreachable from any root: emit flat instead of descending again
    for record in by_pid.values():
        if record.pid not in visited:
            visited.add(record.pid)
            rows.append(TreeRow(record, 0))

    return rows
