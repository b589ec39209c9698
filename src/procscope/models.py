"""Data models for procscope."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ProcessStatus(Enum):
    """Normalised process state."""

    RUNNING = "running"
    SLEEPING = "sleeping"
    DISK_SLEEP = "disk_sleep"
    STOPPED = "stopped"
    TRACING_STOP = "tracing_stop"
    ZOMBIE = "zombie"
    DEAD = "dead"
    WAKE_KILL = "wake_kill"
    WAKING = "waking"
    IDLE = "idle"
    LOCKED = "locked"
    WAITING = "waiting"
    PARKED = "parked"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: str | None) -> "ProcessStatus":
        """Map a psutil status string, falling back to UNKNOWN."""
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.lower().replace("-", "_"))
        except ValueError:
            return cls.UNKNOWN


class Protocol(Enum):
    """Transport protocol of an open port."""

    TCP = "tcp"
    UDP = "udp"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


class _Serializable:
    """Mixin giving slotted dataclasses a camelCase JSON-ready view."""

    __slots__ = ()

    def to_dict(self) -> dict[str, Any]:
        return {_camel(f.name): _plain(getattr(self, f.name)) for f in fields(self)}


@dataclass(slots=True, frozen=True)
class ProcessRecord(_Serializable):
    """Immutable view of one process at collection time."""

    pid: int
    parent_pid: int | None
    name: str
    cmd: str
    exe: str | None
    status: ProcessStatus
    cpu_percent: float  # 0.0 - 100.0 * core_count
    memory_bytes: int  # RSS
    virtual_memory_bytes: int
    read_bytes: int
    written_bytes: int
    run_time_seconds: int
    create_time: float | None = None  # epoch seconds, used to spot pid reuse
    cwd: str | None = None  # resolved lazily
    root: str | None = None  # resolved lazily


@dataclass(slots=True, frozen=True)
class PortRecord(_Serializable):
    """An open port and, when discoverable, the process that owns it."""

    port: int
    protocol: Protocol
    local_address: str
    state: str | None = None
    pid: int | None = None  # never backfilled with a guess
    process_name: str | None = None


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """
    Result of one enumeration pass.

    Snapshots are never patched; a refresh produces a new one.
    """

    processes: tuple[ProcessRecord, ...]
    collected_at_epoch_ms: int
    _index: dict[int, ProcessRecord] = field(
        init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {proc.pid: proc for proc in self.processes})

    @property
    def process_count(self) -> int:
        return len(self.processes)

    def get(self, pid: int) -> ProcessRecord | None:
        """Look up a record by pid."""
        return self._index.get(pid)

    def __contains__(self, pid: object) -> bool:
        return pid in self._index

    def to_dict(self) -> dict[str, Any]:
        return {
            "collectedAtEpochMs": self.collected_at_epoch_ms,
            "processCount": self.process_count,
            "processes": [proc.to_dict() for proc in self.processes],
        }


@dataclass(slots=True, frozen=True)
class ProcessDetails(_Serializable):
    """On-demand enrichment of a single process."""

    process: ProcessRecord
    cwd: str | None
    root: str | None
    open_file_handles: int | None  # None means the count is unavailable


@dataclass(slots=True, frozen=True)
class KillFailure(_Serializable):
    pid: int
    reason: str


@dataclass(slots=True, frozen=True)
class KillResult(_Serializable):
    """Outcome of one kill request."""

    matched: int
    attempted: int
    killed: tuple[int, ...] = ()
    failed: tuple[KillFailure, ...] = ()

    @property
    def ok(self) -> bool:
        """True when every attempted target was terminated."""
        return not self.failed
