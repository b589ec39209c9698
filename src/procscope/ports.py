"""Open port enumeration with best-effort owner correlation."""

import logging
import socket
import subprocess
from collections.abc import Iterable

import psutil

from procscope.config import DEFAULT_SETTINGS
from procscope.models import PortRecord, Protocol

logger = logging.getLogger(__name__)

LSOF_ARGS = ["-nP", "-iTCP", "-sTCP:LISTEN", "-iUDP"]

_SOCKET_PROTOCOLS = {
    socket.SOCK_STREAM: Protocol.TCP,
    socket.SOCK_DGRAM: Protocol.UDP,
}


def parse_endpoint(endpoint: str) -> tuple[str, int] | None:
    """Split ``addr:port`` (local side of ``a->b``) into address and port."""
    local = endpoint.split("->", 1)[0].strip()
    address, sep, port_text = local.rpartition(":")
    if not sep:
        return None
    try:
        port = int(port_text)
    except ValueError:
        return None
    if not 0 <= port <= 65535:
        return None

    address = address.strip("[]")
    return (address or "*", port)


def parse_lsof_line(line: str) -> PortRecord | None:
    """
    Parse one line of ``lsof -nP -i`` output.

    Columns are COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME, where
    NAME may carry a trailing ``(STATE)``. Returns None for the header and
    for anything that does not parse.
    """
    if not line.strip() or line.startswith("COMMAND"):
        return None

    columns = line.split()
    if len(columns) < 9:
        return None

    try:
        protocol = Protocol(columns[7].lower())
    except ValueError:
        return None

    try:
        pid: int | None = int(columns[1])
    except ValueError:
        pid = None

    name = " ".join(columns[8:])
    endpoint, _, rest = name.partition(" (")
    state = rest.rstrip(")").strip() or None

    parsed = parse_endpoint(endpoint)
    if parsed is None:
        return None
    local_address, port = parsed

    return PortRecord(
        port=port,
        protocol=protocol,
        local_address=local_address,
        state=state,
        pid=pid,
        process_name=columns[0],
    )


def _unique_sorted(records: Iterable[PortRecord]) -> list[PortRecord]:
    unique = set(records)
    return sorted(
        unique,
        key=lambda r: (r.port, r.protocol.value, r.pid if r.pid is not None else 0),
    )


def _process_name(pid: int, cache: dict[int, str | None]) -> str | None:
    if pid not in cache:
        try:
            cache[pid] = psutil.Process(pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            cache[pid] = None
    return cache[pid]


def ports_from_psutil() -> list[PortRecord]:
    """
    Query socket state natively through psutil.

    Raises psutil.AccessDenied where the platform requires privilege for a
    system-wide listing.
    """
    names: dict[int, str | None] = {}
    records = []

    for conn in psutil.net_connections(kind="inet"):
        protocol = _SOCKET_PROTOCOLS.get(conn.type)
        if protocol is None or not conn.laddr:
            continue
        if protocol is Protocol.TCP and conn.status != psutil.CONN_LISTEN:
            continue

        state = conn.status if conn.status and conn.status != psutil.CONN_NONE else None
        pid = conn.pid or None
        records.append(
            PortRecord(
                port=conn.laddr.port,
                protocol=protocol,
                local_address=conn.laddr.ip or "*",
                state=state,
                pid=pid,
                process_name=_process_name(pid, names) if pid is not None else None,
            )
        )

    return _unique_sorted(records)


def ports_from_lsof(
    timeout: float | None = None, lsof_path: str | None = None
) -> list[PortRecord]:
    """Run the installed lsof utility and parse what it prints."""
    if timeout is None:
        timeout = DEFAULT_SETTINGS.port_command_timeout
    command = [lsof_path or DEFAULT_SETTINGS.lsof_path, *LSOF_ARGS]

    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %.1fs", command[0], timeout)
        return []
    except OSError as exc:
        logger.warning("Failed to run %s: %s", command[0], exc)
        return []

    # lsof exits 1 when some sockets were hidden; keep whatever it printed
    if completed.returncode != 0 and not completed.stdout:
        logger.warning(
            "%s exited with status %s", command[0], completed.returncode
        )
        return []

    records = []
    for line in completed.stdout.splitlines():
        record = parse_lsof_line(line)
        if record is None:
            logger.debug("Dropping unparsable lsof line: %r", line)
            continue
        records.append(record)

    return _unique_sorted(records)


def snapshot_ports(
    timeout: float | None = None, lsof_path: str | None = None
) -> list[PortRecord]:
    """
    List listening TCP and bound UDP ports.

    Falls back to lsof when the native query is refused. Missing privilege
    or tooling shrinks the result instead of raising.
    """
    try:
        return ports_from_psutil()
    except (psutil.AccessDenied, PermissionError):
        logger.debug("Native socket listing denied, falling back to lsof")
    except (psutil.Error, OSError) as exc:
        logger.warning("Native socket listing failed: %s", exc)

    return ports_from_lsof(timeout=timeout, lsof_path=lsof_path)
