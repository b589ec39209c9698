"""Command surface consumed by presentation layers and tests."""

from procscope.config import Settings
from procscope.details import get_process_details
from procscope.killer import KillOrchestrator
from procscope.models import KillResult, PortRecord, ProcessDetails, ProcessSnapshot
from procscope.monitor import SnapshotPoller, SnapshotStore
from procscope.ports import snapshot_ports
from procscope.tree import SortKey, TreeRow, build_tree


class Procscope:
    """
    Entry point bundling the snapshot store, port listing, details and kills.

    Performs no confirmation of destructive calls; that belongs to whoever
    drives it.
    """

    def __init__(
        self, settings: Settings | None = None, store: SnapshotStore | None = None
    ) -> None:
        self.settings = settings or Settings()
        self.store = store or SnapshotStore()
        self.killer = KillOrchestrator(
            self.store.get_or_refresh, wait_timeout=self.settings.kill_wait_timeout
        )

    def poller(self) -> SnapshotPoller:
        """A poller refreshing this instance's store at the configured rate."""
        return SnapshotPoller(self.store, poll_rate=self.settings.poll_rate)

    def refresh(self) -> ProcessSnapshot:
        """Collect a fresh snapshot and make it current."""
        return self.store.refresh()

    def get_process_snapshot(self) -> ProcessSnapshot:
        """Latest snapshot; collected on first use."""
        return self.store.get_or_refresh()

    def process_tree(self, sort_key: SortKey = SortKey.CPU) -> list[TreeRow]:
        """Current snapshot as pre-order tree rows."""
        return build_tree(self.get_process_snapshot().processes, sort_key)

    def list_open_ports(self) -> list[PortRecord]:
        """Listening TCP and bound UDP ports, collected on demand."""
        return snapshot_ports(
            timeout=self.settings.port_command_timeout,
            lsof_path=self.settings.lsof_path,
        )

    def get_process_details(self, pid: int) -> ProcessDetails:
        """Working directory, root and handle count for ``pid``."""
        return get_process_details(pid)

    def kill_process(
        self, pid: int, include_children: bool = True, force: bool = False
    ) -> KillResult:
        """Terminate ``pid``, and its descendants when requested."""
        return self.killer.kill_process(pid, include_children=include_children, force=force)

    def kill_matching_processes(
        self, query: str, include_children: bool = True, force: bool = False
    ) -> KillResult:
        """Terminate every snapshot process matching ``query``."""
        return self.killer.kill_matching(query, include_children=include_children, force=force)
