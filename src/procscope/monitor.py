"""Snapshot ownership and background refreshing."""

import logging
import threading
from collections.abc import Callable

from procscope.models import ProcessSnapshot
from procscope.processes import collect_snapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Holds the latest ProcessSnapshot.

    Each refresh builds a new snapshot and swaps the reference; readers only
    ever see a complete snapshot. A failed refresh keeps the previous one.
    """

    def __init__(
        self, collector: Callable[[], ProcessSnapshot] = collect_snapshot
    ) -> None:
        """
        Initialize the SnapshotStore.

        Args:
            collector: Produces a fresh snapshot. Defaults to a full
                process table scan.
        """
        self._collector = collector
        self._snapshot: ProcessSnapshot | None = None
        self._swap_lock = threading.Lock()

    @property
    def current(self) -> ProcessSnapshot | None:
        """The latest snapshot, or None before the first refresh."""
        return self._snapshot

    def refresh(self) -> ProcessSnapshot:
        """Collect a new snapshot and make it the visible one."""
        try:
            snapshot = self._collector()
        except Exception:
            logger.warning("Snapshot refresh failed; keeping previous snapshot", exc_info=True)
            raise

        with self._swap_lock:
            self._snapshot = snapshot
        return snapshot

    def get_or_refresh(self) -> ProcessSnapshot:
        """Return the current snapshot, collecting one if none exists yet."""
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.refresh()
        return snapshot


class SnapshotPoller:
    """
    Refreshes a SnapshotStore from a daemon thread.

    The rate is the caller's choice; errors are logged and the loop keeps
    running.
    """

    def __init__(self, store: SnapshotStore, poll_rate: float = 2.0) -> None:
        """
        Initialize the SnapshotPoller.

        Args:
            store: Store to refresh.
            poll_rate: How often to poll the system (in seconds). Default 2.0s.
        """
        self._store = store
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the poller thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the polling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SnapshotPoller",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the polling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._store.refresh()
            except Exception:
                # Already logged by the store; the previous snapshot stays visible
                pass

            self._stop_event.wait(timeout=self._poll_rate)
