"""Refresh coordinator for edgetop."""

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from queue import Queue

import structlog

from edgetop.classifier import classify_all
from edgetop.config import MIN_POLL_RATE
from edgetop.correlator import DebugEndpoint, PortResult, apply_correlation, carry_forward, correlate
from edgetop.grouping import build_groups
from edgetop.models import ProcessGroup, ProcessRecord
from edgetop.snapshot import collect_processes

log = structlog.get_logger()

SnapshotProvider = Callable[[], Iterable[ProcessRecord]]


class EventKind(Enum):
    """What happened to the published group list."""

    BUSY = "busy"  # A manual refresh started
    IDLE = "idle"  # A manual refresh ended without publishing
    PUBLISHED = "published"  # A new group list replaced the old one
    PATCHED = "patched"  # Debug urls were merged into the current list
    FAILED = "failed"  # The snapshot could not be taken


@dataclass(slots=True, frozen=True)
class RefreshEvent:
    """Notification pushed to the update queue."""

    kind: EventKind
    cycle: int
    groups: tuple[ProcessGroup, ...] = ()
    message: str = ""


class RefreshCoordinator:
    """
    Owns the published list of process groups and keeps it fresh.

    A cycle takes a snapshot, classifies and groups it, and publishes the new
    list before any network work starts. Debug urls are then fetched in a
    worker pool and merged in as a patch, which is dropped if a newer cycle
    has been published in the meantime.

    Runs in a separate daemon thread and pushes RefreshEvents to a
    thread-safe Queue.
    """

    def __init__(
        self,
        update_queue: Queue[RefreshEvent],
        snapshot_provider: SnapshotProvider = collect_processes,
        endpoint: DebugEndpoint | None = None,
        poll_rate: float = 5.0,
        auto_refresh: bool = False,
        correlate: bool = True,
    ) -> None:
        """
        Initialize the RefreshCoordinator.

        Args:
            update_queue: Thread-safe queue to push events to.
            snapshot_provider: Returns the raw records of all running processes.
            endpoint: Lists debuggable targets per port; None disables urls.
            poll_rate: Seconds between timer-driven refreshes.
            auto_refresh: Whether the timer is enabled at start.
            correlate: Whether to fetch debug urls after each cycle.
        """
        self._queue = update_queue
        self._snapshot_provider = snapshot_provider
        self._endpoint = endpoint
        self._correlate = correlate and endpoint is not None
        self._poll_rate = max(MIN_POLL_RATE, poll_rate)
        self._auto_refresh = auto_refresh

        # Guards _groups and _cycle; held only for swaps and reads
        self._state_lock = threading.Lock()
        # Serializes whole cycles
        self._cycle_lock = threading.Lock()
        self._groups: tuple[ProcessGroup, ...] = ()
        self._cycle = 0

        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._manual_requested = False
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(MIN_POLL_RATE, value)
        self._wake_event.set()

    @property
    def auto_refresh(self) -> bool:
        return self._auto_refresh

    @auto_refresh.setter
    def auto_refresh(self, enabled: bool) -> None:
        """Enable or disable timer-driven refreshes."""
        self._auto_refresh = enabled
        log.info("auto_refresh_toggled", enabled=enabled)
        self._wake_event.set()

    @property
    def groups(self) -> tuple[ProcessGroup, ...]:
        """The currently published group list."""
        with self._state_lock:
            return self._groups

    @property
    def cycle(self) -> int:
        """Number of the cycle that published the current list."""
        with self._state_lock:
            return self._cycle

    @property
    def is_refreshing(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def is_running(self) -> bool:
        """Check if the coordinator thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the refresh thread and request an initial manual refresh."""
        if self.is_running:
            return

        self._stop_event.clear()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="DebugTargetCorrelator")
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="RefreshCoordinator",
        )
        self._thread.start()
        log.info("coordinator_started", poll_rate=self._poll_rate, auto_refresh=self._auto_refresh)
        self.request_refresh()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the refresh thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._executor is not None:
            # In-flight queries finish on their own; their patches are dropped
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        if self._endpoint is not None and hasattr(self._endpoint, "close"):
            self._endpoint.close()
        log.info("coordinator_stopped")

    def request_refresh(self) -> None:
        """Ask the refresh thread for a manual cycle."""
        self._manual_requested = True
        self._wake_event.set()

    def _poll_loop(self) -> None:
        """Main loop running in the background thread."""
        while not self._stop_event.is_set():
            timeout = self._poll_rate if self._auto_refresh else None
            woke = self._wake_event.wait(timeout=timeout)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break

            manual = self._manual_requested
            self._manual_requested = False
            if woke and not manual:
                # Settings changed; recompute the wait
                continue

            try:
                self.run_cycle(manual=manual)
            except Exception:
                # Keep the loop running whatever one cycle does
                log.exception("refresh_cycle_crashed")

    def run_cycle(self, manual: bool = False) -> Future | None:
        """
        Run one refresh cycle and publish its group list.

        Returns the future of the correlation started for this cycle, or None
        when the snapshot failed or no correlation was needed.
        """
        with self._cycle_lock:
            if manual:
                self._emit(EventKind.BUSY, self.cycle)

            try:
                records = list(self._snapshot_provider())
            except Exception as exc:
                log.warning("refresh_aborted", error=str(exc))
                cycle = self.cycle
                self._emit(EventKind.FAILED, cycle, message=f"Refresh failed: {exc}")
                if manual:
                    self._emit(EventKind.IDLE, cycle)
                return None

            groups = build_groups(classify_all(records))

            with self._state_lock:
                groups = carry_forward(self._groups, groups)
                self._cycle += 1
                self._groups = groups
                cycle = self._cycle
                # Queued under the lock so events stay in cycle order
                self._emit(EventKind.PUBLISHED, cycle, groups)

            log.debug("groups_published", cycle=cycle, groups=len(groups), processes=len(records))

            return self._start_correlation(cycle, groups)

    def _start_correlation(self, cycle: int, groups: tuple[ProcessGroup, ...]) -> Future | None:
        if not self._correlate or not groups:
            return None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="DebugTargetCorrelator")

        try:
            return self._executor.submit(self._correlate_cycle, cycle, groups)
        except RuntimeError:
            # Executor already shut down
            return None

    def _correlate_cycle(self, cycle: int, groups: tuple[ProcessGroup, ...]) -> bool:
        """Fetch debug targets for a published list and patch them in."""
        try:
            results = correlate(groups, self._endpoint)
        except Exception as exc:
            log.debug("correlation_failed", cycle=cycle, error=str(exc))
            return False
        return self.apply_patch(cycle, results)

    def apply_patch(self, cycle: int, results: dict[int, PortResult]) -> bool:
        """
        Merge correlation results into the published list.

        Returns False when the results belong to a superseded cycle and were
        discarded.
        """
        with self._state_lock:
            if cycle != self._cycle:
                log.debug("stale_patch_discarded", cycle=cycle, current=self._cycle)
                return False
            patched = apply_correlation(self._groups, results)
            if patched == self._groups:
                return True
            self._groups = patched
            self._emit(EventKind.PATCHED, cycle, patched)
        return True

    def _emit(
        self,
        kind: EventKind,
        cycle: int,
        groups: tuple[ProcessGroup, ...] = (),
        message: str = "",
    ) -> None:
        self._queue.put(RefreshEvent(kind=kind, cycle=cycle, groups=groups, message=message))
