"""Verification Test: Chaos Monkey - processes dying while refreshes run.

The coordinator takes real snapshots of the process table while child
processes are started and killed underneath it. Every cycle must still
publish, and none may report a failed refresh.
"""

import multiprocessing
import random
import time
from queue import Empty, Queue

from edgetop.coordinator import EventKind, RefreshCoordinator, RefreshEvent
from edgetop.snapshot import collect_processes


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


def cleanup(processes: list[multiprocessing.Process]) -> None:
    for p in processes:
        if p.is_alive():
            p.terminate()
    for p in processes:
        p.join(timeout=1.0)


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_coordinator_survives_process_termination(self):
        """Test cycles keep publishing while processes die mid-snapshot."""
        processes = []
        for _ in range(20):
            p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
            p.start()
            processes.append(p)

        queue: Queue[RefreshEvent] = Queue()
        coordinator = RefreshCoordinator(queue, poll_rate=0.5, auto_refresh=True)

        try:
            coordinator.start()

            for p in random.sample(processes, 10):
                p.terminate()
                time.sleep(0.05)

            published = 0
            failures = []
            deadline = time.time() + 4.0
            while time.time() < deadline:
                try:
                    event = queue.get(timeout=1.0)
                except Empty:
                    continue
                if event.kind is EventKind.PUBLISHED:
                    published += 1
                elif event.kind is EventKind.FAILED:
                    failures.append(event.message)

            assert failures == []
            assert published >= 3, f"Expected at least 3 published cycles, got {published}"
            assert coordinator.is_running, "Coordinator should still be running after chaos"

        finally:
            coordinator.stop()
            cleanup(processes)

    def test_rapid_process_churn(self):
        """Test stability while processes are created and destroyed quickly."""
        queue: Queue[RefreshEvent] = Queue()
        coordinator = RefreshCoordinator(queue, poll_rate=0.5, auto_refresh=True)
        processes = []

        try:
            coordinator.start()

            deadline = time.time() + 3.0
            while time.time() < deadline:
                for _ in range(3):
                    p = multiprocessing.Process(target=dummy_worker, args=(10.0,))
                    p.start()
                    processes.append(p)

                alive = [p for p in processes if p.is_alive()]
                if len(alive) > 6:
                    for p in random.sample(alive, 3):
                        p.terminate()
                time.sleep(0.1)

            assert coordinator.is_running, "Coordinator crashed during rapid churn"
            assert coordinator.cycle >= 2

        finally:
            coordinator.stop()
            cleanup(processes)

    def test_collect_processes_handles_terminated_process(self):
        """Test a process that exited just before the snapshot is not fatal."""
        p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
        p.start()
        time.sleep(0.1)
        p.terminate()
        p.join(timeout=1.0)

        records = collect_processes()

        assert isinstance(records, list)
        assert p.pid not in {rec.pid for rec in records}
