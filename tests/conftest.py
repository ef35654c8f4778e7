"""Shared helpers for edgetop tests."""

import pytest

from edgetop.models import DebugTarget, ProcessRecord

EDGE_STABLE = r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe"
EDGE_CANARY = r"C:\Users\dev\AppData\Local\Microsoft\Edge SxS\Application\msedge.exe"
WEBVIEW2 = r"C:\Program Files (x86)\Microsoft\EdgeWebView\Application\120.0.2210.91\msedgewebview2.exe"


def record(
    pid: int,
    parent_pid: int | None = None,
    exe: str = EDGE_STABLE,
    args: tuple[str, ...] = (),
    memory_mb: float = 10.0,
    cpu_percent: float = 0.0,
    **kwargs,
) -> ProcessRecord:
    """Build a raw record the way a snapshot provider would."""
    return ProcessRecord(
        pid=pid,
        parent_pid=parent_pid,
        executable_path=exe,
        command_line=(exe, *args),
        memory_mb=memory_mb,
        cpu_percent=cpu_percent,
        **kwargs,
    )


class FakeSnapshot:
    """Snapshot provider returning a scripted sequence of process lists."""

    def __init__(self, *snapshots: list[ProcessRecord]) -> None:
        self._snapshots = list(snapshots)
        self.calls = 0

    def set(self, snapshot: list[ProcessRecord] | Exception) -> None:
        self._snapshots = [snapshot]

    def __call__(self) -> list[ProcessRecord]:
        self.calls += 1
        snapshot = self._snapshots[0] if len(self._snapshots) == 1 else self._snapshots.pop(0)
        if isinstance(snapshot, Exception):
            raise snapshot
        return list(snapshot)


class FakeEndpoint:
    """Debug endpoint answering from a port -> targets table."""

    def __init__(self, targets: dict[int, list[DebugTarget] | Exception] | None = None) -> None:
        self.targets = targets or {}
        self.queried: list[int] = []

    def list_targets(self, port: int) -> list[DebugTarget]:
        self.queried.append(port)
        answer = self.targets.get(port)
        if answer is None:
            raise ConnectionRefusedError(f"nothing listening on {port}")
        if isinstance(answer, Exception):
            raise answer
        return list(answer)


@pytest.fixture
def canary_snapshot() -> list[ProcessRecord]:
    """A canary browser with one renderer, plus a helper whose parent exited."""
    return [
        ProcessRecord(pid=100, parent_pid=None, executable_path="browser-canary.exe"),
        ProcessRecord(
            pid=101,
            parent_pid=100,
            executable_path="browser-canary.exe",
            command_line=("--type=renderer",),
        ),
        ProcessRecord(
            pid=102,
            parent_pid=999,
            executable_path="helper.exe",
            command_line=("--type=utility",),
        ),
    ]


@pytest.fixture
def debug_snapshot() -> list[ProcessRecord]:
    """A stable browser exposing a debugging port, with two renderers and a GPU process."""
    return [
        record(1, exe="explorer.exe"),
        record(100, parent_pid=1, args=("--remote-debugging-port=9222",)),
        record(101, parent_pid=100, args=("--type=renderer",)),
        record(102, parent_pid=100, args=("--type=renderer",)),
        record(103, parent_pid=100, args=("--type=gpu-process",)),
    ]
