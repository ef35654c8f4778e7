"""Debug-target correlation: overlays per-tab urls onto process groups.

Only ``query_port`` and ``correlate`` touch the network. Everything that
changes group data is a pure function returning new groups, so the refresh
coordinator can apply the result as a single swap.
"""

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

import structlog

from edgetop.devtools import read_active_port
from edgetop.models import DebugTarget, ProcessGroup, ProcessRecord

log = structlog.get_logger()


class DebugEndpoint(Protocol):
    """Anything that can list the debuggable targets behind a local port."""

    def list_targets(self, port: int) -> list[DebugTarget]: ...


@dataclass(slots=True, frozen=True)
class TargetsFound:
    """The endpoint answered for this port."""

    port: int
    targets: tuple[DebugTarget, ...]


@dataclass(slots=True, frozen=True)
class NoData:
    """Nothing usable for this port this cycle."""

    port: int
    reason: str


PortResult = TargetsFound | NoData


def group_port(
    group: ProcessGroup,
    active_port_reader: Callable[[str], int | None] = read_active_port,
) -> int | None:
    """Debugging port exposed by a group's root process, if any."""
    root = group.root
    port = root.debugging_port
    if port is not None:
        return port
    user_data_dir = root.user_data_dir
    if user_data_dir and any(arg.startswith("--remote-debugging-port") for arg in root.command_line):
        # Port 0 means the browser picked one and wrote it into the profile
        return active_port_reader(user_data_dir)
    return None


def discover_ports(
    groups: Iterable[ProcessGroup],
    active_port_reader: Callable[[str], int | None] = read_active_port,
) -> dict[int, tuple[int, ...]]:
    """Map each distinct debugging port to the root pids exposing it."""
    ports: dict[int, list[int]] = {}
    for group in groups:
        port = group_port(group, active_port_reader)
        if port is not None:
            ports.setdefault(port, []).append(group.root_pid)
    return {port: tuple(root_pids) for port, root_pids in ports.items()}


def query_port(endpoint: DebugEndpoint, port: int) -> PortResult:
    """Ask the endpoint for one port, turning any failure into NoData."""
    try:
        targets = tuple(endpoint.list_targets(port))
    except Exception as exc:
        # Endpoint problems stay with their port
        log.debug("port_query_failed", port=port, error=str(exc) or type(exc).__name__)
        return NoData(port, str(exc) or type(exc).__name__)
    if not targets:
        return NoData(port, "no targets")
    return TargetsFound(port, targets)


def correlate(
    groups: Iterable[ProcessGroup],
    endpoint: DebugEndpoint,
    active_port_reader: Callable[[str], int | None] = read_active_port,
) -> dict[int, PortResult]:
    """
    Query every distinct port once and key the results by group root pid.

    A failing port never affects the others.
    """
    results: dict[int, PortResult] = {}
    for port, root_pids in discover_ports(groups, active_port_reader).items():
        result = query_port(endpoint, port)
        for root_pid in root_pids:
            results[root_pid] = result
    return results


def _match(record: ProcessRecord, targets: tuple[DebugTarget, ...]) -> DebugTarget | None:
    for target in targets:
        if target.process_id is not None and target.process_id == record.pid:
            return target
    return None


def _patch_record(record: ProcessRecord, target: DebugTarget | None) -> ProcessRecord:
    url = target.url if target else None
    target_type = target.target_type if target else None
    if record.debug_url == url and record.debug_target_type == target_type:
        return record
    return dataclasses.replace(record, debug_url=url, debug_target_type=target_type)


def apply_correlation(
    groups: tuple[ProcessGroup, ...],
    results: dict[int, PortResult],
) -> tuple[ProcessGroup, ...]:
    """
    Patch debug url and target type of group members from per-root results.

    A TargetsFound result is authoritative for its group: members with a
    matching process id get the fresh values and the rest are cleared.
    NoData, or no result at all, leaves the group untouched. Unchanged groups
    are returned as the same objects.
    """
    patched: list[ProcessGroup] = []
    for group in groups:
        result = results.get(group.root_pid)
        if not isinstance(result, TargetsFound):
            patched.append(group)
            continue

        members = tuple(_patch_record(record, _match(record, result.targets)) for record in group.members)
        if all(new is old for new, old in zip(members, group.members)):
            patched.append(group)
        else:
            patched.append(dataclasses.replace(group, members=members))
    return tuple(patched)


def carry_forward(
    previous: Iterable[ProcessGroup],
    current: tuple[ProcessGroup, ...],
) -> tuple[ProcessGroup, ...]:
    """
    Copy debug data of still-running processes from the previous group list.

    Matching is by pid and executable path within these two consecutive
    snapshots only, since pids are reused once a process exits.
    """
    known: dict[int, ProcessRecord] = {}
    for group in previous:
        for record in group.members:
            if record.debug_url is not None:
                known[record.pid] = record

    if not known:
        return current

    merged: list[ProcessGroup] = []
    for group in current:
        members: list[ProcessRecord] = []
        changed = False
        for record in group.members:
            prior = known.get(record.pid)
            if (
                prior is not None
                and record.debug_url is None
                and prior.executable_path == record.executable_path
            ):
                record = dataclasses.replace(
                    record,
                    debug_url=prior.debug_url,
                    debug_target_type=prior.debug_target_type,
                )
                changed = True
            members.append(record)
        merged.append(dataclasses.replace(group, members=tuple(members)) if changed else group)
    return tuple(merged)
