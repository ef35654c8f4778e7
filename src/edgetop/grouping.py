"""Group builder: rebuilds browser-rooted process groups from a flat snapshot."""

from collections import defaultdict
from collections.abc import Iterable

from edgetop.classifier import classify
from edgetop.models import ROLE_ORDER, InstanceType, ProcessGroup, ProcessRecord, Role


def member_sort_key(record: ProcessRecord) -> tuple[int, int]:
    """Display order inside a group: role precedence, then pid."""
    role = record.role or Role.UNKNOWN
    return ROLE_ORDER[role], record.pid


def find_browser_ancestor(record: ProcessRecord, index: dict[int, ProcessRecord]) -> int | None:
    """
    Walk the parent chain up to the nearest Browser-role process.

    The walk is bounded by the size of the index, so a corrupt or cyclic
    parent graph ends as "no ancestor" instead of looping.
    """
    current = record
    for _ in range(len(index) + 1):
        if current.role is Role.BROWSER:
            return current.pid
        if current.parent_pid is None:
            return None
        parent = index.get(current.parent_pid)
        if parent is None:
            # Parent already exited or is not part of the browser family
            return None
        current = parent
    return None


def _host_application(
    root: ProcessRecord,
    everything: dict[int, ProcessRecord],
) -> str | None:
    if root.host_application_name:
        return root.host_application_name
    if root.parent_pid is None:
        return None
    parent = everything.get(root.parent_pid)
    if parent is None or parent.is_product:
        return None
    return parent.name or None


def build_groups(records: Iterable[ProcessRecord]) -> tuple[ProcessGroup, ...]:
    """
    Group classified records by the Browser-role process that owns them.

    Records that never reach a Browser-role ancestor are left out. Groups are
    ordered by root pid and members by role precedence, so the result is
    deterministic for a given input set.
    """
    everything: dict[int, ProcessRecord] = {}
    index: dict[int, ProcessRecord] = {}
    for record in records:
        if not record.is_classified:
            record = classify(record)
        everything.setdefault(record.pid, record)
        if record.is_product:
            index.setdefault(record.pid, record)

    members: dict[int, list[ProcessRecord]] = defaultdict(list)
    for record in index.values():
        root_pid = find_browser_ancestor(record, index)
        if root_pid is not None:
            members[root_pid].append(record)

    groups: list[ProcessGroup] = []
    for root_pid in sorted(members):
        root = index[root_pid]
        instance_type = root.instance_type or InstanceType.STABLE
        host = _host_application(root, everything) if instance_type is InstanceType.WEBVIEW2 else None
        groups.append(
            ProcessGroup(
                root_pid=root_pid,
                root_executable_path=root.executable_path,
                channel=root.channel,
                instance_type=instance_type,
                members=tuple(sorted(members[root_pid], key=member_sort_key)),
                host_application_name=host,
            )
        )
    return tuple(groups)
