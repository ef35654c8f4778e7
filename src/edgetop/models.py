"""Data models for edgetop."""

import re
from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    """Functional role of a process within one browser instance."""

    BROWSER = "Browser"
    RENDERER = "Renderer"
    EXTENSION = "Extension"
    GPU = "GPU"
    CRASHPAD = "Crashpad"
    UTILITY = "Utility"
    UNKNOWN = "Unknown"


class Channel(Enum):
    """Release track of an installed browser."""

    STABLE = "Stable"
    BETA = "Beta"
    DEV = "Dev"
    CANARY = "Canary"
    INTERNAL = "Internal"
    UNKNOWN = "Unknown"


class InstanceType(Enum):
    """Channel refined with the embedding contexts that cut across channels."""

    STABLE = "Stable"
    BETA = "Beta"
    DEV = "Dev"
    CANARY = "Canary"
    INTERNAL = "Internal"
    WEBVIEW2 = "WebView2"
    COPILOT = "Copilot"


# Display precedence of members inside a group
ROLE_ORDER: dict[Role, int] = {role: index for index, role in enumerate(Role)}

DEBUGGING_PORT_FLAG = "--remote-debugging-port="
USER_DATA_DIR_FLAG = "--user-data-dir="

_PATH_SEPARATORS = re.compile(r"[\\/]+")


def split_path(path: str) -> list[str]:
    """Split a path on both separator styles, dropping empty components."""
    return [part for part in _PATH_SEPARATORS.split(path) if part]


def find_flag(command_line: tuple[str, ...], prefix: str) -> str | None:
    """Return the value of the first ``prefix<value>`` argument, if any."""
    for arg in command_line:
        if arg.startswith(prefix):
            return arg[len(prefix):].strip('"')
    return None


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable record of one OS process within a single snapshot."""

    pid: int
    parent_pid: int | None
    executable_path: str
    command_line: tuple[str, ...] = ()
    memory_mb: float = 0.0
    cpu_percent: float = 0.0
    # Filled in by the classifier
    role: Role | None = None
    channel: Channel | None = None
    instance_type: InstanceType | None = None
    is_product: bool = False
    host_application_name: str | None = None
    # Filled in by the correlator
    debug_url: str | None = None
    debug_target_type: str | None = None

    @property
    def name(self) -> str:
        """Executable file name without its directory."""
        parts = split_path(self.executable_path)
        return parts[-1] if parts else ""

    @property
    def is_classified(self) -> bool:
        return self.role is not None

    @property
    def debugging_port(self) -> int | None:
        """Port given with --remote-debugging-port, or None when absent or invalid."""
        value = find_flag(self.command_line, DEBUGGING_PORT_FLAG)
        if value is None:
            return None
        try:
            port = int(value)
        except ValueError:
            return None
        return port if 0 < port < 65536 else None

    @property
    def user_data_dir(self) -> str | None:
        return find_flag(self.command_line, USER_DATA_DIR_FLAG)


@dataclass(slots=True, frozen=True)
class ProcessGroup:
    """All processes of one running browser instance, anchored at its root."""

    root_pid: int
    root_executable_path: str
    channel: Channel
    instance_type: InstanceType
    members: tuple[ProcessRecord, ...]
    host_application_name: str | None = None

    @property
    def root(self) -> ProcessRecord:
        for record in self.members:
            if record.pid == self.root_pid:
                return record
        raise LookupError(f"root pid {self.root_pid} missing from group")

    @property
    def pids(self) -> frozenset[int]:
        return frozenset(record.pid for record in self.members)

    def member(self, pid: int) -> ProcessRecord | None:
        """Return the member with the given pid, if present."""
        for record in self.members:
            if record.pid == pid:
                return record
        return None

    @property
    def total_memory_mb(self) -> float:
        return round(sum(record.memory_mb for record in self.members), 2)

    @property
    def debugging_port(self) -> int | None:
        return self.root.debugging_port

    @property
    def label(self) -> str:
        return self.instance_type.value


@dataclass(slots=True, frozen=True)
class DebugTarget:
    """One debuggable target reported by a browser's debugging endpoint."""

    process_id: int | None
    url: str
    target_type: str | None = None
