"""OS process snapshot provider backed by psutil."""

import psutil
import structlog

from edgetop.models import ProcessRecord

log = structlog.get_logger()

# Attributes fetched for every process in one pass
SNAPSHOT_ATTRS = [
    "pid",
    "ppid",
    "name",
    "exe",
    "cmdline",
    "memory_info",
    "cpu_percent",
]


class SnapshotError(Exception):
    """The process table could not be read at all."""


def collect_processes() -> list[ProcessRecord]:
    """
    Collect a record for every running process, system wide.

    Uses psutil.process_iter() with oneshot() for efficiency. Processes that
    die mid-poll, deny access or are zombies are skipped individually; only a
    failure to enumerate the process table raises SnapshotError.
    """
    records: list[ProcessRecord] = []

    try:
        iterator = psutil.process_iter(attrs=SNAPSHOT_ATTRS)
        for proc in iterator:
            try:
                with proc.oneshot():
                    info = proc.info

                    cmdline = info.get("cmdline") or []
                    executable_path = info.get("exe") or info.get("name") or ""

                    mem_info = info.get("memory_info")
                    memory_mb = mem_info.rss / (1024 * 1024) if mem_info else 0.0

                    ppid = info.get("ppid")
                    records.append(
                        ProcessRecord(
                            pid=info.get("pid", proc.pid),
                            parent_pid=ppid if ppid else None,
                            executable_path=executable_path,
                            command_line=tuple(cmdline),
                            memory_mb=round(memory_mb, 2),
                            cpu_percent=info.get("cpu_percent") or 0.0,
                        )
                    )

            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
    except (psutil.Error, OSError) as exc:
        log.warning("snapshot_failed", error=str(exc))
        raise SnapshotError(f"Could not read the process table: {exc}") from exc

    return records
