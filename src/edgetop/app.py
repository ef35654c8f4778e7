"""edgetop - Main Textual application."""

from queue import Empty, Queue

import structlog
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static

from edgetop.actions import ActionError, debug_process, terminate_process
from edgetop.config import Settings
from edgetop.coordinator import EventKind, RefreshCoordinator, RefreshEvent, SnapshotProvider
from edgetop.correlator import DebugEndpoint
from edgetop.devtools import DevToolsClient
from edgetop.models import InstanceType, ProcessGroup, ProcessRecord, Role, find_flag
from edgetop.snapshot import collect_processes

log = structlog.get_logger()

GROUP_KEY_PREFIX = "group:"
UTILITY_SUB_TYPE_FLAG = "--utility-sub-type="

# Switches every child carries; they only bury the interesting ones
NOISY_FLAG_PREFIXES = (
    "--type=",
    "--mojo",
    "--field-trial",
    "--remote-debugging-port",
    "--subproc-heap-profiling",
    "--utility-sub-type",
)

# Key, label, width
BASE_COLUMNS = (
    ("pid", "PID", 24),
    ("type", "Type", 10),
    ("memory", "Memory", 12),
    ("cpu", "CPU", 7),
    ("details", "Details", None),
)
ARGS_COLUMN = ("args", "Args", None)


def process_detail(record: ProcessRecord) -> str:
    """Detail column text: debug url if known, else the utility service name."""
    if record.debug_url:
        if record.debug_target_type:
            return f"[{record.debug_target_type}] {record.debug_url}"
        return record.debug_url
    if record.role is Role.UTILITY:
        sub_type = find_flag(record.command_line, UTILITY_SUB_TYPE_FLAG)
        if sub_type:
            # Mojo interface names are long; the last segment is enough
            return sub_type.rsplit(".", 1)[-1]
    return ""


def process_flags(record: ProcessRecord) -> str:
    """Command-line switches of a process, minus the ones every child has."""
    return " ".join(
        arg
        for arg in record.command_line
        if arg.startswith("--") and not arg.startswith(NOISY_FLAG_PREFIXES)
    )


def group_title(group: ProcessGroup) -> str:
    """Header text for a group row."""
    parts = [group.label, f"PID {group.root_pid}"]
    if group.host_application_name:
        parts.append(group.host_application_name)
    if group.debugging_port is not None:
        parts.append(f"CDP :{group.debugging_port}")
    parts.append(f"{len(group.members)} proc")
    return " · ".join(parts)


class SummaryBar(Static):
    """Header widget showing counts and refresh state."""

    DEFAULT_CSS = """
    SummaryBar {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._process_count = 0
        self._group_count = 0
        self._hidden_count = 0
        self._auto_refresh = False
        self._poll_rate = 0.0
        self._cycle = 0
        self._type_counts: dict[InstanceType, int] = {}
        self._hidden_types: frozenset[InstanceType] = frozenset()

    def update_summary(
        self,
        groups: tuple[ProcessGroup, ...],
        hidden_count: int,
        auto_refresh: bool,
        poll_rate: float,
        cycle: int,
        type_counts: dict[InstanceType, int] | None = None,
        hidden_types: frozenset[InstanceType] = frozenset(),
    ) -> None:
        self._process_count = sum(len(group.members) for group in groups)
        self._group_count = len(groups)
        self._hidden_count = hidden_count
        self._auto_refresh = auto_refresh
        self._poll_rate = poll_rate
        self._cycle = cycle
        self._type_counts = dict(type_counts or {})
        self._hidden_types = hidden_types
        self.update(Text(self.render_summary()))

    def render_summary(self) -> str:
        auto = f"on ({self._poll_rate:.1f}s)" if self._auto_refresh else "off"
        text = f"{self._process_count} processes in {self._group_count} groups"
        if self._hidden_count:
            text += f" ({self._hidden_count} hidden)"
        return f"{text}  |  auto-refresh {auto}  |  cycle {self._cycle}\n{self.render_type_counts()}"

    def render_type_counts(self) -> str:
        """One entry per instance type with its toggle key and group count."""
        entries = []
        for key, instance_type in enumerate(InstanceType, start=1):
            entry = f"[{key}] {instance_type.value} {self._type_counts.get(instance_type, 0)}"
            if instance_type in self._hidden_types:
                entry += " (hidden)"
            entries.append(entry)
        return "  ".join(entries)


class GroupTable(Container):
    """Container for the process group table."""

    DEFAULT_CSS = """
    GroupTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, show_args: bool = False, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._row_keys: list[str] = []
        self._show_args = show_args

    @property
    def row_keys(self) -> list[str]:
        return list(self._row_keys)

    @property
    def show_args(self) -> bool:
        return self._show_args

    @property
    def columns(self) -> tuple[tuple[str, str, int | None], ...]:
        return (*BASE_COLUMNS, ARGS_COLUMN) if self._show_args else BASE_COLUMNS

    def compose(self) -> ComposeResult:
        yield DataTable(id="group-table")

    def on_mount(self) -> None:
        table = self.query_one("#group-table", DataTable)
        table.cursor_type = "row"
        self._add_columns(table)

    def _add_columns(self, table: DataTable) -> None:
        for key, label, width in self.columns:
            table.add_column(label, key=key, width=width)

    def set_show_args(self, show: bool) -> None:
        """Add or drop the flags column; rows are rebuilt on the next update."""
        if show == self._show_args:
            return
        self._show_args = show
        table = self.query_one("#group-table", DataTable)
        table.clear(columns=True)
        self._add_columns(table)
        self._row_keys = []

    def set_busy(self, busy: bool) -> None:
        self.query_one("#group-table", DataTable).loading = busy

    def update_groups(self, groups: tuple[ProcessGroup, ...]) -> None:
        """
        Show the given groups.

        When the row layout is unchanged, cells are updated in place so a
        timer refresh does not redraw the table. Otherwise the rows are rebuilt
        in group order.
        """
        table = self.query_one("#group-table", DataTable)
        rows = list(self._rows(groups))
        keys = [key for key, _ in rows]

        if keys == self._row_keys:
            for key, cells in rows:
                self._update_row(table, key, cells)
            return

        cursor_key = self.selected_key()
        table.clear()
        for key, cells in rows:
            table.add_row(*(Text(cell) for cell in cells), key=key)
        self._row_keys = keys

        if cursor_key in keys:
            table.move_cursor(row=keys.index(cursor_key))

    def _rows(self, groups: tuple[ProcessGroup, ...]):
        for group in groups:
            yield (
                f"{GROUP_KEY_PREFIX}{group.root_pid}",
                (
                    group_title(group),
                    group.channel.value,
                    f"{group.total_memory_mb:.1f} MB",
                    "",
                    group.root_executable_path,
                    *(("",) if self._show_args else ()),
                ),
            )
            for record in group.members:
                yield (
                    str(record.pid),
                    (
                        f"  {record.pid}",
                        (record.role or Role.UNKNOWN).value,
                        f"{record.memory_mb:.1f} MB",
                        f"{record.cpu_percent:5.1f}",
                        process_detail(record),
                        *((process_flags(record),) if self._show_args else ()),
                    ),
                )

    def _update_row(self, table: DataTable, row_key: str, cells: tuple[str, ...]) -> None:
        for (column, _, _), value in zip(self.columns, cells):
            try:
                table.update_cell(row_key, column, Text(value))
            except Exception:
                pass  # Row may have been removed

    def selected_key(self) -> str | None:
        table = self.query_one("#group-table", DataTable)
        if table.row_count == 0:
            return None
        try:
            cell_key = table.coordinate_to_cell_key(table.cursor_coordinate)
        except Exception:
            return None
        return cell_key.row_key.value

    def selected_pid(self) -> int | None:
        """Pid of the selected row; a group header selects its root."""
        key = self.selected_key()
        if key is None:
            return None
        return int(key.removeprefix(GROUP_KEY_PREFIX))


class EdgetopApp(App):
    """Main edgetop application."""

    TITLE = "edgetop"
    SUB_TITLE = "Browser process groups"

    CSS = """
    Screen {
        layout: vertical;
    }

    #summary {
        dock: top;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("a", "toggle_auto", "Auto-refresh"),
        ("w", "toggle_webview", "WebView2"),
        ("f", "toggle_args", "Flags"),
        ("k", "terminate", "Kill"),
        ("d", "debug", "Debug"),
        # Number keys follow the order of the summary line
        *(
            Binding(str(key), f"toggle_type('{instance_type.value}')", instance_type.value, show=False)
            for key, instance_type in enumerate(InstanceType, start=1)
        ),
    ]

    def __init__(
        self,
        settings: Settings | None = None,
        snapshot_provider: SnapshotProvider = collect_processes,
        endpoint: DebugEndpoint | None = None,
    ) -> None:
        super().__init__()
        self._settings = settings or Settings()
        if endpoint is None and self._settings.correlate:
            endpoint = DevToolsClient(
                host=self._settings.devtools_host,
                connect_timeout=self._settings.connect_timeout,
                read_timeout=self._settings.read_timeout,
            )
        self._update_queue: Queue[RefreshEvent] = Queue()
        self._coordinator = RefreshCoordinator(
            self._update_queue,
            snapshot_provider=snapshot_provider,
            endpoint=endpoint,
            poll_rate=self._settings.poll_rate,
            auto_refresh=self._settings.auto_refresh,
            correlate=self._settings.correlate,
        )
        self._hidden_types: set[InstanceType] = set(self._settings.hidden_instance_types)
        self._groups: tuple[ProcessGroup, ...] = ()
        self._last_cycle = 0

    @property
    def hidden_types(self) -> frozenset[InstanceType]:
        return frozenset(self._hidden_types)

    def compose(self) -> ComposeResult:
        yield SummaryBar(id="summary")
        yield GroupTable(show_args=self._settings.show_args)
        yield Footer()

    def on_mount(self) -> None:
        """Start the coordinator when the app is mounted."""
        self._coordinator.start()
        self.set_interval(0.25, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Apply every queued event in order."""
        while True:
            try:
                event = self._update_queue.get_nowait()
            except Empty:
                break
            try:
                self._handle_event(event)
            except Exception:
                # The view must never crash on a refresh
                log.exception("event_handling_failed", kind=event.kind.value)

    def _handle_event(self, event: RefreshEvent) -> None:
        table = self.query_one(GroupTable)
        if event.kind is EventKind.BUSY:
            table.set_busy(True)
        elif event.kind is EventKind.IDLE:
            table.set_busy(False)
        elif event.kind is EventKind.FAILED:
            self.notify(event.message, severity="warning")
        elif event.cycle >= self._last_cycle:
            # PUBLISHED or PATCHED for the current or a newer cycle
            self._last_cycle = event.cycle
            self._groups = event.groups
            table.set_busy(False)
            self._render_groups()

    def visible_groups(self) -> tuple[ProcessGroup, ...]:
        return tuple(group for group in self._groups if group.instance_type not in self._hidden_types)

    def type_counts(self) -> dict[InstanceType, int]:
        """Groups per instance type, hidden ones included."""
        counts = dict.fromkeys(InstanceType, 0)
        for group in self._groups:
            counts[group.instance_type] += 1
        return counts

    def _render_groups(self) -> None:
        visible = self.visible_groups()
        self.query_one(GroupTable).update_groups(visible)
        self.query_one("#summary", SummaryBar).update_summary(
            visible,
            hidden_count=len(self._groups) - len(visible),
            auto_refresh=self._coordinator.auto_refresh,
            poll_rate=self._coordinator.poll_rate,
            cycle=self._last_cycle,
            type_counts=self.type_counts(),
            hidden_types=self.hidden_types,
        )

    def action_refresh(self) -> None:
        self._coordinator.request_refresh()

    def action_toggle_auto(self) -> None:
        enabled = not self._coordinator.auto_refresh
        self._coordinator.auto_refresh = enabled
        self.notify(f"Auto-refresh {'on' if enabled else 'off'}")
        self._render_groups()

    def action_toggle_type(self, name: str) -> None:
        """Show or hide every group of one instance type."""
        instance_type = InstanceType(name)
        if instance_type in self._hidden_types:
            self._hidden_types.discard(instance_type)
        else:
            self._hidden_types.add(instance_type)
        self._render_groups()

    def action_toggle_webview(self) -> None:
        self.action_toggle_type(InstanceType.WEBVIEW2.value)

    def action_toggle_args(self) -> None:
        table = self.query_one(GroupTable)
        table.set_show_args(not table.show_args)
        self._render_groups()

    def action_terminate(self) -> None:
        pid = self.query_one(GroupTable).selected_pid()
        if pid is None:
            return
        try:
            self.notify(terminate_process(pid))
        except ActionError as exc:
            self.notify(str(exc), severity="error")
            return
        self.set_timer(1.0, self._coordinator.request_refresh)

    def action_debug(self) -> None:
        pid = self.query_one(GroupTable).selected_pid()
        if pid is None:
            return
        try:
            self.notify(debug_process(pid))
        except ActionError as exc:
            self.notify(str(exc), severity="error")

    def on_unmount(self) -> None:
        self._coordinator.stop()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._coordinator.stop()
        self.exit()
