"""Client for a browser's local remote-debugging endpoint.

``/json/list`` is tried first. Chromium leaves the process id out of that
listing, so when targets come back without one the client opens the
browser-level websocket and asks for each target's pid through the
Target domain instead.
"""

import dataclasses
import json
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import requests
import structlog
import websocket

from edgetop.models import DebugTarget

log = structlog.get_logger()

DEFAULT_HOST = "127.0.0.1"
ACTIVE_PORT_FILE = "DevToolsActivePort"

# Wall-clock limit for one websocket exchange with a browser
CDP_BUDGET = 3.0

# Target types that never map to a tab worth showing
SKIPPED_TARGET_TYPES = frozenset({"browser", "webview", "auction_worklet"})
SKIPPED_URL_PREFIXES = ("devtools://", "chrome-extension://", "edge://", "chrome://")

FRIENDLY_TARGET_TYPES: dict[str, str | None] = {
    "page": None,
    "service_worker": "Service Worker",
    "shared_worker": "Shared Worker",
    "worker": "Worker",
    "iframe": "iframe",
    "background_page": "Background Page",
}


def read_active_port(user_data_dir: str) -> int | None:
    """
    Read the port a browser wrote to ``DevToolsActivePort``.

    Browsers started with ``--remote-debugging-port=0`` pick a free port and
    record it on the first line of that file inside their profile directory.
    """
    path = Path(user_data_dir) / ACTIVE_PORT_FILE
    try:
        first_line = path.read_text(encoding="utf-8").splitlines()[0]
        port = int(first_line.strip())
    except (OSError, IndexError, ValueError):
        return None
    return port if 0 < port < 65536 else None


def _valid_pid(value: Any) -> int | None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        return None
    return value


def parse_target(entry: Any) -> DebugTarget | None:
    """Turn one target description into a DebugTarget, or None to skip it."""
    if not isinstance(entry, dict):
        return None

    target_type = entry.get("type") or "page"
    if not isinstance(target_type, str) or target_type in SKIPPED_TARGET_TYPES:
        return None

    url = entry.get("url")
    if not isinstance(url, str) or not url or url == "about:blank" or url.startswith(SKIPPED_URL_PREFIXES):
        return None

    title = entry.get("title")
    if not isinstance(title, str):
        title = ""
    display = f"{title} - {url}" if title and title != url else url

    return DebugTarget(
        process_id=_valid_pid(entry.get("processId", entry.get("pid"))),
        url=display,
        target_type=FRIENDLY_TARGET_TYPES.get(target_type, target_type),
    )


def _send(ws: Any, message_id: int, method: str, **params: Any) -> None:
    ws.send(json.dumps({"id": message_id, "method": method, "params": params}))


def _messages(ws: Any, deadline: float) -> Iterator[dict]:
    """Yield decoded protocol messages until the deadline or a read timeout."""
    while time.monotonic() < deadline:
        try:
            raw = ws.recv()
        except websocket.WebSocketTimeoutException:
            return
        if not raw:
            return
        try:
            message = json.loads(raw)
        except ValueError:
            continue
        if isinstance(message, dict):
            yield message


def collect_cdp_targets(ws: Any, deadline: float) -> list[DebugTarget]:
    """
    List targets over a browser websocket, filling in each target's pid.

    Sends ``Target.getTargets``, attaches to every target that lacks a pid
    with ``flatten`` so the ``Target.attachedToTarget`` event reports it, and
    detaches again. Targets whose pid never arrives are left out.
    """
    _send(ws, 1, "Target.getTargets")
    infos = None
    for message in _messages(ws, deadline):
        if message.get("id") == 1:
            result = message.get("result")
            infos = result.get("targetInfos") if isinstance(result, dict) else None
            break
    if not isinstance(infos, list):
        return []

    ordered: list[tuple[DebugTarget, str | None]] = []
    pending: set[int] = set()
    next_id = 10
    for info in infos:
        target = parse_target(info)
        if target is None:
            continue
        if target.process_id is not None:
            ordered.append((target, None))
            continue
        target_id = info.get("targetId")
        if not isinstance(target_id, str):
            continue
        _send(ws, next_id, "Target.attachToTarget", targetId=target_id, flatten=True)
        pending.add(next_id)
        next_id += 1
        ordered.append((target, target_id))

    pids: dict[str, int] = {}
    sessions: list[str] = []
    if pending:
        for message in _messages(ws, deadline):
            if message.get("method") == "Target.attachedToTarget":
                params = message.get("params")
                params = params if isinstance(params, dict) else {}
                info = params.get("targetInfo")
                info = info if isinstance(info, dict) else {}
                pid = _valid_pid(info.get("pid"))
                target_id = info.get("targetId")
                if pid is not None and isinstance(target_id, str):
                    pids[target_id] = pid
                session_id = params.get("sessionId")
                if isinstance(session_id, str):
                    sessions.append(session_id)
            message_id = message.get("id")
            if isinstance(message_id, int):
                pending.discard(message_id)
            if not pending:
                break

    for session_id in sessions:
        _send(ws, next_id, "Target.detachFromTarget", sessionId=session_id)
        next_id += 1

    targets: list[DebugTarget] = []
    for target, target_id in ordered:
        if target_id is None:
            targets.append(target)
        elif target_id in pids:
            targets.append(dataclasses.replace(target, process_id=pids[target_id]))
    return targets


class DevToolsClient:
    """
    Lists debuggable targets of browsers listening on a local port.

    Raises ``requests.RequestException`` on network failures and
    ``ValueError`` when the response is not a JSON list of targets.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        connect_timeout: float = 0.2,
        read_timeout: float = 1.0,
        session: requests.Session | None = None,
        ws_connect: Callable[..., Any] = websocket.create_connection,
    ) -> None:
        self._host = host
        self._timeout = (connect_timeout, read_timeout)
        self._session = session or requests.Session()
        self._ws_connect = ws_connect

    @property
    def host(self) -> str:
        return self._host

    def targets_url(self, port: int) -> str:
        return f"http://{self._host}:{port}/json/list"

    def version_url(self, port: int) -> str:
        return f"http://{self._host}:{port}/json/version"

    def _get_json(self, url: str) -> Any:
        response = self._session.get(url, timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    def browser_ws_url(self, port: int) -> str:
        """Browser-level websocket url from ``/json/version``."""
        payload = self._get_json(self.version_url(port))
        ws_url = payload.get("webSocketDebuggerUrl") if isinstance(payload, dict) else None
        if not isinstance(ws_url, str) or not ws_url:
            raise ValueError(f"no browser websocket on port {port}")
        return ws_url

    def list_targets_over_cdp(self, port: int) -> list[DebugTarget]:
        """List targets with pids through the browser websocket."""
        ws = self._ws_connect(self.browser_ws_url(port), timeout=self._timeout[1])
        try:
            return collect_cdp_targets(ws, time.monotonic() + CDP_BUDGET)
        finally:
            ws.close()

    def list_targets(self, port: int) -> list[DebugTarget]:
        """Fetch the current targets of the browser debugging on ``port``."""
        payload = self._get_json(self.targets_url(port))
        if not isinstance(payload, list):
            raise ValueError(f"unexpected target listing on port {port}")

        targets = [target for target in map(parse_target, payload) if target is not None]
        log.debug("targets_listed", port=port, received=len(payload), kept=len(targets))
        if all(target.process_id is not None for target in targets):
            return targets

        try:
            targets = self.list_targets_over_cdp(port)
        except (websocket.WebSocketException, OSError, ValueError) as exc:
            log.debug("cdp_query_failed", port=port, error=str(exc))
            return targets
        log.debug("cdp_targets_listed", port=port, kept=len(targets))
        return targets

    def close(self) -> None:
        self._session.close()
