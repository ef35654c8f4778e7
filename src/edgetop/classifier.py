"""Process classification for edgetop.

Everything here is a pure function of a process's executable path and
command line. Ancestry is never consulted, so the same record always
classifies the same way regardless of which snapshot it came from.
"""

import dataclasses
import re
from collections.abc import Iterable

from edgetop.models import (
    Channel,
    InstanceType,
    ProcessRecord,
    Role,
    find_flag,
    split_path,
)

# Executable stems (lowercase, no ".exe") of the browser family
PRODUCT_NAMES: tuple[str, ...] = (
    "msedge",
    "msedgewebview2",
    "microsoft edge",
    "chrome",
    "google chrome",
    "chromium",
    "chromium-browser",
    "browser",
)

WEBVIEW2_RUNTIME = "msedgewebview2"
TYPE_FLAG = "--type="
# Linux and macOS crashpad handlers run without --type= and tag themselves instead
CRASHPAD_ANNOTATION = "--monitor-self-annotation=ptype=crashpad-handler"
WEBVIEW_EXE_NAME_FLAG = "--webview-exe-name="
WEBVIEW_FLAGS = ("--embedded-browser-webview", WEBVIEW_EXE_NAME_FLAG, "--webview2")
COPILOT_MARKERS = ("copilot", "m365")

_ROLE_TOKENS: dict[str, Role] = {
    "renderer": Role.RENDERER,
    "extension": Role.EXTENSION,
    "gpu-process": Role.GPU,
    "crashpad-handler": Role.CRASHPAD,
    "utility": Role.UTILITY,
}

# Checked in order; only the install directory and executable name are looked at
_CHANNEL_MARKERS: tuple[tuple[Channel, tuple[str, ...]], ...] = (
    (Channel.CANARY, ("canary", "sxs")),
    (Channel.DEV, ("dev",)),
    (Channel.BETA, ("beta",)),
    (Channel.INTERNAL, ("internal",)),
)
_BUILD_OUTPUT_DIR = "out"
_PATH_DEPTH = 3

_CHANNEL_INSTANCE: dict[Channel, InstanceType] = {
    Channel.STABLE: InstanceType.STABLE,
    Channel.BETA: InstanceType.BETA,
    Channel.DEV: InstanceType.DEV,
    Channel.CANARY: InstanceType.CANARY,
    Channel.INTERNAL: InstanceType.INTERNAL,
    Channel.UNKNOWN: InstanceType.STABLE,
}


def _marker_pattern(marker: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z]){re.escape(marker)}(?![a-z])")


_CHANNEL_PATTERNS = tuple(
    (channel, tuple(_marker_pattern(marker) for marker in markers))
    for channel, markers in _CHANNEL_MARKERS
)


def executable_stem(executable_path: str) -> str:
    """Lowercase executable name with any ``.exe`` suffix removed."""
    parts = split_path(executable_path)
    if not parts:
        return ""
    stem = parts[-1].lower()
    return stem[:-4] if stem.endswith(".exe") else stem


def is_product_executable(
    executable_path: str,
    product_names: Iterable[str] = PRODUCT_NAMES,
) -> bool:
    """Check whether an executable belongs to the browser family."""
    stem = executable_stem(executable_path)
    if not stem:
        return False
    for name in product_names:
        if stem == name:
            return True
        if stem.startswith(name) and stem[len(name)] in "-_ ":
            return True
    return False


def is_helper_executable(
    executable_path: str,
    product_names: Iterable[str] = PRODUCT_NAMES,
) -> bool:
    """Check for a companion binary named ``<product>_<helper>``."""
    stem = executable_stem(executable_path)
    return any(stem.startswith(f"{name}_") for name in product_names)


def detect_role(
    command_line: tuple[str, ...],
    executable_path: str = "",
    product_names: Iterable[str] = PRODUCT_NAMES,
) -> Role:
    """
    Derive the process role from its ``--type=`` argument.

    A process with neither an executable path nor any argument cannot be
    classified and maps to Unknown, as does an empty ``--type=`` value.
    Companion binaries such as ``chrome_crashpad_handler`` carry no type but
    are never a browser root.
    """
    has_args = any(arg.strip() for arg in command_line)
    if not has_args and not executable_path.strip():
        return Role.UNKNOWN

    process_type = find_flag(command_line, TYPE_FLAG)
    if process_type is None:
        if CRASHPAD_ANNOTATION in command_line:
            return Role.CRASHPAD
        if is_helper_executable(executable_path, product_names):
            return Role.CRASHPAD if "crashpad" in executable_stem(executable_path) else Role.UTILITY
        # The root process of every browser family never declares a type
        return Role.BROWSER

    process_type = process_type.strip().lower()
    if not process_type:
        return Role.UNKNOWN

    role = _ROLE_TOKENS.get(process_type, Role.UTILITY)
    if role is Role.RENDERER and "--extension-process" in command_line:
        return Role.EXTENSION
    return role


def detect_channel(executable_path: str, is_product: bool = True) -> Channel:
    """Derive the release channel from the install path."""
    if not is_product:
        return Channel.UNKNOWN

    components = [part.lower() for part in split_path(executable_path)[-_PATH_DEPTH:]]
    for channel, patterns in _CHANNEL_PATTERNS:
        for component in components:
            if any(pattern.search(component) for pattern in patterns):
                return channel
    if _BUILD_OUTPUT_DIR in components[:-1]:
        return Channel.INTERNAL
    # No marker at all: assume the stable install
    return Channel.STABLE


def detect_host_application(command_line: tuple[str, ...]) -> str | None:
    """Name of the application embedding a WebView2 runtime, if given."""
    value = find_flag(command_line, WEBVIEW_EXE_NAME_FLAG)
    return value or None


def detect_instance_type(
    executable_path: str,
    command_line: tuple[str, ...],
    channel: Channel,
) -> InstanceType:
    """Refine the channel with WebView2 and Copilot detection."""
    path_lower = executable_path.lower()
    is_webview = executable_stem(executable_path) == WEBVIEW2_RUNTIME or any(
        arg.lower().startswith(flag) for arg in command_line for flag in WEBVIEW_FLAGS
    )

    if is_webview:
        host = (detect_host_application(command_line) or "").lower()
        if any(marker in host or marker in path_lower for marker in COPILOT_MARKERS):
            return InstanceType.COPILOT
        return InstanceType.WEBVIEW2

    if "copilot" in path_lower:
        return InstanceType.COPILOT

    return _CHANNEL_INSTANCE[channel]


def classify(
    record: ProcessRecord,
    product_names: Iterable[str] = PRODUCT_NAMES,
) -> ProcessRecord:
    """
    Return a copy of the record with role, channel and instance type filled in.

    Never fails: records that do not look like the browser family come back
    with role and channel Unknown so the group builder can ignore them.
    """
    names = tuple(product_names)
    command_line = tuple(record.command_line)
    has_marker = find_flag(command_line, TYPE_FLAG) is not None or CRASHPAD_ANNOTATION in command_line
    is_product = has_marker or is_product_executable(record.executable_path, names)

    if is_product:
        role = detect_role(command_line, record.executable_path, names)
    else:
        role = Role.UNKNOWN

    channel = detect_channel(record.executable_path, is_product)
    instance_type = detect_instance_type(record.executable_path, command_line, channel)

    return dataclasses.replace(
        record,
        command_line=command_line,
        role=role,
        channel=channel,
        instance_type=instance_type,
        is_product=is_product,
        host_application_name=detect_host_application(command_line),
    )


def classify_all(
    records: Iterable[ProcessRecord],
    product_names: Iterable[str] = PRODUCT_NAMES,
) -> list[ProcessRecord]:
    """Classify every record of a snapshot."""
    names = tuple(product_names)
    return [classify(record, names) for record in records]
