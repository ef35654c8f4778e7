"""Per-process actions: terminate and attach a debugger.

These are thin pass-throughs to the OS. Both return a short message for the
status line and raise ActionError with a user-facing message on failure.
"""

import shlex
import shutil
import subprocess
import sys

import psutil
import structlog

log = structlog.get_logger()

UNIX_DEBUGGERS = ("lldb", "gdb")
# Terminal emulators and the flag that precedes the command to run
TERMINALS = (
    ("x-terminal-emulator", "-e"),
    ("gnome-terminal", "--"),
    ("konsole", "-e"),
    ("xterm", "-e"),
)


class ActionError(Exception):
    """A per-process action could not be carried out."""


def terminate_process(pid: int) -> str:
    """Kill the process with the given pid."""
    try:
        psutil.Process(pid).kill()
    except psutil.NoSuchProcess as exc:
        raise ActionError(f"Process {pid} not found") from exc
    except psutil.AccessDenied as exc:
        raise ActionError(f"Access denied terminating process {pid}") from exc

    log.info("process_terminated", pid=pid)
    return f"Process {pid} terminated"


def debugger_commands(pid: int, include_children: bool, platform: str = sys.platform) -> list[list[str]]:
    """
    Candidate debugger command lines, in order of preference.

    Console debuggers are wrapped in a new terminal window, since the
    current terminal is owned by the viewer.
    """
    if platform == "win32":
        attach = ["-p", str(pid)]
        if include_children:
            attach.append("-o")
        return [
            ["windbgx.exe", *attach],
            ["windbg.exe", *attach],
            ["vsjitdebugger.exe", "-p", str(pid)],
        ]

    commands = []
    for debugger in UNIX_DEBUGGERS:
        if shutil.which(debugger) is None:
            continue
        attach = [debugger, "-p", str(pid)]
        if platform == "darwin":
            script = f'tell application "Terminal" to do script "{shlex.join(attach)}"'
            commands.append(["osascript", "-e", script])
            continue
        for terminal, run_flag in TERMINALS:
            if shutil.which(terminal) is not None:
                commands.append([terminal, run_flag, *attach])
    return commands


def _launch(command: list[str], platform: str = sys.platform) -> None:
    if platform == "win32":
        subprocess.Popen(command)
        return
    # Own session, no shared stdio: the debugger must never read our TTY
    subprocess.Popen(
        command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


def debug_process(pid: int, include_children: bool = False) -> str:
    """Launch the first available debugger attached to ``pid``."""
    if not psutil.pid_exists(pid):
        raise ActionError(f"Process {pid} not found")

    for command in debugger_commands(pid, include_children):
        try:
            _launch(command)
        except OSError:
            continue
        debugger = next(
            (word for part in command for word in part.replace('"', " ").split() if word in UNIX_DEBUGGERS),
            command[0],
        )
        log.info("debugger_launched", pid=pid, debugger=debugger, command=command[0])
        return f"{debugger} attached to process {pid}"

    raise ActionError("No debugger found. Install WinDbg, Visual Studio, or lldb/gdb with a terminal emulator.")
