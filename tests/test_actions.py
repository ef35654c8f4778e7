"""Tests for per-process actions."""

import subprocess
import sys

import pytest

from edgetop import actions
from edgetop.actions import ActionError, debug_process, debugger_commands, terminate_process

# Far above any pid_max a test machine would use
MISSING_PID = 2**22 + 12345


class TestTerminate:
    """Tests for terminate_process."""

    def test_terminates_child(self):
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        try:
            message = terminate_process(proc.pid)
            assert proc.wait(timeout=10) != 0
            assert message == f"Process {proc.pid} terminated"
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

    def test_missing_pid(self):
        with pytest.raises(ActionError, match="not found"):
            terminate_process(MISSING_PID)


class TestDebuggerCommands:
    """Tests for debugger candidate selection."""

    def test_windows_prefers_windbgx(self):
        commands = debugger_commands(42, include_children=False, platform="win32")

        assert commands[0] == ["windbgx.exe", "-p", "42"]
        assert [cmd[0] for cmd in commands] == ["windbgx.exe", "windbg.exe", "vsjitdebugger.exe"]

    def test_windows_children_flag(self):
        commands = debugger_commands(42, include_children=True, platform="win32")

        assert commands[0] == ["windbgx.exe", "-p", "42", "-o"]
        assert commands[2] == ["vsjitdebugger.exe", "-p", "42"]

    def test_linux_opens_debugger_in_terminal(self, monkeypatch):
        installed = {"gdb", "xterm"}
        monkeypatch.setattr(actions.shutil, "which", lambda name: f"/usr/bin/{name}" if name in installed else None)

        assert debugger_commands(7, include_children=False, platform="linux") == [["xterm", "-e", "gdb", "-p", "7"]]

    def test_linux_prefers_lldb(self, monkeypatch):
        installed = {"lldb", "gdb", "gnome-terminal"}
        monkeypatch.setattr(actions.shutil, "which", lambda name: f"/usr/bin/{name}" if name in installed else None)

        assert debugger_commands(7, include_children=False, platform="linux") == [
            ["gnome-terminal", "--", "lldb", "-p", "7"],
            ["gnome-terminal", "--", "gdb", "-p", "7"],
        ]

    def test_macos_uses_terminal_app(self, monkeypatch):
        monkeypatch.setattr(actions.shutil, "which", lambda name: "/usr/bin/lldb" if name == "lldb" else None)

        assert debugger_commands(7, include_children=False, platform="darwin") == [
            ["osascript", "-e", 'tell application "Terminal" to do script "lldb -p 7"'],
        ]

    def test_nothing_installed(self, monkeypatch):
        monkeypatch.setattr(actions.shutil, "which", lambda name: None)
        assert debugger_commands(7, include_children=False, platform="linux") == []

class TestDebugProcess:
    """Tests for debug_process."""

    def test_missing_pid(self):
        with pytest.raises(ActionError, match="not found"):
            debug_process(MISSING_PID)

    def test_launch_is_detached_from_terminal(self, monkeypatch):
        calls = []
        monkeypatch.setattr(actions.subprocess, "Popen", lambda command, **kwargs: calls.append((command, kwargs)))

        actions._launch(["xterm", "-e", "gdb", "-p", "1"], platform="linux")

        command, kwargs = calls[0]
        assert kwargs["start_new_session"] is True
        assert kwargs["stdin"] is subprocess.DEVNULL
        assert kwargs["stdout"] is subprocess.DEVNULL
        assert kwargs["stderr"] is subprocess.DEVNULL

    def test_windows_launch_is_plain(self, monkeypatch):
        calls = []
        monkeypatch.setattr(actions.subprocess, "Popen", lambda command, **kwargs: calls.append((command, kwargs)))

        actions._launch(["windbgx.exe", "-p", "1"], platform="win32")

        assert calls == [(["windbgx.exe", "-p", "1"], {})]

    def test_falls_back_to_next_debugger(self, monkeypatch):
        launched = []

        def fake_launch(command):
            if command[0] == "x-terminal-emulator":
                raise FileNotFoundError(command[0])
            launched.append(command)

        candidates = [["x-terminal-emulator", "-e", "lldb", "-p", "1"], ["xterm", "-e", "gdb", "-p", "1"]]
        monkeypatch.setattr(actions, "_launch", fake_launch)
        monkeypatch.setattr(actions, "debugger_commands", lambda pid, children: candidates)

        message = debug_process(1)

        assert launched == [["xterm", "-e", "gdb", "-p", "1"]]
        assert message == "gdb attached to process 1"

    def test_no_debugger_available(self, monkeypatch):
        monkeypatch.setattr(actions, "debugger_commands", lambda pid, children: [])

        with pytest.raises(ActionError, match="No debugger found"):
            debug_process(1)
