"""Tests for settings and logging setup."""

import pytest
import structlog

from edgetop.config import MIN_POLL_RATE, Settings, close_logging, configure_logging, parse_args
from edgetop.models import InstanceType


@pytest.fixture
def configure():
    """configure_logging that undoes itself after the test."""
    handlers = []

    def _configure(settings: Settings):
        handler = configure_logging(settings)
        handlers.append(handler)
        return handler

    yield _configure
    for handler in handlers:
        close_logging(handler)
    structlog.reset_defaults()


class TestSettings:
    """Tests for Settings defaults."""

    def test_defaults(self):
        settings = Settings()

        assert settings.poll_rate == 5.0
        assert not settings.auto_refresh
        assert settings.correlate
        assert settings.devtools_host == "127.0.0.1"
        assert settings.hidden_instance_types == frozenset({InstanceType.WEBVIEW2})
        assert not settings.show_args
        assert settings.log_file is None


class TestParseArgs:
    """Tests for parse_args."""

    def test_no_arguments(self):
        assert parse_args([]) == Settings()

    def test_flags(self):
        settings = parse_args(
            ["-i", "2", "-a", "--no-debug-urls", "--host", "localhost", "--show-webview2", "--show-args", "-v"]
        )

        assert settings.poll_rate == 2.0
        assert settings.auto_refresh
        assert not settings.correlate
        assert settings.devtools_host == "localhost"
        assert settings.hidden_instance_types == frozenset()
        assert settings.show_args
        assert settings.verbose

    def test_interval_is_clamped(self):
        assert parse_args(["--interval", "0.01"]).poll_rate == MIN_POLL_RATE

    def test_bad_interval_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["--interval", "soon"])


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_writes_key_value_lines(self, tmp_path, configure):
        path = tmp_path / "edgetop.log"
        configure(Settings(log_file=str(path)))

        structlog.get_logger("edgetop.tests").info("refresh_done", groups=3)

        line = path.read_text(encoding="utf-8").strip()
        assert "level='info'" in line
        assert "event='refresh_done'" in line
        assert "groups=3" in line

    def test_debug_filtered_unless_verbose(self, tmp_path, configure):
        path = tmp_path / "edgetop.log"
        configure(Settings(log_file=str(path)))

        structlog.get_logger("edgetop.tests").debug("noisy")

        assert path.read_text(encoding="utf-8") == ""

    def test_verbose_keeps_debug(self, tmp_path, configure):
        path = tmp_path / "edgetop.log"
        configure(Settings(log_file=str(path), verbose=True))

        structlog.get_logger("edgetop.tests").debug("noisy")

        assert "event='noisy'" in path.read_text(encoding="utf-8")

    def test_close_releases_the_file(self, tmp_path, configure):
        path = tmp_path / "edgetop.log"
        handler = configure(Settings(log_file=str(path)))
        structlog.get_logger("edgetop.tests").info("before")

        close_logging(handler)
        structlog.get_logger("edgetop.tests").info("after")

        assert handler.stream is None
        text = path.read_text(encoding="utf-8")
        assert "event='before'" in text
        assert "after" not in text

    def test_reconfiguring_closes_previous_file(self, tmp_path, configure):
        first = configure(Settings(log_file=str(tmp_path / "one.log")))
        configure(Settings(log_file=str(tmp_path / "two.log")))

        assert first.stream is None

    def test_without_file_nothing_is_written(self, capsys, configure):
        assert configure(Settings()) is None

        structlog.get_logger().warning("dropped")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""
