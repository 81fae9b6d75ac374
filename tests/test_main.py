"""Tests für CLI, Logging, Überschreibungen und Fortschrittsbalken."""

import base64
import io
import json
import logging
import sys
from unittest.mock import MagicMock

import pytest
from colorama import Fore, Style

import main
from conftest import FakeJamfClient, student, teacher
from core.settings import generate_default_settings


@pytest.fixture(autouse=True)
def _isolate_logging(monkeypatch):
    root = logging.getLogger()
    handlers = list(root.handlers)
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(main._setup_logging, "_handlers", [])
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def settings_file(tmp_path):
    settings = generate_default_settings()
    settings["groups"]["class_name_pattern"] = r"^Class \d+[A-Z]$"
    settings["classes"]["created_description"] = "Class Spider"
    settings["classes"]["teacher_group_id"] = 99
    settings["log_file"]["dir_path"] = str(tmp_path)
    settings["settings_version"] = 1
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(settings), encoding="utf-8")
    return path


def _use_client(monkeypatch, client):
    monkeypatch.setattr(
        main, "JamfSchoolClient", MagicMock(from_settings=MagicMock(return_value=client))
    )


class TestProgressReporter:

    def test_bar_uses_width_and_offset(self):
        out = io.StringIO()
        reporter = main.ProgressReporter(width=10, offset="  ", file=out)

        reporter(1, 4)
        reporter(4, 4)

        text = out.getvalue()
        assert "  [" in text
        assert "100% (4/4)" in text
        assert reporter._bar is None

    def test_close_before_first_call(self):
        reporter = main.ProgressReporter(file=io.StringIO())

        reporter.close()

        assert reporter._bar is None

    def test_width_comes_from_settings(self, monkeypatch, settings_file):
        client = FakeJamfClient()
        client.add_group(10, "Class 7A", [student("S1")])
        _use_client(monkeypatch, client)
        created = MagicMock()
        monkeypatch.setattr(main, "ProgressReporter", created)

        main.main(["--settings", str(settings_file), "--no-log-file", "--progress-bar-width", "30"])

        created.assert_called_once_with(width=30, offset="")
        created.return_value.close.assert_called_once()


class TestLogging:

    def test_level_name_is_colored(self):
        formatter = main._ColorFormatter("[%(levelname)s] %(message)s")
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "Achtung", None, None)

        assert formatter.format(record) == f"[{Fore.YELLOW}WARNING{Style.RESET_ALL}] Achtung"

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        settings = generate_default_settings()
        settings["log_file"]["dir_path"] = str(tmp_path)
        settings["log_file"]["file_name"] = "lauf.log"
        root = logging.getLogger()
        before = len(root.handlers)

        main._setup_logging(settings)
        first_file = next(
            h for h in root.handlers if isinstance(h, logging.FileHandler)
        )
        main._setup_logging(settings)

        assert len(root.handlers) == before + 2
        assert first_file not in root.handlers
        assert first_file.stream is None


class TestOverrides:

    def test_authcode_is_base64_encoded(self):
        settings = generate_default_settings()
        args = main._build_parser().parse_args(["--authcode", "1234:geheim"])

        changed = main.apply_overrides(settings, args)

        assert changed
        assert settings["api"]["authorization"] == base64.b64encode(b"1234:geheim").decode()

    def test_nothing_to_override(self):
        settings = generate_default_settings()
        args = main._build_parser().parse_args([])

        assert not main.apply_overrides(settings, args)
        assert settings == generate_default_settings()

    def test_environment_is_fallback_only(self, monkeypatch):
        monkeypatch.setenv("JAMF_SCHOOL_AUTHORIZATION", "ZW52")
        settings = generate_default_settings()
        settings["api"]["authorization"] = "ZGF0ZWk="

        main.apply_environment(settings)
        assert settings["api"]["authorization"] == "ZGF0ZWk="

        settings["api"]["authorization"] = ""
        main.apply_environment(settings)
        assert settings["api"]["authorization"] == "ZW52"

    def test_teacher_group_and_log_file(self):
        settings = generate_default_settings()
        args = main._build_parser().parse_args(
            ["--teacher-group-id", "7", "--no-log-file", "--progress-bar-width", "40"]
        )

        main.apply_overrides(settings, args)

        assert settings["classes"]["teacher_group_id"] == 7
        assert settings["log_file"]["enabled"] is False
        assert settings["console"]["progress_bar_width"] == 40


class TestMain:

    def test_missing_settings_file(self, tmp_path):
        assert main.main(["--settings", str(tmp_path / "fehlt.json")]) == main.EXIT_FATAL

    def test_successful_run(self, monkeypatch, settings_file):
        client = FakeJamfClient()
        client.add_group(10, "Class 7A", [student("S1"), teacher("T1")])
        _use_client(monkeypatch, client)

        code = main.main(["--settings", str(settings_file), "--no-progress"])

        assert code == main.EXIT_OK
        assert client.members_of("Class 7A") == (["S1"], ["T1"])

    def test_residual_errors_give_unclean_exit(self, monkeypatch, settings_file):
        client = FakeJamfClient()
        client.add_group(10, "Class 7A", [student("S1")])
        client.refuse_create = True
        _use_client(monkeypatch, client)

        code = main.main(["--settings", str(settings_file), "--no-log-file"])

        assert code == main.EXIT_UNCLEAN

    def test_insufficient_groups_is_fatal(self, monkeypatch, settings_file):
        _use_client(monkeypatch, FakeJamfClient())

        code = main.main(["--settings", str(settings_file), "--no-log-file"])

        assert code == main.EXIT_FATAL

    def test_save_writes_overrides(self, monkeypatch, settings_file):
        client = FakeJamfClient()
        client.add_group(10, "Class 7A", [student("S1")])
        _use_client(monkeypatch, client)

        main.main(
            ["--settings", str(settings_file), "--no-log-file", "--teacher-group-id", "5", "--save"]
        )

        saved = json.loads(settings_file.read_text(encoding="utf-8"))
        assert saved["classes"]["teacher_group_id"] == 5
        assert saved["log_file"]["enabled"] is False

    def test_log_file_is_written(self, monkeypatch, settings_file, tmp_path):
        client = FakeJamfClient()
        client.add_group(10, "Class 7A", [student("S1")])
        _use_client(monkeypatch, client)

        main.main(["--settings", str(settings_file), "--log-file", "lauf.log", "--no-progress"])

        assert "Class Spider" in (tmp_path / "lauf.log").read_text(encoding="utf-8")

    def test_missing_authorization_is_fatal(self, monkeypatch, settings_file):
        monkeypatch.delenv("JAMF_SCHOOL_AUTHORIZATION", raising=False)

        code = main.main(["--settings", str(settings_file), "--no-log-file"])

        assert code == main.EXIT_FATAL

    def test_init_writes_defaults_once(self, tmp_path):
        path = tmp_path / "neu.json"

        assert main.main(["--settings", str(path), "--init"]) == main.EXIT_OK
        assert json.loads(path.read_text(encoding="utf-8"))["failsafe"]["changed_teachers_limit"] == 2
        assert main.main(["--settings", str(path), "--init"]) == main.EXIT_FATAL
