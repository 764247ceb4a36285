"""Tests for the command line entry point."""

import logging

import pytest

from nimbus.cli import build_parser, main, setup_logging
from nimbus.lib.config_parser import SAMPLE_CONFIG
from nimbus.pipeline.model import ExitCodes


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Point the shell at an empty configuration."""
    path = tmp_path / "config.yaml"
    path.write_text("aliases:\n  hi: echo hello\n")
    monkeypatch.setenv("NIMBUS_CONFIG", str(path))
    return path


class TestArguments:
    """Test argument parsing."""

    def test_defaults(self):
        """Test no arguments starts the REPL."""
        args = build_parser().parse_args([])
        assert args.command is None
        assert args.subcommand is None
        assert args.config is None

    def test_command_and_flags(self):
        """Test global options."""
        args = build_parser().parse_args(["-c", "echo hi", "--quiet", "--no-color", "--debug"])
        assert args.command == "echo hi"
        assert args.quiet and args.no_color and args.debug

    def test_subcommands(self):
        """Test run and init-config."""
        assert build_parser().parse_args(["run", "x.nimbus"]).script.name == "x.nimbus"
        assert build_parser().parse_args(["init-config", "c.yaml"]).path.name == "c.yaml"


class TestMain:
    """Test end-to-end invocations."""

    def test_single_command(self, config_file, capsys):
        """Test -c runs one line and exits with its code."""
        assert main(["--no-color", "-c", "echo hello"]) == 0
        assert capsys.readouterr().out == "hello\n"

    def test_single_command_alias(self, config_file, capsys):
        """Test aliases from the config file are used."""
        assert main(["--no-color", "-c", "hi"]) == 0
        assert capsys.readouterr().out == "> echo hello\nhello\n"

    def test_single_command_failure(self, config_file, capsys):
        """Test a failing command sets the exit code."""
        assert main(["--no-color", "-c", "nope"]) == ExitCodes.GENERAL_ERROR
        assert "Unknown command 'nope'" in capsys.readouterr().err

    def test_explicit_config(self, tmp_path, capsys):
        """Test --config overrides the environment."""
        path = tmp_path / "other.yaml"
        path.write_text("aliases:\n  yo: echo yo\n")
        assert main(["--no-color", "--quiet", "--config", str(path), "-c", "yo"]) == 0
        assert capsys.readouterr().out == "yo\n"

    def test_invalid_config(self, tmp_path, capsys):
        """Test a broken config exits with the configuration error code."""
        path = tmp_path / "bad.yaml"
        path.write_text("theme:\n  prompt_color: sparkly\n")
        assert main(["--no-color", "--config", str(path), "-c", "echo x"]) == ExitCodes.CONFIGURATION_ERROR
        assert "Error:" in capsys.readouterr().err

    def test_run_script(self, config_file, tmp_path, capsys):
        """Test the run subcommand."""
        script = tmp_path / "s.nimbus"
        script.write_text("# greet\necho one\necho two\n")
        assert main(["--no-color", "run", str(script)]) == 0
        assert capsys.readouterr().out == "one\ntwo\n"

    def test_run_missing_script(self, config_file, tmp_path, capsys):
        """Test a missing script file."""
        assert main(["--no-color", "run", str(tmp_path / "absent")]) == ExitCodes.GENERAL_ERROR
        assert "Script not found" in capsys.readouterr().err

    def test_init_config(self, tmp_path, capsys):
        """Test writing the sample configuration."""
        path = tmp_path / "new" / "config.yaml"
        assert main(["init-config", str(path)]) == 0
        assert path.read_text() == SAMPLE_CONFIG

    def test_init_config_refuses_overwrite(self, tmp_path):
        """Test an existing file is left alone."""
        path = tmp_path / "config.yaml"
        path.write_text("keep")
        assert main(["init-config", str(path)]) == ExitCodes.GENERAL_ERROR
        assert path.read_text() == "keep"


class TestLogging:
    """Test logging levels."""

    @pytest.mark.parametrize("flags, level", [
        ({}, logging.WARNING),
        ({"verbose": True}, logging.INFO),
        ({"debug": True}, logging.DEBUG),
        ({"quiet": True, "debug": True}, logging.ERROR),
    ])
    def test_levels(self, monkeypatch, flags, level):
        """Test each flag selects its level."""
        seen = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: seen.update(kwargs))
        setup_logging(**flags)
        assert seen["level"] == level
