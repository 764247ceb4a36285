"""Tests for the Azure CLI wrapper."""

import subprocess
import sys
import threading
import time

import pytest

from conftest import requires_posix
from nimbus.lib.azure_cli import AzureCli, AzureCliError
from nimbus.pipeline.cancellation import CancellationSignal, CommandCancelledError


class FakeProcess:
    """Minimal Popen stand-in with canned output."""

    def __init__(self, stdout="", stderr="", returncode=0, error=None):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.error = error
        self.killed = False

    def communicate(self, timeout=None):
        if self.error is not None:
            error, self.error = self.error, None
            raise error
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True

    def wait(self, timeout=None):
        return self.returncode


@pytest.fixture
def fake_popen(monkeypatch):
    """Replace subprocess.Popen and record the commands it receives."""
    calls = []
    responses = []

    def _popen(cmd, **kwargs):
        calls.append(cmd)
        response = responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    monkeypatch.setattr(subprocess, "Popen", _popen)
    return calls, responses


@pytest.fixture
def slow_az(tmp_path):
    """An az executable that hangs before answering."""
    script = tmp_path / "az"
    script.write_text(f"#!{sys.executable}\nimport time\ntime.sleep(30)\nprint('[]')\n")
    script.chmod(0o755)
    return str(script)


class TestAzureCli:
    """Test running az commands."""

    def test_build_command(self):
        """Test JSON output and subscription are added."""
        cli = AzureCli(cli_path="/usr/bin/az", subscription="sub-1")
        assert cli.build_command(["vm", "list"]) == [
            "/usr/bin/az", "vm", "list", "--output", "json", "--subscription", "sub-1",
        ]

    def test_build_command_respects_user_flags(self):
        """Test explicit flags are not duplicated."""
        cli = AzureCli(subscription="sub-1")
        cmd = cli.build_command(["vm", "list", "-o", "tsv", "--subscription", "other"])
        assert cmd == ["az", "vm", "list", "-o", "tsv", "--subscription", "other"]

    def test_run_parses_json(self, fake_popen):
        """Test stdout is parsed as JSON."""
        calls, responses = fake_popen
        responses.append(FakeProcess(stdout='[{"name": "prod"}]\n'))

        assert AzureCli().run(["account", "list"]) == [{"name": "prod"}]
        assert calls == [["az", "account", "list", "--output", "json"]]

    def test_empty_output(self, fake_popen):
        """Test empty output parses to None."""
        _, responses = fake_popen
        responses.append(FakeProcess(stdout="  \n"))
        assert AzureCli().run(["group", "delete"]) is None

    def test_failure_uses_stderr(self, fake_popen):
        """Test a non-zero exit reports the first error line."""
        _, responses = fake_popen
        responses.append(FakeProcess(
            stderr="WARNING: something minor\nERROR: Please run 'az login' to setup account.\n",
            returncode=1,
        ))
        with pytest.raises(AzureCliError, match="Please run 'az login'"):
            AzureCli().run(["account", "list"])

    def test_failure_without_stderr(self, fake_popen):
        """Test the exit code is reported when stderr is empty."""
        _, responses = fake_popen
        responses.append(FakeProcess(returncode=2))
        with pytest.raises(AzureCliError, match="exit code 2"):
            AzureCli().run(["account", "list"])

    def test_missing_cli(self, fake_popen):
        """Test a missing az executable."""
        _, responses = fake_popen
        responses.append(FileNotFoundError(2, "No such file"))
        with pytest.raises(AzureCliError, match="Azure CLI not found"):
            AzureCli().run(["account", "list"])

    def test_invalid_json(self, fake_popen):
        """Test unparsable output."""
        _, responses = fake_popen
        responses.append(FakeProcess(stdout="Name  State\nprod  Enabled\n"))
        with pytest.raises(AzureCliError, match="invalid JSON"):
            AzureCli().run(["account", "list"])

    def test_timeout(self, fake_popen):
        """Test a timed out call is killed and reported."""
        _, responses = fake_popen
        process = FakeProcess(error=subprocess.TimeoutExpired(cmd="az", timeout=5))
        responses.append(process)
        with pytest.raises(AzureCliError, match="timed out"):
            AzureCli().run(["account", "list"], timeout=5)
        assert process.killed

    def test_finished_call_ignores_later_cancellation(self, fake_popen):
        """Test the kill callback is removed once az has answered."""
        _, responses = fake_popen
        process = FakeProcess(stdout="[]")
        responses.append(process)
        cancellation = CancellationSignal()

        assert AzureCli().run(["account", "list"], cancellation=cancellation) == []
        cancellation.cancel()
        assert not process.killed

    def test_version(self, fake_popen):
        """Test version lookup and its failure."""
        _, responses = fake_popen
        responses.append(FakeProcess(stdout='{"azure-cli": "2.61.0"}'))
        responses.append(FileNotFoundError(2, "No such file"))

        cli = AzureCli()
        assert cli.version() == "2.61.0"
        assert cli.version() is None


@requires_posix
class TestAzureCliCancellation:
    """Test interrupting a running az process."""

    def test_cancel_kills_running_cli(self, slow_az):
        """Test cancelling mid-call stops az instead of waiting for it."""
        cancellation = CancellationSignal()
        threading.Timer(0.3, cancellation.cancel).start()

        started = time.monotonic()
        with pytest.raises(CommandCancelledError):
            AzureCli(cli_path=slow_az).run(["account", "list"], cancellation=cancellation)
        assert time.monotonic() - started < 10

    def test_already_cancelled(self, slow_az):
        """Test a signal cancelled before the call kills az at once."""
        cancellation = CancellationSignal()
        cancellation.cancel()

        started = time.monotonic()
        with pytest.raises(CommandCancelledError):
            AzureCli(cli_path=slow_az).run(["account", "list"], cancellation=cancellation)
        assert time.monotonic() - started < 10
