"""Tests for built-in shell commands."""

import json

import pytest

from nimbus.lib.azure_cli import AzureCliError
from nimbus.output.writers import CaptureOutputWriter
from nimbus.pipeline.cancellation import CancellationSignal, CommandCancelledError
from nimbus.shell.builtins import (
    BuiltinRegistry,
    CommandContext,
    execute_builtin,
    get_registry,
    is_builtin,
)


class FakeAzureCli:
    """Stands in for the az executable."""

    def __init__(self, data=None, error=None, installed_version="2.61.0"):
        self.data = data
        self.error = error
        self.installed_version = installed_version
        self.calls = []
        self.cancellations = []

    def run(self, args, timeout=None, cancellation=None):
        self.calls.append(list(args))
        self.cancellations.append(cancellation)
        if self.error:
            raise AzureCliError(self.error)
        return self.data

    def version(self):
        return self.installed_version


@pytest.fixture
def session(make_context):
    return make_context("aliases:\n  accounts: query account list\n  vm: query vm show --name {0}\n")


def run(name, args=(), session=None, writer=None, piped=False, cancellation=None):
    writer = writer or CaptureOutputWriter()
    context = CommandContext(
        writer=writer,
        cancellation=cancellation or CancellationSignal(),
        session=session,
    )
    result = execute_builtin(name, list(args), context, piped=piped)
    return result, writer


class TestRegistry:
    """Test command registration and lookup."""

    def test_register_and_lookup(self):
        """Test decorator registration with aliases."""
        registry = BuiltinRegistry()

        @registry.register("ping", "Reply", aliases=("p",), can_be_piped=False)
        def ping(args, ctx):
            return None

        assert registry.get("ping").func is ping
        assert registry.get("P").name == "ping"
        assert not registry.get("ping").can_be_piped
        assert registry.get("pong") is None
        assert [c.name for c in registry.list_commands()] == ["ping"]

    def test_builtins_registered(self):
        """Test the shell's commands are available."""
        for name in ("help", "exit", "quit", "q", "echo", "history", "alias", "info", "config", "query"):
            assert is_builtin(name), name
        assert not is_builtin("grep")

    def test_suggestions(self):
        """Test close matches for typos."""
        assert "query" in get_registry().suggest("qeury")
        assert get_registry().suggest("zzzzzz") == []


class TestExecuteBuiltin:
    """Test dispatching to commands."""

    def test_unknown_command(self):
        """Test unknown commands fail with suggestions."""
        result, _ = run("ehco", ["hi"])
        assert not result.success
        assert result.error.startswith("Unknown command: ehco")
        assert "echo" in result.error

    def test_cannot_pipe(self):
        """Test non-pipeable commands refuse to feed processes."""
        result, _ = run("help", piped=True)
        assert not result.success
        assert result.error == "Cannot pipe 'help' command"

    def test_exit_raises_system_exit(self):
        """Test exit, quit and q leave the shell."""
        for name in ("exit", "quit", "q"):
            with pytest.raises(SystemExit) as exc_info:
                run(name)
            assert exc_info.value.code == 0


class TestCommands:
    """Test individual commands."""

    def test_echo(self):
        """Test echo joins its arguments."""
        result, writer = run("echo", ["hello", "[world]"])
        assert result.success
        assert writer.get_output() == "hello [world]\n"

    def test_help_lists_commands(self):
        """Test help output."""
        result, writer = run("help")
        output = writer.get_output()
        assert result.success
        assert "query" in output
        assert "alias" in output

    def test_help_for_command(self):
        """Test help for one command."""
        result, writer = run("help", ["exit"])
        output = writer.get_output()
        assert "Aliases: quit, q" in output
        assert "cannot be piped" in output

    def test_help_unknown(self):
        """Test help for a missing command."""
        result, _ = run("help", ["nope"])
        assert not result.success

    def test_history(self, session):
        """Test numbered history."""
        session.history.extend(["echo a", "echo b"])
        result, writer = run("history", session=session)
        lines = writer.get_output().splitlines()
        assert lines == ["    1  echo a", "    2  echo b"]

    def test_history_empty(self, session):
        """Test empty history."""
        _, writer = run("history", session=session)
        assert writer.get_output() == "No command history\n"

    def test_alias_list(self, session):
        """Test listing aliases."""
        result, writer = run("alias", session=session)
        lines = writer.get_output().splitlines()
        assert result.success
        assert lines[0].split(None, 1) == ["accounts", "query account list"]
        assert lines[1].split(None, 1) == ["vm", "query vm show --name {0}"]

    def test_alias_show(self, session):
        """Test showing one alias."""
        _, writer = run("alias", ["show", "vm"], session=session)
        assert writer.get_output() == "query vm show --name {0}\n"

        result, _ = run("alias", ["show", "nope"], session=session)
        assert result.error == "Alias 'nope' not found"

    def test_alias_test(self, session):
        """Test previewing an expansion."""
        _, writer = run("alias", ["test", "vm", "web-1"], session=session)
        assert writer.get_output() == "query vm show --name web-1\n"

    def test_alias_test_missing_argument(self, session):
        """Test a failed preview writes nothing."""
        result, writer = run("alias", ["test", "vm"], session=session)
        assert not result.success
        assert "requires 1 argument(s)" in result.error
        assert writer.get_output() == ""

    def test_alias_unknown_subcommand(self, session):
        """Test an unknown alias subcommand."""
        result, _ = run("alias", ["rename"], session=session)
        assert not result.success

    def test_info(self, session):
        """Test environment information."""
        from nimbus import __version__

        session.azure_cli = FakeAzureCli()
        _, writer = run("info", session=session)
        output = writer.get_output()
        assert __version__ in output
        assert str(session.config_path) in output
        assert "aliases" in output
        assert "azure-cli  2.61.0" in output

    def test_info_without_azure_cli(self, session):
        """Test a missing az is reported rather than failing."""
        session.azure_cli = FakeAzureCli(installed_version=None)
        result, writer = run("info", session=session)
        assert result.success
        assert "azure-cli  not installed" in writer.get_output()

    def test_config(self, session):
        """Test the configuration dump."""
        _, writer = run("config", session=session)
        assert "accounts: query account list" in writer.get_output()


class TestQueryCommand:
    """Test the Azure query command."""

    def test_query_writes_json(self, session):
        """Test query output on a plain writer is valid JSON."""
        data = [{"name": "prod", "state": "Enabled"}, {"name": "dev", "state": "Disabled"}]
        session.azure_cli = FakeAzureCli(data)

        result, writer = run("query", ["account", "list"], session=session)

        assert result.success
        assert session.azure_cli.calls == [["account", "list"]]
        assert json.loads(writer.get_output()) == data

    def test_query_passes_cancellation_to_cli(self, session):
        """Test the command signal reaches the az call so it can be interrupted."""
        session.azure_cli = FakeAzureCli([])
        cancellation = CancellationSignal()
        run("query", ["account", "list"], session=session, cancellation=cancellation)
        assert session.azure_cli.cancellations == [cancellation]

    def test_query_brackets_survive_markup(self, session):
        """Test JSON brackets are not mistaken for markup."""
        session.azure_cli = FakeAzureCli({"tags": ["[a]", "b"]})
        _, writer = run("query", ["x"], session=session)
        assert json.loads(writer.get_output()) == {"tags": ["[a]", "b"]}

    def test_query_failure(self, session):
        """Test CLI errors become failed results."""
        session.azure_cli = FakeAzureCli(error="Please run 'az login'")
        result, _ = run("query", ["account", "list"], session=session)
        assert not result.success
        assert "az login" in result.error

    def test_query_requires_arguments(self, session):
        """Test query without arguments."""
        result, _ = run("query", session=session)
        assert result.error.startswith("Usage: query")

    def test_query_observes_cancellation(self, session):
        """Test a cancelled query raises before calling the CLI."""
        session.azure_cli = FakeAzureCli([])
        cancellation = CancellationSignal()
        cancellation.cancel()
        with pytest.raises(CommandCancelledError):
            run("query", ["account", "list"], session=session, cancellation=cancellation)
        assert session.azure_cli.calls == []
