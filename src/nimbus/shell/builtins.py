"""Built-in commands for the shell.

Internal commands run inside the shell process and write through an
OutputWriter, so their output can be piped into external processes.
"""

from __future__ import annotations

import difflib
import json
import logging
import platform
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from nimbus.lib.aliases import AliasExpansionError
from nimbus.lib.azure_cli import AzureCliError
from nimbus.output.markup import escape
from nimbus.output.writers import CaptureOutputWriter, OutputWriter
from nimbus.pipeline.cancellation import CancellationSignal
from nimbus.pipeline.model import CommandResult

if TYPE_CHECKING:
    from nimbus.shell.interpreter import ExecutionContext

logger = logging.getLogger(__name__)

CommandFunc = Callable[[List[str], "CommandContext"], CommandResult]


@dataclass
class CommandContext:
    """What a built-in command sees while it runs."""

    writer: OutputWriter
    cancellation: CancellationSignal
    session: Optional["ExecutionContext"] = None


class BuiltinCommand:
    """A registered built-in command."""

    def __init__(
        self,
        name: str,
        description: str,
        func: CommandFunc,
        usage: str = "",
        aliases: Sequence[str] = (),
        can_be_piped: bool = True,
    ):
        """Initialize builtin command.

        Args:
            name: Command name
            description: Help text
            func: Function to execute
            usage: Usage line shown by help
            aliases: Alternative names
            can_be_piped: Whether the command may feed external processes
        """
        self.name = name
        self.description = description
        self.func = func
        self.usage = usage or name
        self.aliases = tuple(aliases)
        self.can_be_piped = can_be_piped

    def execute(self, args: List[str], context: CommandContext) -> CommandResult:
        """Execute the command.

        Args:
            args: Arguments after the command name
            context: Command context

        Returns:
            Command result
        """
        return self.func(args, context)


class BuiltinRegistry:
    """Registry of built-in shell commands."""

    def __init__(self):
        """Initialize registry."""
        self.commands: Dict[str, BuiltinCommand] = {}
        self._lookup: Dict[str, BuiltinCommand] = {}

    def register(
        self,
        name: str,
        description: str,
        usage: str = "",
        aliases: Sequence[str] = (),
        can_be_piped: bool = True,
    ) -> Callable:
        """Decorator to register a built-in command.

        Args:
            name: Command name
            description: Help text
            usage: Usage line
            aliases: Alternative names
            can_be_piped: Whether the command may feed external processes

        Returns:
            Decorator function
        """
        def decorator(func: CommandFunc) -> CommandFunc:
            cmd = BuiltinCommand(name, description, func, usage, aliases, can_be_piped)
            self.commands[cmd.name] = cmd
            for key in (cmd.name, *cmd.aliases):
                self._lookup[key.lower()] = cmd
            logger.debug(f"Registered builtin: {cmd.name}")
            return func
        return decorator

    def get(self, name: str) -> BuiltinCommand | None:
        """Get a built-in command by name or alias (case-insensitive).

        Args:
            name: Command name

        Returns:
            Command if found, None otherwise
        """
        return self._lookup.get(name.lower())

    def list_commands(self) -> list[BuiltinCommand]:
        """List all built-in commands.

        Returns:
            List of commands sorted by name
        """
        return sorted(self.commands.values(), key=lambda c: c.name)

    def suggest(self, name: str, limit: int = 3) -> List[str]:
        """Suggest registered names close to a mistyped one."""
        return difflib.get_close_matches(name.lower(), list(self._lookup), n=limit, cutoff=0.6)


_registry = BuiltinRegistry()


def get_registry() -> BuiltinRegistry:
    """Get the global builtin registry.

    Returns:
        Registry instance
    """
    return _registry


def is_builtin(command: str) -> bool:
    return _registry.get(command) is not None


@_registry.register("help", "Show help for available commands", usage="help [command]",
                    aliases=("?",), can_be_piped=False)
def help_command(args: List[str], ctx: CommandContext) -> CommandResult:
    """Show help information."""
    writer = ctx.writer
    if args:
        cmd = _registry.get(args[0])
        if cmd is None:
            return CommandResult.failure(f"No help for unknown command '{args[0]}'")
        writer.write_line(f"[bold]{escape(cmd.name)}[/] - {escape(cmd.description)}")
        writer.write_line(f"  Usage: {escape(cmd.usage)}")
        if cmd.aliases:
            writer.write_line(f"  Aliases: {escape(', '.join(cmd.aliases))}")
        if not cmd.can_be_piped:
            writer.write_line("  This command cannot be piped.")
        return CommandResult.ok()

    writer.write_line("[bold]nimbus shell[/] - query cloud resources, pipe into anything")
    writer.write_line()
    writer.write_line("Commands:")
    for cmd in _registry.list_commands():
        writer.write_line(f"  {escape(cmd.name):<10} {escape(cmd.description)}")
    writer.write_line()
    writer.write_line("Pipelines:")
    writer.write_line("  query account list | grep Enabled | head -n 3")
    writer.write_line()
    writer.write_line("Use help <command> for details, exit or Ctrl+D to quit")
    return CommandResult.ok()


@_registry.register("exit", "Exit the shell", aliases=("quit", "q"), can_be_piped=False)
def exit_command(args: List[str], ctx: CommandContext) -> CommandResult:
    """Exit the shell.

    Raises:
        SystemExit: To exit the shell
    """
    logger.info("Exiting shell...")
    raise SystemExit(0)


@_registry.register("echo", "Write arguments to the output", usage="echo [text ...]")
def echo_command(args: List[str], ctx: CommandContext) -> CommandResult:
    ctx.writer.write_line(escape(" ".join(args)))
    return CommandResult.ok()


@_registry.register("history", "Show command history")
def history_command(args: List[str], ctx: CommandContext) -> CommandResult:
    history = ctx.session.get_history() if ctx.session else []
    if not history:
        ctx.writer.write_line("No command history")
        return CommandResult.ok()

    for i, line in enumerate(history, 1):
        ctx.writer.write_line(f"{i:>5}  {escape(line)}")
    return CommandResult.ok()


@_registry.register("alias", "List, show or test command aliases",
                    usage="alias [list | show <name> | test <name> [args ...]]")
def alias_command(args: List[str], ctx: CommandContext) -> CommandResult:
    """Inspect aliases.

    ``alias test`` expands into a capture writer first so a failed
    expansion leaves no partial output behind.
    """
    if ctx.session is None:
        return CommandResult.failure("No shell session")
    resolver = ctx.session.aliases
    subcommand = args[0].lower() if args else "list"

    if subcommand == "list":
        names = resolver.names()
        if not names:
            ctx.writer.write_line("No aliases defined")
            return CommandResult.ok()
        width = max(len(n) for n in names)
        for name in names:
            ctx.writer.write_line(f"{escape(name):<{width}}  {escape(resolver.get(name))}")
        return CommandResult.ok()

    if subcommand == "show":
        if len(args) < 2:
            return CommandResult.failure("Usage: alias show <name>")
        expansion = resolver.get(args[1])
        if expansion is None:
            return CommandResult.failure(f"Alias '{args[1]}' not found")
        ctx.writer.write_line(escape(expansion))
        return CommandResult.ok()

    if subcommand == "test":
        if len(args) < 2:
            return CommandResult.failure("Usage: alias test <name> [args ...]")
        capture = CaptureOutputWriter()
        try:
            capture.write_line(escape(resolver.test_expand(args[1], args[2:])))
        except AliasExpansionError as e:
            return CommandResult.failure(str(e))
        ctx.writer.write(escape(capture.get_output()))
        return CommandResult.ok()

    return CommandResult.failure(f"Unknown alias subcommand '{args[0]}'")


@_registry.register("info", "Show shell and environment information")
def info_command(args: List[str], ctx: CommandContext) -> CommandResult:
    from nimbus import __version__

    rows = [
        ("version", __version__),
        ("python", platform.python_version()),
        ("platform", f"{platform.system()} {platform.release()}"),
    ]
    if ctx.session is not None:
        rows.extend([
            ("config", str(ctx.session.config_path)),
            ("aliases", str(len(ctx.session.aliases.names()))),
            ("color", str(ctx.session.config.output.color).lower()),
            ("azure-cli", ctx.session.azure_cli.version() or "not installed"),
        ])
    for key, value in rows:
        ctx.writer.write_line(f"{key:<10} {escape(value)}")
    return CommandResult.ok()


@_registry.register("config", "Show the effective configuration")
def config_command(args: List[str], ctx: CommandContext) -> CommandResult:
    if ctx.session is None:
        return CommandResult.failure("No shell session")
    ctx.writer.write(escape(ctx.session.config_parser.to_yaml()))
    return CommandResult.ok()


def _render_json(data: Any, formatting: bool) -> str:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if not formatting:
        return escape(text)
    lines = []
    for line in text.splitlines():
        stripped = line.lstrip()
        indent = line[:len(line) - len(stripped)]
        if stripped.startswith('"') and '": ' in stripped:
            key, rest = stripped.split('": ', 1)
            lines.append(f"{indent}[cyan]{escape(key)}\"[/]: {escape(rest)}")
        else:
            lines.append(escape(line))
    return "\n".join(lines)


@_registry.register("query", "Query Azure resources through the Azure CLI",
                    usage="query <az arguments ...>  (e.g. query account list)")
def query_command(args: List[str], ctx: CommandContext) -> CommandResult:
    if not args:
        return CommandResult.failure("Usage: query <az arguments ...>")
    if ctx.session is None:
        return CommandResult.failure("No shell session")

    ctx.cancellation.raise_if_cancelled()
    try:
        data = ctx.session.azure_cli.run(args, cancellation=ctx.cancellation)
    except AzureCliError as e:
        return CommandResult.failure(str(e))
    ctx.cancellation.raise_if_cancelled()

    if data is not None:
        ctx.writer.write_line(_render_json(data, ctx.writer.supports_formatting))
    ctx.writer.flush()
    return CommandResult.ok()


def execute_builtin(
    name: str,
    args: List[str],
    context: CommandContext,
    piped: bool = False,
) -> CommandResult:
    """Execute a built-in command.

    Args:
        name: Command name or alias
        args: Arguments after the command name
        context: Command context
        piped: Whether the output feeds external processes

    Returns:
        Command result
    """
    cmd = _registry.get(name)
    if cmd is None:
        suggestions = _registry.suggest(name)
        message = f"Unknown command: {name}"
        if suggestions:
            message += f" (did you mean: {', '.join(suggestions)}?)"
        return CommandResult.failure(message)

    if piped and not cmd.can_be_piped:
        return CommandResult.failure(f"Cannot pipe '{name}' command")

    return cmd.execute(args, context)
