"""Shell interpreter for executing command lines.

Expands aliases, parses the line into a pipeline and hands it to the
pipeline executor, with a built-in command as the first segment.
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import List, Optional, Union

from nimbus.lib.aliases import AliasExpansionError, AliasResolver
from nimbus.lib.azure_cli import AzureCli
from nimbus.lib.config_parser import Config, ConfigParser
from nimbus.output.errors import format_error, format_unknown_command
from nimbus.output.markup import escape
from nimbus.output.writers import ConsoleOutputWriter, OutputWriter
from nimbus.pipeline.cancellation import CancellationSignal
from nimbus.pipeline.executor import PipelineExecutor
from nimbus.pipeline.model import CommandResult, ExitCodes, ParsedPipeline, PipelineExecutionResult
from nimbus.shell.builtins import BuiltinRegistry, CommandContext, execute_builtin, get_registry
from nimbus.shell.parser import PipelineParseError, PipelineParser, tokenize

logger = logging.getLogger(__name__)


class ExecutionContext:
    """Execution context for shell commands.

    Maintains state across command executions: configuration, aliases,
    history and the exit code of the last command.
    """

    def __init__(
        self,
        config_parser: Optional[ConfigParser] = None,
        console: Optional[OutputWriter] = None,
        executor: Optional[PipelineExecutor] = None,
        azure_cli: Optional[AzureCli] = None,
        registry: Optional[BuiltinRegistry] = None,
        quiet: bool = False,
    ):
        """Initialize execution context.

        Args:
            config_parser: Parsed configuration (defaults apply if None)
            console: Writer for command output and errors
            executor: Pipeline executor (built from the config if None)
            azure_cli: Azure CLI wrapper (built from the config if None)
            registry: Built-in command registry
            quiet: Suppress warnings and error details
        """
        if config_parser is None:
            config_parser = ConfigParser()
            config_parser.config = Config()
        elif config_parser.config is None:
            config_parser.parse()
        self.config_parser = config_parser
        self.config: Config = config_parser.config

        self.console = console or ConsoleOutputWriter(color=self.config.output.color)
        self.executor = executor or PipelineExecutor(
            console=self.console,
            chunk_size=self.config.output.chunk_size,
        )
        self.azure_cli = azure_cli or AzureCli(
            cli_path=self.config.azure.cli_path,
            subscription=self.config.azure.subscription,
        )
        self.registry = registry or get_registry()
        self.aliases = AliasResolver(self.config.aliases)
        self.parser = PipelineParser()
        self.quiet = quiet
        self.history: List[str] = []
        self.last_exit_code: int = ExitCodes.SUCCESS
        self.cancellation: Optional[CancellationSignal] = None

    @property
    def config_path(self) -> Path:
        return self.config_parser.config_path

    @property
    def theme(self):
        return self.config.theme

    def execute(self, command_line: str) -> PipelineExecutionResult:
        """Execute a command line and report any failure on the console.

        Args:
            command_line: Command to execute

        Returns:
            Pipeline execution result
        """
        self.history.append(command_line)
        result = self._execute(command_line)
        self.last_exit_code = result.exit_code
        return result

    def _execute(self, command_line: str) -> PipelineExecutionResult:
        try:
            expansion = self.aliases.expand(command_line)
        except AliasExpansionError as e:
            return self._fail(str(e))

        text = expansion.text
        if expansion.was_expanded:
            logger.debug(f"Alias expanded: {command_line!r} -> {text!r}")
            if not self.quiet:
                self.console.write_line(f"[{self.theme.dim_color}]> {escape(text)}[/]")

        try:
            pipeline = self.parser.parse(text)
        except PipelineParseError as e:
            return self._fail(str(e))

        error = self._check_internal_command(pipeline)
        if error is not None:
            return error

        runner = functools.partial(self._run_internal, piped=pipeline.has_external_stages)
        self.cancellation = CancellationSignal()
        try:
            result = self.executor.execute(pipeline, runner, self.cancellation)
        finally:
            self.cancellation = None

        self._report(pipeline, result)
        return result

    def _check_internal_command(self, pipeline: ParsedPipeline) -> Optional[PipelineExecutionResult]:
        """Reject unknown or unpipeable commands before any process starts."""
        try:
            words = tokenize(pipeline.internal_command)
        except PipelineParseError as e:
            return self._fail(str(e))

        name = words[0] if words else ""
        command = self.registry.get(name)
        if command is None:
            self.console.write_error_line(format_unknown_command(
                name,
                suggestions=self.registry.suggest(name),
                color=self.theme.error_color,
                quiet=self.quiet,
            ))
            return PipelineExecutionResult.failed(f"Unknown command: {name}")

        if pipeline.has_external_stages and not command.can_be_piped:
            return self._fail(f"Cannot pipe '{name}' command")
        return None

    def _run_internal(
        self,
        text: str,
        writer: OutputWriter,
        cancellation: CancellationSignal,
        piped: bool = False,
    ) -> CommandResult:
        words = tokenize(text)
        context = CommandContext(writer=writer, cancellation=cancellation, session=self)
        return execute_builtin(words[0], words[1:], context, piped=piped)

    def _report(self, pipeline: ParsedPipeline, result: PipelineExecutionResult) -> None:
        if result.cancelled:
            self.console.write_error_line(f"[{self.theme.warning_color}]Cancelled[/]")
            return

        if not result.success and result.error:
            self.console.write_error_line(
                format_error(result.error, color=self.theme.error_color, quiet=self.quiet)
            )

        if pipeline.has_external_stages and result.has_non_zero_exit_code and not self.quiet:
            self.console.write_error_line(
                f"[{self.theme.warning_color}]Process exited with code {result.exit_code}[/]"
            )
        self.console.flush()

    def _fail(self, message: str, exit_code: int = ExitCodes.GENERAL_ERROR) -> PipelineExecutionResult:
        self.console.write_error_line(
            format_error(message, color=self.theme.error_color, quiet=self.quiet)
        )
        return PipelineExecutionResult.failed(message, exit_code=exit_code)

    def cancel(self) -> None:
        """Cancel the pipeline currently running, if any."""
        if self.cancellation is not None:
            self.cancellation.cancel()

    def get_history(self) -> list[str]:
        """Get command history.

        Returns:
            List of executed commands
        """
        return self.history.copy()

    def clear_history(self) -> None:
        """Clear command history."""
        self.history.clear()


_context: Optional[ExecutionContext] = None


def get_context() -> ExecutionContext:
    """Get or create global execution context.

    Returns:
        Execution context
    """
    global _context
    if _context is None:
        _context = ExecutionContext()
    return _context


def reset_context(config_path: Optional[Union[str, Path]] = None) -> ExecutionContext:
    """Reset global execution context."""
    global _context
    parser = ConfigParser(config_path) if config_path else None
    _context = ExecutionContext(config_parser=parser)
    return _context
