"""REPL (Read-Eval-Print Loop) for interactive shell.

Provides an interactive command line for querying cloud resources and
piping the results through external programs.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Union

from nimbus.output.errors import format_error
from nimbus.output.markup import render
from nimbus.pipeline.model import PipelineExecutionResult
from nimbus.shell.interpreter import ExecutionContext

logger = logging.getLogger(__name__)

HISTORY_FILE = Path.home() / ".nimbus_history"
HISTORY_LENGTH = 1000

_ANSI_SEQUENCE = re.compile(r"\033\[[0-9;]*m")

try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False
    logger.debug("readline not available - command history disabled")


class REPL:
    """Read-Eval-Print Loop for interactive shell."""

    def __init__(
        self,
        context: Optional[ExecutionContext] = None,
        prompt: str = "nimbus> ",
        history_file: Optional[Path] = HISTORY_FILE,
    ):
        """Initialize REPL.

        Args:
            context: Execution context (creates new if None)
            prompt: Command prompt string
            history_file: Readline history file (None disables persistence)
        """
        self.context = context or ExecutionContext()
        self.prompt = prompt
        self.history_file = history_file
        self.running = False

        if HAS_READLINE and history_file is not None:
            self._setup_readline()

    def _setup_readline(self) -> None:
        """Setup readline for command history."""
        try:
            readline.read_history_file(str(self.history_file))
        except (FileNotFoundError, PermissionError):
            pass

        import atexit
        atexit.register(self._save_history)

        readline.set_history_length(HISTORY_LENGTH)

    def _save_history(self) -> None:
        try:
            readline.write_history_file(str(self.history_file))
        except OSError as e:
            logger.debug(f"Could not save history to {self.history_file}: {e}")

    def _styled_prompt(self) -> str:
        console = self.context.console
        if not getattr(console, "color", False):
            return self.prompt
        color = self.context.theme.prompt_color
        styled = render(f"[{color}]{self.prompt.rstrip()}[/]") + self.prompt[len(self.prompt.rstrip()):]
        if HAS_READLINE:
            # Keep readline's cursor arithmetic away from escape sequences.
            styled = _ANSI_SEQUENCE.sub(lambda m: f"\001{m.group(0)}\002", styled)
        return styled

    def run(self) -> int:
        """Run the REPL loop.

        Returns:
            Exit code of the last executed command
        """
        self.running = True
        self._print_welcome()
        prompt = self._styled_prompt()
        while self.running:
            try:
                line = input(prompt).strip()
                if not line:
                    continue
                self.context.execute(line)
            except EOFError:
                # Ctrl+D
                self.context.console.write_line()
                break
            except KeyboardInterrupt:
                # Ctrl+C at the prompt clears the line
                self.context.console.write_line()
                continue
            except SystemExit:
                break
            except Exception as e:
                logger.debug("Unexpected error", exc_info=True)
                self.context.console.write_error_line(
                    format_error(str(e), color=self.context.theme.error_color, quiet=self.context.quiet)
                )
        self.running = False
        self._print_goodbye()
        return self.context.last_exit_code

    def _print_welcome(self) -> None:
        console = self.context.console
        console.write_line("[bold]nimbus shell[/] - query cloud resources, pipe into anything")
        console.write_line(f"[{self.context.theme.dim_color}]Type help for available commands, exit to quit[/]")
        console.write_line()
        console.flush()

    def _print_goodbye(self) -> None:
        self.context.console.write_line("Goodbye!")
        self.context.console.flush()


def run_repl(context: Optional[ExecutionContext] = None) -> int:
    """Run interactive REPL.

    Args:
        context: Optional execution context

    Returns:
        Exit code of the last executed command
    """
    repl = REPL(context=context)
    return repl.run()


def run_command(command: str, context: Optional[ExecutionContext] = None) -> PipelineExecutionResult:
    """Run a single command non-interactively.

    Args:
        command: Command to execute
        context: Optional execution context

    Returns:
        Pipeline execution result
    """
    if context is None:
        context = ExecutionContext()

    try:
        return context.execute(command)
    except SystemExit:
        return PipelineExecutionResult.succeeded()


def run_script(
    script_path: Union[str, Path],
    context: Optional[ExecutionContext] = None,
) -> PipelineExecutionResult:
    """Run commands from a script file.

    Blank lines and lines starting with ``#`` are skipped. Execution stops at
    the first command that fails.

    Args:
        script_path: Path to script file
        context: Optional execution context

    Returns:
        Result of the last executed command
    """
    if context is None:
        context = ExecutionContext()

    result = PipelineExecutionResult.succeeded()
    with open(script_path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith('#'):
                continue

            logger.debug(f"Executing line {line_num}: {line}")
            try:
                result = context.execute(line)
            except SystemExit:
                break

            if not result.success:
                logger.error(f"Error on line {line_num}: {result.error}")
                break

    return result
