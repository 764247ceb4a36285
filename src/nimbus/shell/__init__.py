"""Shell module for the interactive cloud query CLI.

Provides the REPL, the pipe syntax parser and the built-in commands whose
output can be piped into external programs.
"""

from __future__ import annotations

from nimbus.shell.builtins import execute_builtin, get_registry, is_builtin
from nimbus.shell.interpreter import ExecutionContext, get_context, reset_context
from nimbus.shell.parser import PipelineParser, parse_pipeline
from nimbus.shell.repl import REPL, run_command, run_repl, run_script

__all__ = [
    "REPL",
    "PipelineParser",
    "ExecutionContext",
    "run_repl",
    "run_command",
    "run_script",
    "parse_pipeline",
    "get_context",
    "reset_context",
    "get_registry",
    "is_builtin",
    "execute_builtin",
]
