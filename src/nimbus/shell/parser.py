"""Parser for shell pipe syntax.

Parses command lines like: query account list | grep prod | jq .

The first segment is an internal command and keeps its raw text; every
following segment is an external process, tokenized with POSIX shell quoting
rules (no variable or glob expansion).
"""

from __future__ import annotations

import logging
import shlex
from typing import List

from nimbus.pipeline.model import ExternalStageSpec, ParsedPipeline

logger = logging.getLogger(__name__)


class PipelineParseError(ValueError):
    """Raised when a command line is not a valid pipeline."""
    pass


def tokenize(text: str) -> List[str]:
    """Split a command into tokens using shell-like quoting.

    Args:
        text: Command text

    Returns:
        List of tokens

    Raises:
        PipelineParseError: On unbalanced quotes
    """
    try:
        return shlex.split(text, posix=True)
    except ValueError as e:
        raise PipelineParseError(f"Failed to parse command: {text} ({e})") from e


class PipelineParser:
    """Parser for pipe-based command syntax.

    Converts a line like:
        query account list | grep prod | head -n 5

    To a ParsedPipeline with internal command ``query account list`` and two
    external stages.
    """

    def parse(self, command_line: str) -> ParsedPipeline:
        """Parse a command line into a pipeline.

        Args:
            command_line: Command line to parse

        Returns:
            Parsed pipeline

        Raises:
            PipelineParseError: If parsing fails
        """
        if not command_line or not command_line.strip():
            raise PipelineParseError("Input is empty")

        parts = self._split_pipeline(command_line)

        for position, part in enumerate(parts):
            if part:
                continue
            if position == 0:
                raise PipelineParseError("No command before pipe character")
            if position == len(parts) - 1:
                raise PipelineParseError("No command after final pipe character")
            raise PipelineParseError(f"Empty segment at position {position + 1}")

        internal, externals = parts[0], parts[1:]
        stages = [self._parse_stage(part) for part in externals]

        pipeline = ParsedPipeline(internal_command=internal, external_stages=tuple(stages))
        logger.debug(f"Parsed pipeline: {internal!r} with {len(stages)} external stage(s)")
        return pipeline

    def _split_pipeline(self, command_line: str) -> List[str]:
        """Split command line by pipes, respecting quotes and escapes.

        Quote characters and backslashes are kept so that each segment can be
        tokenized later.

        Args:
            command_line: Command line to split

        Returns:
            List of stripped command parts
        """
        parts = []
        current = []
        in_quotes = False
        quote_char = None
        escaped = False

        for char in command_line:
            if escaped:
                current.append(char)
                escaped = False
            elif char == '\\' and quote_char != "'":
                current.append(char)
                escaped = True
            elif in_quotes:
                current.append(char)
                if char == quote_char:
                    in_quotes = False
                    quote_char = None
            elif char in ('"', "'"):
                in_quotes = True
                quote_char = char
                current.append(char)
            elif char == '|':
                parts.append(''.join(current).strip())
                current = []
            else:
                current.append(char)

        if in_quotes:
            raise PipelineParseError(f"Unterminated {quote_char} quote")

        parts.append(''.join(current).strip())
        return parts

    def _parse_stage(self, command_str: str) -> ExternalStageSpec:
        """Parse one external segment into an executable and arguments.

        Args:
            command_str: Segment text (e.g., "grep -i 'hello world'")

        Returns:
            External stage spec
        """
        tokens = tokenize(command_str)
        if not tokens:
            raise PipelineParseError("Empty command")
        return ExternalStageSpec(executable=tokens[0], arguments=tuple(tokens[1:]))


def parse_pipeline(command_line: str) -> ParsedPipeline:
    """Parse a pipeline command line.

    Convenience function that creates a parser and parses the command.

    Args:
        command_line: Command line to parse

    Returns:
        Parsed pipeline
    """
    parser = PipelineParser()
    return parser.parse(command_line)
