"""Output writers and console formatting."""

from __future__ import annotations

from nimbus.output.errors import format_error, format_unknown_command
from nimbus.output.writers import (
    CaptureOutputWriter,
    ConsoleOutputWriter,
    OutputWriter,
    StreamOutputWriter,
    plain_text,
)

__all__ = [
    "OutputWriter",
    "ConsoleOutputWriter",
    "StreamOutputWriter",
    "CaptureOutputWriter",
    "plain_text",
    "format_error",
    "format_unknown_command",
]
