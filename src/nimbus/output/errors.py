"""User-facing error formatting."""

from __future__ import annotations

from typing import Optional, Sequence

from nimbus.output.markup import escape

INDENT = "       "
BULLET = "•"


def format_error(
    message: str,
    color: str = "red",
    details: Optional[str] = None,
    suggestions: Optional[Sequence[str]] = None,
    quiet: bool = False,
) -> str:
    """Format an error message as console markup.

    Args:
        message: Main error message
        color: Style for the ``Error:`` prefix
        details: Optional second line
        suggestions: Optional hints shown as a bullet list
        quiet: Only emit the first line

    Returns:
        Markup text (one or more lines, no trailing newline)
    """
    lines = [f"[{color}]Error:[/] {escape(message)}"]
    if quiet:
        return "\n".join(lines)

    if details:
        lines.append(f"{INDENT}{escape(details)}")

    if suggestions:
        lines.append("")
        lines.append(f"{INDENT}Suggestions:")
        for suggestion in suggestions:
            lines.append(f"{INDENT}{BULLET} {escape(suggestion)}")

    return "\n".join(lines)


def format_unknown_command(
    command_name: str,
    suggestions: Sequence[str] = (),
    color: str = "red",
    quiet: bool = False,
) -> str:
    """Format the error shown for an unknown command."""
    lines = [f"[{color}]Error:[/] Unknown command '{escape(command_name)}'"]
    if quiet:
        return "\n".join(lines)

    if suggestions:
        lines.append("")
        lines.append(f"{INDENT}Did you mean?")
        for suggestion in suggestions:
            lines.append(f"{INDENT}{BULLET} {escape(suggestion)}")

    lines.append("")
    lines.append(f"{INDENT}Run 'help' to see available commands.")
    return "\n".join(lines)
