"""Console markup.

Text written to the console may carry ``[style]text[/]`` tags, e.g.
``[bold red]Error:[/] something``. Literal brackets are written as ``[[`` and
``]]``. External processes never see markup: it is stripped before bytes
leave the shell.
"""

from __future__ import annotations

import re
from typing import List

ANSI_RESET = "\033[0m"

STYLES = {
    "bold": "1",
    "dim": "2",
    "italic": "3",
    "underline": "4",
    "black": "30",
    "red": "31",
    "green": "32",
    "yellow": "33",
    "blue": "34",
    "magenta": "35",
    "cyan": "36",
    "white": "37",
    "grey": "90",
    "gray": "90",
    "bright_red": "91",
    "bright_green": "92",
    "bright_yellow": "93",
    "bright_blue": "94",
    "bright_magenta": "95",
    "bright_cyan": "96",
    "bright_white": "97",
}

_TAG = re.compile(r"\[\[|\]\]|\[(/?)([a-z_ ]*)\]")


def is_valid_style(style: str) -> bool:
    """Check that every word of a style is a known style name."""
    words = style.split()
    return bool(words) and all(word in STYLES for word in words)


def escape(text: str) -> str:
    """Escape brackets so text is printed literally."""
    return text.replace("[", "[[").replace("]", "]]")


def strip(text: str) -> str:
    """Remove markup tags, keeping escaped brackets as literals.

    Args:
        text: Text that may contain markup

    Returns:
        Plain text
    """
    if not text:
        return text

    result = []
    in_tag = False
    i = 0
    while i < len(text):
        char = text[i]
        if char == "[":
            if i + 1 < len(text) and text[i + 1] == "[":
                result.append("[")
                i += 2
                continue
            in_tag = True
        elif char == "]":
            if i + 1 < len(text) and text[i + 1] == "]":
                result.append("]")
                i += 2
                continue
            in_tag = False
        elif not in_tag:
            result.append(char)
        i += 1
    return "".join(result)


def render(text: str) -> str:
    """Translate markup tags to ANSI escape sequences.

    Unknown tags are left in the text untouched.

    Args:
        text: Text that may contain markup

    Returns:
        Text with ANSI colour codes
    """
    stack: List[str] = []

    def replace(match: re.Match) -> str:
        token = match.group(0)
        if token == "[[":
            return "["
        if token == "]]":
            return "]"
        closing, style = match.group(1), match.group(2).strip()
        if closing:
            if stack:
                stack.pop()
            return ANSI_RESET + "".join(stack)
        if not is_valid_style(style):
            return token
        codes = ";".join(STYLES[word] for word in style.split())
        sequence = f"\033[{codes}m"
        stack.append(sequence)
        return sequence

    rendered = _TAG.sub(replace, text)
    if stack:
        rendered += ANSI_RESET
    return rendered
