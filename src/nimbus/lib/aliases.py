"""Command alias expansion.

An alias replaces the first word of a command line. ``{0}``, ``{1}``, ...
placeholders take the following arguments; arguments beyond the highest
placeholder are appended. Aliases may expand to other aliases.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

MAX_RECURSION_DEPTH = 10

_PLACEHOLDER = re.compile(r"\{(\d+)\}")


class AliasExpansionError(Exception):
    """Raised when an alias cannot be expanded."""
    pass


@dataclass(frozen=True)
class AliasExpansion:
    """Result of expanding a command line."""

    text: str
    was_expanded: bool = False


def _split_preserving_quotes(text: str) -> List[str]:
    """Split on whitespace while keeping quotes in the tokens."""
    lexer = shlex.shlex(text, posix=False, punctuation_chars=False)
    lexer.whitespace_split = True
    lexer.commenters = ''
    try:
        return list(lexer)
    except ValueError as e:
        raise AliasExpansionError(f"Failed to parse command: {text} ({e})") from e


class AliasResolver:
    """Expand aliases defined in the configuration."""

    def __init__(self, aliases: Optional[Dict[str, str]] = None):
        """Initialize resolver.

        Args:
            aliases: Mapping of alias name to expansion text
        """
        self.aliases: Dict[str, str] = dict(aliases or {})

    def get(self, name: str) -> Optional[str]:
        return self.aliases.get(name)

    def names(self) -> List[str]:
        return sorted(self.aliases)

    def expand(self, line: str) -> AliasExpansion:
        """Expand the first word of a command line if it is an alias.

        Args:
            line: Raw input line

        Returns:
            Expanded text and whether anything changed

        Raises:
            AliasExpansionError: On missing arguments, cycles or runaway recursion
        """
        if not line or not line.strip():
            return AliasExpansion(line)

        tokens = _split_preserving_quotes(line)
        if not tokens or tokens[0] not in self.aliases:
            return AliasExpansion(line)

        return AliasExpansion(self._expand(tokens[0], tokens[1:], [], 0), was_expanded=True)

    def test_expand(self, name: str, arguments: Sequence[str] = ()) -> str:
        """Expand a named alias with the given arguments without running it.

        Raises:
            AliasExpansionError: If the alias is unknown or cannot be expanded
        """
        if name not in self.aliases:
            raise AliasExpansionError(f"Alias '{name}' not found")
        return self._expand(name, list(arguments), [], 0)

    def _expand(self, name: str, arguments: List[str], chain: List[str], depth: int) -> str:
        if depth > MAX_RECURSION_DEPTH:
            raise AliasExpansionError(f"Alias expansion exceeded maximum depth of {MAX_RECURSION_DEPTH}")

        if name in chain:
            raise AliasExpansionError(f"Circular alias detected: {' -> '.join(chain + [name])}")
        chain = chain + [name]

        logger.debug(f"Expanding alias '{name}' with {len(arguments)} arguments")
        expanded = self._substitute(name, self.aliases[name], arguments)

        tokens = _split_preserving_quotes(expanded)
        if tokens and tokens[0] in self.aliases:
            return self._expand(tokens[0], tokens[1:], chain, depth + 1)
        return expanded

    def _substitute(self, name: str, expansion: str, arguments: List[str]) -> str:
        """Replace positional placeholders and append leftover arguments."""
        indices = [int(m.group(1)) for m in _PLACEHOLDER.finditer(expansion)]
        if not indices:
            return " ".join([expansion, *arguments]) if arguments else expansion

        required = max(indices) + 1
        if len(arguments) < required:
            usage = " ".join(f"<arg{i}>" for i in range(required))
            raise AliasExpansionError(
                f"Alias '{name}' requires {required} argument(s), but {len(arguments)} provided. "
                f"Usage: {name} {usage}"
            )

        result = _PLACEHOLDER.sub(lambda m: arguments[int(m.group(1))], expansion)
        extra = arguments[required:]
        return " ".join([result, *extra]) if extra else result
