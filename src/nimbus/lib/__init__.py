"""nimbus library modules.

Configuration, alias expansion and cloud CLI access.
"""

__all__ = [
    "aliases",
    "azure_cli",
    "config_parser",
]
