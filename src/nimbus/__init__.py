"""nimbus - interactive shell for querying cloud resources.

Runs built-in query commands and streams their output through ordinary
external programs, the way a Unix shell pipeline would.

Features:
- Pipelines of one internal command and any number of external processes
- Cancellation with Ctrl+C that never leaves processes behind
- Command aliases with positional arguments
- YAML configuration
"""

__version__ = "0.1.0"
__license__ = "MIT"

from nimbus.cli import main

__all__ = ["main", "__version__"]
