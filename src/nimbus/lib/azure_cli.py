"""Thin wrapper around the Azure CLI.

Runs ``az`` with JSON output and returns the parsed document.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, List, Optional, Sequence

from nimbus.pipeline.cancellation import CancellationSignal, CommandCancelledError

logger = logging.getLogger(__name__)


class AzureCliError(Exception):
    """Raised when an Azure CLI call fails."""
    pass


class AzureCli:
    """Execute Azure CLI commands."""

    def __init__(self, cli_path: str = "az", subscription: Optional[str] = None):
        """Initialize CLI wrapper.

        Args:
            cli_path: Path or name of the az executable
            subscription: Default subscription passed to every command
        """
        self.cli_path = cli_path
        self.subscription = subscription

    def build_command(self, args: Sequence[str]) -> List[str]:
        """Build the full argument vector for a CLI call."""
        cmd = [self.cli_path, *args]
        if "--output" not in args and "-o" not in args:
            cmd.extend(["--output", "json"])
        if self.subscription and "--subscription" not in args:
            cmd.extend(["--subscription", self.subscription])
        return cmd

    def run(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
        cancellation: Optional[CancellationSignal] = None,
    ) -> Any:
        """Run an az command and parse its JSON output.

        Args:
            args: Arguments after ``az`` (e.g. ["account", "list"])
            timeout: Optional timeout in seconds
            cancellation: Signal that kills the az process when cancelled

        Returns:
            Parsed JSON document (None for empty output)

        Raises:
            AzureCliError: If az is missing, fails, or prints invalid JSON
            CommandCancelledError: If the call was cancelled
        """
        cmd = self.build_command(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as e:
            raise AzureCliError(
                f"Azure CLI not found ('{self.cli_path}'). Install it or set azure.cli_path in the config"
            ) from e

        unregister = cancellation.add_callback(process.kill) if cancellation is not None else None
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise AzureCliError(f"Azure CLI timed out after {timeout}s") from e
        except KeyboardInterrupt:
            process.kill()
            process.wait()
            raise
        finally:
            if unregister is not None:
                unregister()

        if cancellation is not None and cancellation.is_cancelled:
            logger.debug(f"az {' '.join(args)} cancelled")
            raise CommandCancelledError()

        if process.returncode != 0:
            message = _summarize_stderr(stderr) or f"exit code {process.returncode}"
            raise AzureCliError(f"az {' '.join(args)} failed: {message}")

        output = stdout.strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise AzureCliError(f"az {' '.join(args)} returned invalid JSON: {e}") from e

    def version(self) -> Optional[str]:
        """Return the installed azure-cli version, or None if unavailable."""
        try:
            data = self.run(["version"], timeout=30)
        except AzureCliError as e:
            logger.debug(f"Failed to check Azure CLI version: {e}")
            return None
        if isinstance(data, dict):
            return data.get("azure-cli")
        return None


def _summarize_stderr(stderr: str) -> str:
    """First meaningful line of CLI error output."""
    for line in (stderr or "").splitlines():
        line = line.strip()
        if line and not line.startswith("WARNING"):
            return line.removeprefix("ERROR:").strip()
    return ""
