"""Data model for shell pipelines.

A pipeline is one internal command followed by an ordered chain of external
process stages. Everything here is immutable once constructed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple


class ExitCodes:
    """Process exit codes reported by the shell."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    USER_CANCELLATION = 2
    CONFIGURATION_ERROR = 4
    NOT_EXECUTABLE = 126
    COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class ExternalStageSpec:
    """One external process in a pipe chain.

    Arguments are kept as an argument vector and are never joined into a
    shell command line.
    """

    executable: str
    arguments: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.executable:
            raise ValueError("External stage requires an executable")
        object.__setattr__(self, "arguments", tuple(self.arguments))

    @property
    def argv(self) -> list[str]:
        """Argument vector passed to the OS, executable first."""
        return [self.executable, *self.arguments]

    def __str__(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class ParsedPipeline:
    """An internal command plus zero or more external stages.

    Stage order is execution and piping order.
    """

    internal_command: str
    external_stages: Tuple[ExternalStageSpec, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "external_stages", tuple(self.external_stages))

    @classmethod
    def create(cls, internal_command: str, stages: Sequence[Sequence[str]] = ()) -> "ParsedPipeline":
        """Build a pipeline from plain argument vectors.

        Args:
            internal_command: Raw text of the internal command
            stages: Argument vectors, executable first

        Returns:
            Parsed pipeline
        """
        specs = tuple(ExternalStageSpec(argv[0], tuple(argv[1:])) for argv in stages)
        return cls(internal_command=internal_command, external_stages=specs)

    @property
    def has_external_stages(self) -> bool:
        return bool(self.external_stages)

    @property
    def segment_count(self) -> int:
        return 1 + len(self.external_stages)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an internal command."""

    success: bool
    exit_code: int = ExitCodes.SUCCESS
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "CommandResult":
        return cls(success=True)

    @classmethod
    def failure(cls, message: str, exit_code: int = ExitCodes.GENERAL_ERROR) -> "CommandResult":
        """Create a failed result.

        Args:
            message: Error shown to the user
            exit_code: Non-zero exit code

        Returns:
            Failed command result
        """
        return cls(success=False, exit_code=exit_code, error=message)


@dataclass(frozen=True)
class PipelineExecutionResult:
    """Outcome of a whole pipeline execution."""

    success: bool
    exit_code: int
    error: Optional[str] = None
    cancelled: bool = False
    stage_exit_codes: Tuple[int, ...] = field(default_factory=tuple)

    @classmethod
    def from_command_result(cls, result: CommandResult) -> "PipelineExecutionResult":
        """Reinterpret an internal command result as a pipeline result."""
        return cls(success=result.success, exit_code=result.exit_code, error=result.error)

    @classmethod
    def succeeded(cls, stage_exit_codes: Sequence[int] = ()) -> "PipelineExecutionResult":
        return cls(
            success=True,
            exit_code=ExitCodes.SUCCESS,
            stage_exit_codes=tuple(stage_exit_codes),
        )

    @classmethod
    def failed(
        cls,
        error: str,
        exit_code: int = ExitCodes.GENERAL_ERROR,
        stage_exit_codes: Sequence[int] = (),
    ) -> "PipelineExecutionResult":
        return cls(
            success=False,
            exit_code=exit_code,
            error=error,
            stage_exit_codes=tuple(stage_exit_codes),
        )

    @classmethod
    def cancelled_result(cls, stage_exit_codes: Sequence[int] = ()) -> "PipelineExecutionResult":
        """Create the result reported when the caller aborted the pipeline."""
        return cls(
            success=False,
            exit_code=ExitCodes.USER_CANCELLATION,
            error="Pipeline cancelled",
            cancelled=True,
            stage_exit_codes=tuple(stage_exit_codes),
        )

    @property
    def has_non_zero_exit_code(self) -> bool:
        return self.exit_code != ExitCodes.SUCCESS
