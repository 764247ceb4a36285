"""Pipeline execution engine.

Runs an internal command and chains its output through external processes.
"""

from __future__ import annotations

from nimbus.pipeline.cancellation import CancellationSignal, CommandCancelledError
from nimbus.pipeline.executor import PipelineExecutor
from nimbus.pipeline.model import (
    CommandResult,
    ExitCodes,
    ExternalStageSpec,
    ParsedPipeline,
    PipelineExecutionResult,
)
from nimbus.pipeline.stage import ProcessStageRunner, StageHandle, StageSpawnError

__all__ = [
    "CancellationSignal",
    "CommandCancelledError",
    "CommandResult",
    "ExitCodes",
    "ExternalStageSpec",
    "ParsedPipeline",
    "PipelineExecutionResult",
    "PipelineExecutor",
    "ProcessStageRunner",
    "StageHandle",
    "StageSpawnError",
]
