"""Shared fixtures for nimbus tests."""

import io
import os
import sys

import pytest

from nimbus.lib.config_parser import ConfigParser
from nimbus.output.writers import CaptureOutputWriter
from nimbus.pipeline.executor import PipelineExecutor
from nimbus.pipeline.model import CommandResult
from nimbus.pipeline.stage import ProcessStageRunner
from nimbus.shell.interpreter import ExecutionContext

requires_posix = pytest.mark.skipif(os.name != "posix", reason="requires POSIX pipes and tools")

PYTHON = sys.executable


def python_stage(code):
    """Argument vector running a Python snippet as a pipeline stage."""
    return [PYTHON, "-c", code]


class RecordingStageRunner(ProcessStageRunner):
    """Stage runner that remembers every handle it started."""

    def __init__(self):
        super().__init__()
        self.started = []

    def start(self, spec, index=0):
        handle = super().start(spec, index=index)
        self.started.append(handle)
        return handle


class EmitRunner:
    """Internal command runner that writes fixed text."""

    def __init__(self, text="", result=None):
        self.text = text
        self.result = result or CommandResult.ok()
        self.calls = 0

    def __call__(self, command, writer, cancellation):
        self.calls += 1
        if self.text:
            writer.write(self.text)
        return self.result


@pytest.fixture
def capture():
    return CaptureOutputWriter()


@pytest.fixture
def stdout_sink():
    return io.BytesIO()


@pytest.fixture
def stderr_sink():
    return io.BytesIO()


@pytest.fixture
def stage_runner():
    return RecordingStageRunner()


@pytest.fixture
def executor(stage_runner, capture, stdout_sink, stderr_sink):
    """Executor whose console and process output go to in-memory sinks."""
    return PipelineExecutor(
        stage_runner=stage_runner,
        console=capture,
        stdout=stdout_sink,
        stderr=stderr_sink,
    )


@pytest.fixture
def write_config(tmp_path):
    """Write a config.yaml into a temporary directory."""
    def _write(content):
        path = tmp_path / "config.yaml"
        path.write_text(content)
        return path
    return _write


@pytest.fixture
def make_context(tmp_path, capture, executor):
    """Build an ExecutionContext wired to in-memory sinks."""
    def _make(config_text=None, quiet=False, azure_cli=None):
        path = tmp_path / "config.yaml"
        if config_text is not None:
            path.write_text(config_text)
        parser = ConfigParser(path)
        parser.parse()
        return ExecutionContext(
            config_parser=parser,
            console=capture,
            executor=executor,
            azure_cli=azure_cli,
            quiet=quiet,
        )
    return _make
