"""Pipeline execution.

Runs one internal command and streams its output through a chain of external
processes:

    internal command -> stage 0 -> stage 1 -> ... -> console

Every inter-stage relay, the console relays and the process-exit waits run as
independent tasks in a thread pool, so a slow or stalled consumer never
blocks an upstream writer. The internal command itself runs on the calling
thread. All tasks are joined before ``execute`` returns.
"""

from __future__ import annotations

import logging
import sys
from concurrent.futures import Future, ThreadPoolExecutor
from typing import IO, Callable, List, Optional, Sequence

from nimbus.output.writers import ConsoleOutputWriter, OutputWriter, StreamOutputWriter
from nimbus.pipeline.cancellation import CancellationSignal, CommandCancelledError
from nimbus.pipeline.model import (
    CommandResult,
    ExternalStageSpec,
    ParsedPipeline,
    PipelineExecutionResult,
)
from nimbus.pipeline.stage import SIGPIPE_EXIT, ProcessStageRunner, StageHandle, StageSpawnError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

InternalCommandRunner = Callable[[str, OutputWriter, CancellationSignal], CommandResult]


def _close_quietly(stream: Optional[IO[bytes]]) -> None:
    if stream is None or stream.closed:
        return
    try:
        stream.close()
    except (BrokenPipeError, OSError, ValueError):
        pass


def describe_exit(name: str, code: int) -> str:
    """Human readable description of a stage exit code."""
    if code < 0:
        return f"'{name}' was terminated by signal {-code}"
    return f"'{name}' exited with code {code}"


def shell_exit_code(code: int) -> int:
    """Map a negative (signal) return code to the 128+N shell convention."""
    return 128 - code if code < 0 else code


class PipelineExecutor:
    """Execute parsed pipelines.

    Example:
        >>> executor = PipelineExecutor()
        >>> pipeline = ParsedPipeline.create("list", [["grep", "vm"]])
        >>> result = executor.execute(pipeline, runner)
    """

    def __init__(
        self,
        stage_runner: Optional[ProcessStageRunner] = None,
        console: Optional[OutputWriter] = None,
        stdout: Optional[IO[bytes]] = None,
        stderr: Optional[IO[bytes]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize pipeline executor.

        Args:
            stage_runner: Spawns external stages (default: ProcessStageRunner())
            console: Writer used when a pipeline has no external stages
            stdout: Binary sink for the last stage's output (default: sys.stdout)
            stderr: Binary sink for every stage's error output (default: sys.stderr)
            chunk_size: Maximum bytes moved per relay read
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.stage_runner = stage_runner or ProcessStageRunner()
        self.console = console or ConsoleOutputWriter()
        self._stdout = stdout
        self._stderr = stderr
        self.chunk_size = chunk_size

    @property
    def stdout_sink(self) -> IO[bytes]:
        return self._stdout if self._stdout is not None else sys.stdout.buffer

    @property
    def stderr_sink(self) -> IO[bytes]:
        return self._stderr if self._stderr is not None else sys.stderr.buffer

    def execute(
        self,
        pipeline: ParsedPipeline,
        runner: InternalCommandRunner,
        cancellation: Optional[CancellationSignal] = None,
    ) -> PipelineExecutionResult:
        """Execute a pipeline and report one result.

        Failures of the internal command or of any stage, spawn errors, broken
        pipes and cancellation are all folded into the returned result.

        Args:
            pipeline: Internal command plus external stages
            runner: Callable ``runner(text, writer, cancellation) -> CommandResult``
            cancellation: Signal that aborts the pipeline when set

        Returns:
            Pipeline execution result

        Raises:
            ValueError: If pipeline or runner is None
        """
        if pipeline is None:
            raise ValueError("pipeline must not be None")
        if runner is None:
            raise ValueError("runner must not be None")
        if cancellation is None:
            cancellation = CancellationSignal()

        if cancellation.is_cancelled:
            logger.debug("Pipeline cancelled before start")
            return PipelineExecutionResult.cancelled_result()

        if not pipeline.has_external_stages:
            return self._execute_internal_only(pipeline, runner, cancellation)
        return self._execute_chain(pipeline, runner, cancellation)

    def _invoke_runner(
        self,
        pipeline: ParsedPipeline,
        runner: InternalCommandRunner,
        writer: OutputWriter,
        cancellation: CancellationSignal,
    ) -> Optional[CommandResult]:
        """Run the internal command; None means it was cancelled."""
        try:
            result = runner(pipeline.internal_command, writer, cancellation)
            return result if result is not None else CommandResult.ok()
        except (CommandCancelledError, KeyboardInterrupt):
            logger.debug("Internal command cancelled")
            cancellation.cancel()
            return None
        except Exception as e:
            logger.debug("Internal command raised", exc_info=True)
            return CommandResult.failure(str(e) or type(e).__name__)

    def _execute_internal_only(
        self,
        pipeline: ParsedPipeline,
        runner: InternalCommandRunner,
        cancellation: CancellationSignal,
    ) -> PipelineExecutionResult:
        result = self._invoke_runner(pipeline, runner, self.console, cancellation)
        self.console.flush()
        if result is None or cancellation.is_cancelled:
            return PipelineExecutionResult.cancelled_result()
        return PipelineExecutionResult.from_command_result(result)

    def _start_stages(
        self,
        specs: Sequence[ExternalStageSpec],
        cancellation: CancellationSignal,
        handles: List[StageHandle],
    ) -> Optional[PipelineExecutionResult]:
        """Spawn stages in order into ``handles``.

        Returns:
            A terminal result if spawning was aborted, None on success
        """
        for index, spec in enumerate(specs):
            if cancellation.is_cancelled:
                return PipelineExecutionResult.cancelled_result()
            try:
                handles.append(self.stage_runner.start(spec, index=index))
            except StageSpawnError as e:
                logger.debug(f"Spawn failed for stage {index}: {e}")
                return PipelineExecutionResult.failed(e.user_message, exit_code=e.exit_code)
        return None

    def _terminate_all(self, handles: Sequence[StageHandle]) -> None:
        for handle in handles:
            self.stage_runner.terminate(handle)

    def _shutdown(self, handles: Sequence[StageHandle]) -> None:
        """Kill whatever is still running, reap every stage and close its streams."""
        for handle in handles:
            if handle.returncode is None:
                self.stage_runner.terminate(handle)
                self.stage_runner.wait_for_exit(handle)
            self.stage_runner.close(handle)

    def _execute_chain(
        self,
        pipeline: ParsedPipeline,
        runner: InternalCommandRunner,
        cancellation: CancellationSignal,
    ) -> PipelineExecutionResult:
        # Anything the console buffered must land before stage output does.
        self.console.flush()

        handles: List[StageHandle] = []
        unregister: Optional[Callable[[], None]] = None
        try:
            try:
                aborted = self._start_stages(pipeline.external_stages, cancellation, handles)
            except KeyboardInterrupt:
                cancellation.cancel()
                aborted = PipelineExecutionResult.cancelled_result()
            if aborted is not None:
                return aborted

            unregister = cancellation.add_callback(lambda: self._terminate_all(handles))
            return self._run_chain(pipeline, runner, cancellation, handles)
        finally:
            if unregister is not None:
                unregister()
            self._shutdown(handles)

    def _run_chain(
        self,
        pipeline: ParsedPipeline,
        runner: InternalCommandRunner,
        cancellation: CancellationSignal,
        handles: List[StageHandle],
    ) -> PipelineExecutionResult:
        last = len(handles) - 1
        writer = StreamOutputWriter(handles[0].stdin, error_writer=self.console)
        command_result: Optional[CommandResult] = None

        with ThreadPoolExecutor(
            max_workers=3 * len(handles),
            thread_name_prefix="nimbus-stage",
        ) as pool:
            output_relays: List[Future] = []
            for handle in handles:
                is_last = handle.index == last
                sink = self.stdout_sink if is_last else handles[handle.index + 1].stdin
                output_relays.append(pool.submit(
                    self._relay,
                    handle.stdout,
                    sink,
                    not is_last,
                    f"{handle.name} stdout",
                ))
                pool.submit(self._relay, handle.stderr, self.stderr_sink, False, f"{handle.name} stderr")
            exit_waits = [pool.submit(self.stage_runner.wait_for_exit, h) for h in handles]

            try:
                command_result = self._invoke_runner(pipeline, runner, writer, cancellation)
            finally:
                writer.close()

            try:
                exit_codes = [f.result() for f in exit_waits]
            except KeyboardInterrupt:
                logger.debug("Interrupted while waiting for stages")
                cancellation.cancel()
                exit_codes = [f.result() for f in exit_waits]

        downstream_closed = [f.result() for f in output_relays]

        if command_result is None or cancellation.is_cancelled:
            return PipelineExecutionResult.cancelled_result(stage_exit_codes=exit_codes)

        return self._aggregate(command_result, handles, exit_codes, downstream_closed)

    def _relay(
        self,
        source: IO[bytes],
        sink: IO[bytes],
        close_sink: bool,
        label: str,
    ) -> bool:
        """Copy bytes from source to sink until end-of-stream.

        Reads at most ``chunk_size`` bytes at a time and writes each chunk
        before reading the next, so memory stays bounded under backpressure.

        Returns:
            True if the sink was closed by its reader before the source ended
        """
        downstream_closed = False
        read = getattr(source, "read1", source.read)
        try:
            while True:
                chunk = read(self.chunk_size)
                if not chunk:
                    break
                try:
                    sink.write(chunk)
                    sink.flush()
                except BrokenPipeError:
                    downstream_closed = True
                    logger.debug(f"{label}: reader went away, stopping relay")
                    break
        except (OSError, ValueError) as e:
            logger.debug(f"{label}: relay stopped: {e}")
        finally:
            _close_quietly(source)
            if close_sink:
                _close_quietly(sink)
        return downstream_closed

    def _aggregate(
        self,
        command_result: CommandResult,
        handles: Sequence[StageHandle],
        exit_codes: Sequence[int],
        downstream_closed: Sequence[bool],
    ) -> PipelineExecutionResult:
        """Fold the internal command and stage outcomes into one result.

        A stage whose reader closed early (``... | head``) ended because of a
        broken pipe; whatever it exited with is not a failure. The first
        failure in stage order provides the error, the internal command
        counting as the first stage.
        """
        effective: List[int] = []
        for handle, code, closed in zip(handles, exit_codes, downstream_closed):
            if code != 0 and (closed or code == SIGPIPE_EXIT):
                logger.debug(f"Stage {handle.index} ({handle.name}) ended on a broken pipe ({code})")
                effective.append(0)
            else:
                effective.append(code)

        failed_stages = [(h, c) for h, c in zip(handles, effective) if c != 0]
        success = command_result.success and not failed_stages

        if success:
            return PipelineExecutionResult.succeeded(stage_exit_codes=exit_codes)

        if effective[-1] != 0:
            exit_code = shell_exit_code(effective[-1])
        elif failed_stages:
            exit_code = shell_exit_code(failed_stages[0][1])
        else:
            exit_code = command_result.exit_code

        if not command_result.success:
            error = command_result.error or "Internal command failed"
        else:
            handle, code = failed_stages[0]
            error = describe_exit(handle.name, code)

        return PipelineExecutionResult.failed(error, exit_code=exit_code, stage_exit_codes=exit_codes)
