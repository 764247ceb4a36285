"""Output writers.

Internal commands never print directly. They write through an
``OutputWriter``, and the pipeline executor decides which variant they get:

- ``ConsoleOutputWriter``: formatted, interactive terminal output
- ``StreamOutputWriter``: plain UTF-8 bytes feeding an external process
- ``CaptureOutputWriter``: in-memory text, for tests and alias previews
"""

from __future__ import annotations

import io
import logging
import sys
from abc import ABC, abstractmethod
from typing import IO, Any, Optional, TextIO

from nimbus.output import markup

logger = logging.getLogger(__name__)


def plain_text(renderable: Any) -> str:
    """Plain-text representation of a renderable object."""
    if renderable is None:
        return ""
    to_plain = getattr(renderable, "to_plain_text", None)
    if callable(to_plain):
        return to_plain()
    return str(renderable)


class OutputWriter(ABC):
    """Capability surface internal commands write through."""

    @property
    @abstractmethod
    def supports_formatting(self) -> bool:
        """Whether markup is rendered rather than stripped."""

    @abstractmethod
    def write(self, text: str) -> None:
        """Write text without a trailing newline."""

    def write_line(self, text: str = "") -> None:
        """Write text followed by a newline."""
        self.write(text + "\n")

    @abstractmethod
    def write_raw(self, data: bytes) -> None:
        """Write bytes as-is, bypassing markup handling."""

    @abstractmethod
    def write_renderable(self, renderable: Any) -> None:
        """Write a structured object (table, document, ...)."""

    @abstractmethod
    def write_error(self, text: str) -> None:
        """Write diagnostic text to the error stream."""

    def write_error_line(self, text: str = "") -> None:
        self.write_error(text + "\n")

    def flush(self) -> None:
        """Flush buffered output."""


class ConsoleOutputWriter(OutputWriter):
    """Writes formatted text to the terminal."""

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        color: bool = True,
    ):
        """Initialize console writer.

        Args:
            stdout: Output stream (defaults to sys.stdout at write time)
            stderr: Error stream (defaults to sys.stderr at write time)
            color: Render markup as ANSI colours; strip it otherwise
        """
        self._stdout = stdout
        self._stderr = stderr
        self.color = color

    @property
    def stdout(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr or sys.stderr

    @property
    def supports_formatting(self) -> bool:
        return True

    def _format(self, text: str) -> str:
        return markup.render(text) if self.color else markup.strip(text)

    def write(self, text: str) -> None:
        self.stdout.write(self._format(text))

    def write_raw(self, data: bytes) -> None:
        self.stdout.write(data.decode("utf-8", errors="replace"))

    def write_renderable(self, renderable: Any) -> None:
        render_markup = getattr(renderable, "render_markup", None)
        if callable(render_markup):
            self.write_line(render_markup())
        else:
            self.write_line(markup.escape(plain_text(renderable)))

    def write_error(self, text: str) -> None:
        self.stderr.write(self._format(text))

    def flush(self) -> None:
        self.stdout.flush()
        self.stderr.flush()


class StreamOutputWriter(OutputWriter):
    """Writes plain UTF-8 bytes into a binary stream.

    Used to feed the standard input of the first external stage. When the
    reading side goes away (``head`` exiting early, for example) the writer
    marks itself broken and silently drops further output.
    """

    def __init__(
        self,
        stream: IO[bytes],
        error_writer: Optional[OutputWriter] = None,
        owns_stream: bool = True,
    ):
        """Initialize stream writer.

        Args:
            stream: Binary stream to write to
            error_writer: Writer receiving diagnostics (plain sys.stderr if None)
            owns_stream: Close the stream in close()
        """
        if stream is None:
            raise ValueError("stream must not be None")
        self._stream = stream
        self._error_writer = error_writer
        self._owns_stream = owns_stream
        self._closed = False
        self.broken = False
        self.bytes_written = 0

    @property
    def supports_formatting(self) -> bool:
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def _send(self, data: bytes) -> None:
        if self._closed:
            raise ValueError("write to closed StreamOutputWriter")
        if self.broken or not data:
            return
        try:
            self._stream.write(data)
            self.bytes_written += len(data)
        except BrokenPipeError:
            self._mark_broken()

    def _mark_broken(self) -> None:
        if not self.broken:
            logger.debug(f"Downstream closed its input after {self.bytes_written} bytes")
        self.broken = True

    def write(self, text: str) -> None:
        self._send(markup.strip(text).encode("utf-8"))

    def write_line(self, text: str = "") -> None:
        """Write a line and flush it through to the reader."""
        self.write(text + "\n")
        self.flush()

    def write_raw(self, data: bytes) -> None:
        self._send(bytes(data))

    def write_renderable(self, renderable: Any) -> None:
        if renderable is None:
            return
        self._send((plain_text(renderable) + "\n").encode("utf-8"))

    def write_error(self, text: str) -> None:
        if self._error_writer is not None:
            self._error_writer.write_error(text)
        else:
            sys.stderr.write(markup.strip(text))

    def flush(self) -> None:
        if self._closed or self.broken:
            return
        try:
            self._stream.flush()
        except BrokenPipeError:
            self._mark_broken()

    def close(self) -> None:
        """Flush and, if owned, close the stream. Idempotent."""
        if self._closed:
            return
        self.flush()
        self._closed = True
        if self._owns_stream:
            try:
                self._stream.close()
            except BrokenPipeError:
                self._mark_broken()

    def __enter__(self) -> "StreamOutputWriter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class CaptureOutputWriter(OutputWriter):
    """Accumulates plain text in memory."""

    def __init__(self):
        self._buffer = io.StringIO()
        self._errors = io.StringIO()

    @property
    def supports_formatting(self) -> bool:
        return False

    def write(self, text: str) -> None:
        self._buffer.write(markup.strip(text))

    def write_raw(self, data: bytes) -> None:
        self._buffer.write(data.decode("utf-8", errors="replace"))

    def write_renderable(self, renderable: Any) -> None:
        self._buffer.write(plain_text(renderable) + "\n")

    def write_error(self, text: str) -> None:
        self._errors.write(markup.strip(text))

    def get_output(self) -> str:
        return self._buffer.getvalue()

    def get_output_bytes(self) -> bytes:
        return self.get_output().encode("utf-8")

    def get_error_output(self) -> str:
        return self._errors.getvalue()

    def clear(self) -> None:
        self._buffer = io.StringIO()
        self._errors = io.StringIO()
