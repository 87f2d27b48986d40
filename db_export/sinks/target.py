import io
import os
import sys
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional, Union

from ..errors import SinkError
from ..logger import get_logger

STDOUT_MARKER = "-"


class _CountingStream(io.BufferedIOBase):
    """
    Write-only binary stream that counts the bytes passed through it.

    ``close`` only flushes: wrappers (text layers, pyarrow) may close their view
    of the stream while the owning target still decides whether to keep it.
    """

    mode = "wb"

    def __init__(self: "_CountingStream", raw: BinaryIO):
        super().__init__()
        self._raw = raw
        self.bytes_written = 0

    def writable(self: "_CountingStream") -> bool:
        return True

    def write(self: "_CountingStream", data) -> int:
        written = self._raw.write(data)
        written = len(data) if written is None else written
        self.bytes_written += written
        return written

    def tell(self: "_CountingStream") -> int:
        return self.bytes_written

    def flush(self: "_CountingStream"):
        if not self._raw.closed:
            self._raw.flush()

    def close(self: "_CountingStream"):
        self.flush()


class OutputTarget:
    """
    Where a sink writes: a file path, stdout, or a caller-owned binary stream.

    File output goes to a hidden sibling temporary file that replaces the
    requested path on ``commit`` and is deleted on ``discard``, so the path only
    ever holds complete output.
    """

    def __init__(
        self: "OutputTarget",
        path: Optional[Union[str, Path]] = None,
        stream: Optional[BinaryIO] = None,
    ):
        if path is None and stream is None:
            raise ValueError("An output target needs a path or a stream")
        self.logger = get_logger(__name__)
        self.path = Path(path) if path is not None else None
        self._stream = stream
        self._counter: Optional[_CountingStream] = None
        self._file: Optional[BinaryIO] = None
        self._temp_path: Optional[Path] = None
        self._external = False
        self.settled = False

    @classmethod
    def for_path(cls, path: Optional[Union[str, Path]]) -> "OutputTarget":
        """
        Builds a target for a CLI save path; ``None`` and ``-`` mean stdout.
        """
        if path is None or str(path) == STDOUT_MARKER:
            return cls(stream=sys.stdout.buffer)
        return cls(path=path)

    @property
    def label(self: "OutputTarget") -> str:
        if self.path is not None:
            return str(self.path)
        return "<stdout>" if self._stream is getattr(sys.stdout, "buffer", None) else "<stream>"

    @property
    def is_file(self: "OutputTarget") -> bool:
        return self.path is not None

    @property
    def bytes_written(self: "OutputTarget") -> int:
        if self._external and not self.settled:
            return self._temp_path.stat().st_size
        return self._counter.bytes_written if self._counter else 0

    def open_path(self: "OutputTarget") -> Path:
        """
        Returns the temporary file path, for writers that open the file themselves.

        Raises:
            SinkError: If the target is a stream or the file cannot be created.
        """
        if not self.is_file:
            raise SinkError(f"{self.label} is not a file; this format needs a save path")
        self.open()
        self._external = True
        return self._temp_path

    def open(self: "OutputTarget") -> _CountingStream:
        """
        Returns the binary stream sinks write to; opened on first call.

        Raises:
            SinkError: If the temporary output file cannot be created.
        """
        if self._counter is not None:
            return self._counter

        if self.path is None:
            self._counter = _CountingStream(self._stream)
            return self._counter

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".part"
            )
        except OSError as exc:
            raise SinkError(f"Cannot create output file: {exc}", target=self.path) from exc

        self._temp_path = Path(temp_name)
        self._file = os.fdopen(fd, "wb")
        self._counter = _CountingStream(self._file)
        return self._counter

    def commit(self: "OutputTarget"):
        """
        Publishes the output at the requested path.
        """
        if self.settled:
            return
        self.settled = True

        if self._counter is None:
            return
        if self._file is None:
            self._counter.flush()
            return

        try:
            self._file.close()
            if self._external:
                self._counter.bytes_written = self._temp_path.stat().st_size
            os.replace(self._temp_path, self.path)
        except OSError as exc:
            self._remove_temp()
            raise SinkError(f"Cannot write output file: {exc}", target=self.path) from exc

        self.logger.info(f"Wrote {self.bytes_written} bytes to {self.path}")

    def discard(self: "OutputTarget"):
        """
        Drops the output; for streams, what was already written cannot be retracted.
        """
        if self.settled:
            return
        self.settled = True

        if self._counter is None:
            return
        if self._file is None:
            try:
                self._counter.flush()
            except OSError as exc:
                self.logger.warning(f"Could not flush {self.label}: {exc}")
            if self.bytes_written:
                self.logger.warning(
                    f"{self.bytes_written} bytes of incomplete output were already written to {self.label}"
                )
            return

        try:
            self._file.close()
        except OSError as exc:
            self.logger.warning(f"Could not close {self._temp_path}: {exc}")
        finally:
            self._remove_temp()
        self.logger.info(f"Discarded incomplete output for {self.path}")

    def _remove_temp(self: "OutputTarget"):
        if self._temp_path is not None:
            self._temp_path.unlink(missing_ok=True)
