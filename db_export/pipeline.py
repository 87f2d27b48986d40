"""
One export job: pull rows from a source and push them through a sink.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .database.source import RowSource
from .errors import ExportCancelled, ExportError, QueryError, SinkError
from .logger import get_logger
from .progress import ProgressReporter, ProgressSnapshot
from .sinks import Buffering, OutputTarget, SinkWriter, Truncation
from .values import Row


class PipelineState(Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExportResult:
    job_id: str
    state: PipelineState
    rows_written: int
    bytes_written: int
    elapsed: float
    error: Optional[ExportError] = None
    target: Optional[str] = None

    @property
    def ok(self: "ExportResult") -> bool:
        return self.state is PipelineState.COMPLETED

    @property
    def exit_code(self: "ExportResult") -> int:
        if self.ok:
            return 0
        return self.error.exit_code if self.error is not None else 1


class ExportPipeline:
    """
    Runs a single source-to-sink export.

    Rows are pulled one at a time and written before the next one is
    requested, so memory is bounded by the sink's own buffering.
    """

    state: PipelineState

    def __init__(
        self: "ExportPipeline",
        job_id: str,
        source: RowSource,
        sink: SinkWriter,
        target: OutputTarget,
        progress: Optional[ProgressReporter] = None,
        progress_every: int = 1000,
        cancel_event: Optional[threading.Event] = None,
        **context: Any,
    ):
        """
        Initializes a new ExportPipeline object.

        Args:
            job_id: Identifier reported in progress and errors.
            source: Unopened row source.
            sink: Fresh sink writer.
            target: Where the sink writes.
            progress: Shared progress channel.
            progress_every: Rows between two progress snapshots.
            cancel_event: Set to stop the export before the next row.
            **context: Extra error context (profile, query).
        """
        if progress_every < 1:
            raise ValueError("progress_every must be positive")

        self.logger = get_logger(__name__)
        self.job_id = job_id
        self.source = source
        self.sink = sink
        self.target = target
        self.progress = progress
        self.progress_every = progress_every
        self.cancel_event = cancel_event or threading.Event()
        self.context = context

        self.state = PipelineState.IDLE
        self.rows_written = 0
        self._begun = False
        self._ended = False
        self._started_at = 0.0

    @property
    def elapsed(self: "ExportPipeline") -> float:
        return time.monotonic() - self._started_at

    def _transition(self: "ExportPipeline", state: PipelineState):
        self.logger.debug(f"[{self.job_id}] {self.state.value} -> {state.value}")
        self.state = state

    def run(self: "ExportPipeline", connection_params: Mapping[str, Any]) -> ExportResult:
        """
        Runs the export to completion or failure; never raises export errors.

        Args:
            connection_params: Resolved profile fields handed to the source.

        Returns:
            The outcome, with the error (and its context) on failure.
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"Pipeline {self.job_id} has already run")

        self._started_at = time.monotonic()
        error: Optional[ExportError] = None

        try:
            self._check_cancelled()
            self._open(connection_params)
            self._stream()
            self._transition(PipelineState.COMPLETED)
        except ExportError as exc:
            error = exc.with_context(
                job=self.job_id, target=self.target.label, **self.context
            )
            self._transition(
                PipelineState.CANCELLED
                if isinstance(exc, ExportCancelled)
                else PipelineState.FAILED
            )
            self._settle_output()
            self.logger.error(f"[{self.job_id}] Export {self.state.value}: {error}")
        finally:
            self.source.close()

        self._publish(final=True)

        return ExportResult(
            job_id=self.job_id,
            state=self.state,
            rows_written=self.rows_written,
            bytes_written=self.target.bytes_written,
            elapsed=self.elapsed,
            error=error,
            target=self.target.label,
        )

    def _check_cancelled(self: "ExportPipeline"):
        if self.cancel_event.is_set():
            raise ExportCancelled("Export cancelled", row=self.rows_written)

    def _open(self: "ExportPipeline", connection_params: Mapping[str, Any]):
        try:
            self.source.open(connection_params)
            schema = self.source.schema()
        except ExportError:
            raise
        except Exception as exc:
            raise QueryError(f"Row source failed to open: {exc}") from exc
        self._transition(PipelineState.CONNECTED)

        capabilities = self.sink.capabilities
        if capabilities.buffering is Buffering.BUFFERED:
            self.logger.info(
                f"[{self.job_id}] {self.sink.format_name} buffers the full result before writing"
            )
        else:
            self.logger.info(f"[{self.job_id}] Streaming rows to {self.sink.format_name}")

        self._sink_call(self.sink.begin, schema, self.target)
        self._begun = True
        self._transition(PipelineState.STREAMING)

    def _stream(self: "ExportPipeline"):
        while True:
            self._check_cancelled()
            row = self._next_row()
            if row is None:
                break
            self._sink_call(self.sink.write_row, row, row=row.index)
            self.rows_written += 1
            if self.rows_written % self.progress_every == 0:
                self._publish()

        self._ended = True
        self._sink_call(self.sink.end)
        self._sink_call(self.target.commit)

    def _next_row(self: "ExportPipeline") -> Optional[Row]:
        try:
            return self.source.next_row()
        except ExportError as exc:
            raise exc.with_context(row=self.rows_written)
        except Exception as exc:
            raise QueryError(
                f"Row source failed: {exc}", row=self.rows_written
            ) from exc

    def _sink_call(self: "ExportPipeline", method, *args, row: Optional[int] = None):
        try:
            return method(*args)
        except ExportError as exc:
            raise exc.with_context(row=row)
        except Exception as exc:
            raise SinkError(f"Writing output failed: {exc}", row=row) from exc

    def _settle_output(self: "ExportPipeline"):
        """
        Finishes or drops the output of a failed run per the sink's truncation policy.
        """
        if not self._begun:
            self.target.discard()
            return

        if self.sink.capabilities.truncation is Truncation.FINALIZE and not self._ended:
            try:
                self.sink.end()
                self.target.commit()
            except Exception as exc:
                self.logger.error(f"[{self.job_id}] Could not finalize partial output: {exc}")
            else:
                self.logger.warning(
                    f"[{self.job_id}] {self.target.label} is incomplete: "
                    f"export stopped after {self.rows_written} rows"
                )
                return

        try:
            self.sink.abort()
        except Exception as exc:
            self.logger.warning(f"[{self.job_id}] Could not release the output: {exc}")
        finally:
            self.target.discard()

    def _publish(self: "ExportPipeline", final: bool = False):
        if self.progress is None:
            return
        self.progress.publish(
            ProgressSnapshot(
                job_id=self.job_id,
                rows_written=self.rows_written,
                bytes_written=self.target.bytes_written,
                elapsed=self.elapsed,
                total_rows=self.source.row_count_hint(),
                final=final,
            )
        )
