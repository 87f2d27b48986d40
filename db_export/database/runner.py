import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from ..errors import (
    ConversionError,
    ExportCancelled,
    ExportError,
    ProfileError,
    QueryError,
    SinkError,
    SourceConnectionError,
)
from ..logger import get_logger
from ..pipeline import ExportPipeline, ExportResult, PipelineState
from ..progress import ProgressReporter
from ..sinks import OutputTarget, SinkWriter
from ..sinks.target import STDOUT_MARKER
from ..values import DecimalPolicy, FormatOptions
from .manager import ProfileManager
from .query_type import ensure_read_only
from .source import SqlAlchemyRowSource

STDOUT_FORMAT = "text"
FILE_FORMAT = "csv"

# Most significant failure class first.
EXIT_PRIORITY: tuple[type[ExportError], ...] = (
    ExportCancelled,
    SourceConnectionError,
    QueryError,
    ConversionError,
    SinkError,
    ProfileError,
)


@dataclass(frozen=True)
class ExportJob:
    job_id: str
    profile_id: str
    query: str
    target: Optional[Path]
    output_format: str
    sink_options: Mapping[str, Any] = field(default_factory=dict)


def exit_code_for(results: Iterable[ExportResult]) -> int:
    """
    Folds several job outcomes into one process exit status.
    """
    errors = [result.error for result in results if not result.ok]
    if not errors:
        return 0
    for error_cls in EXIT_PRIORITY:
        for error in errors:
            if isinstance(error, error_cls):
                return error.exit_code
    return 1


class ExportRunner(ProfileManager):
    """
    Runs export jobs for several connection profiles on a thread pool.
    """

    max_workers: int
    batch_size: int
    progress: ProgressReporter

    def __init__(
        self: "ExportRunner",
        config_path: Optional[Path] = None,
        environment: Optional[str] = None,
        max_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
        count: bool = False,
        progress: Optional[ProgressReporter] = None,
    ):
        """
        Initializes a new ExportRunner object.

        Args:
            config_path: Explicit config.toml location.
            environment: Environment child profile to prefer (e.g. ``production``).
            max_workers: The maximum number of jobs running at once.
            batch_size: Rows fetched per round trip and per parquet row group.
            count: Whether sources count their rows first.
            progress: Shared progress channel.
        """
        super().__init__(config_path)
        self.logger = get_logger(__name__)

        export = self.configurations.export
        self.environment = environment
        self.max_workers = max_workers or export.max_workers
        self.batch_size = batch_size or export.batch_size
        self.count = count
        self.progress_every = export.progress_every
        self.decimal_policy = DecimalPolicy(export.decimal_policy)
        self.format_options = FormatOptions(
            null_text=export.null_text, bytes_format=export.bytes_format
        )
        self.progress = progress or ProgressReporter()
        self.cancel_event = threading.Event()

    def plan_jobs(
        self: "ExportRunner",
        profile_ids: list[str],
        query: str,
        save_path: Optional[Path] = None,
        output_format: Optional[str] = None,
        sink_options: Optional[Mapping[str, Any]] = None,
    ) -> list[ExportJob]:
        """
        Creates one job per profile, each with its own output file.

        Args:
            profile_ids: Profiles to export from; duplicates are dropped.
            query: The query every job runs.
            save_path: Output file; ``None`` or ``-`` is stdout.
            output_format: Format name; guessed from the save path when omitted.
            sink_options: Options for the sink (compact, title, truncate, ...).

        Returns:
            The jobs, in profile order.

        Raises:
            SinkError: If the format is unknown or stdout is shared by several jobs.
        """
        profile_ids = list(dict.fromkeys(profile_ids))
        if not profile_ids:
            raise ProfileError("No connection profile given")

        to_stdout = save_path is None or str(save_path) == STDOUT_MARKER
        if output_format is None:
            if to_stdout:
                output_format = STDOUT_FORMAT
            else:
                output_format = SinkWriter.format_for_path(save_path) or FILE_FORMAT
        if output_format not in SinkWriter.formats():
            raise SinkError(f"Unknown output format '{output_format}'!")

        if to_stdout and len(profile_ids) > 1:
            raise SinkError("Exporting several profiles needs a save path")

        jobs = []
        for profile_id in profile_ids:
            target = None
            if not to_stdout:
                save_path = Path(save_path)
                target = save_path
                if len(profile_ids) > 1:
                    suffix = re.sub(r"[^\w.-]", "_", profile_id)
                    target = save_path.with_stem(f"{save_path.stem}_{suffix}")
            jobs.append(
                ExportJob(
                    job_id=profile_id,
                    profile_id=profile_id,
                    query=query,
                    target=target,
                    output_format=output_format,
                    sink_options=dict(sink_options or {}),
                )
            )
        return jobs

    def _sink_for(self: "ExportRunner", job: ExportJob) -> SinkWriter:
        options = {
            "format_options": self.format_options,
            "max_buffered_rows": self.configurations.export.max_buffered_rows,
            "batch_size": self.batch_size,
            **job.sink_options,
        }
        return SinkWriter.create(job.output_format, **options)

    def run_job(self: "ExportRunner", job: ExportJob) -> ExportResult:
        """
        Runs a single job; failures are reported in the result, not raised.
        """
        started_at = time.monotonic()
        target = OutputTarget.for_path(job.target)
        self.logger.info(f"--> Exporting profile {job.profile_id} to {target.label}")

        try:
            ensure_read_only(job.query)
            connection_params = self.resolve(job.profile_id, self.environment)
            sink = self._sink_for(job)
        except ExportError as exc:
            self.logger.error(f"xxx FAILED job {job.job_id}: {exc}")
            return self._failed(job, target, started_at, exc)

        source = SqlAlchemyRowSource(
            job.query,
            batch_size=self.batch_size,
            count=self.count,
            decimal_policy=self.decimal_policy,
        )
        pipeline = ExportPipeline(
            job.job_id,
            source,
            sink,
            target,
            progress=self.progress,
            progress_every=self.progress_every,
            cancel_event=self.cancel_event,
            profile=job.profile_id,
            query=job.query,
        )

        try:
            result = pipeline.run(connection_params)
        except Exception as exc:
            self.logger.exception(f"xxx FAILED job {job.job_id} unexpectedly")
            target.discard()
            error = ExportError(f"Export failed unexpectedly: {exc}")
            return self._failed(job, target, started_at, error)

        if result.ok:
            self.logger.info(f"<-- SUCCESS from profile: {job.profile_id}")
        return result

    def _failed(
        self: "ExportRunner",
        job: ExportJob,
        target: OutputTarget,
        started_at: float,
        error: ExportError,
    ) -> ExportResult:
        error.with_context(job=job.job_id, profile=job.profile_id, query=job.query)
        return ExportResult(
            job_id=job.job_id,
            state=PipelineState.FAILED,
            rows_written=0,
            bytes_written=target.bytes_written,
            elapsed=time.monotonic() - started_at,
            error=error,
            target=target.label,
        )

    def run(self: "ExportRunner", jobs: list[ExportJob]) -> list[ExportResult]:
        """
        Runs the jobs concurrently; one failure never stops the others.

        On ``KeyboardInterrupt`` the running jobs are cancelled cooperatively and
        the ones not started yet are reported as cancelled.

        Returns:
            One result per job, in job order.
        """
        results: dict[str, ExportResult] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_results: dict[Future, ExportJob] = {
                executor.submit(self.run_job, job): job for job in jobs
            }

            try:
                for future in as_completed(future_results):
                    job = future_results[future]
                    results[job.job_id] = future.result()
            except KeyboardInterrupt:
                self.logger.warning("Interrupted, cancelling running exports")
                self.cancel_event.set()
                for future, job in future_results.items():
                    if future.cancel():
                        results[job.job_id] = ExportResult(
                            job_id=job.job_id,
                            state=PipelineState.CANCELLED,
                            rows_written=0,
                            bytes_written=0,
                            elapsed=0.0,
                            error=ExportCancelled(
                                "Export cancelled before it started", job=job.job_id
                            ),
                        )
                for future, job in future_results.items():
                    if job.job_id not in results:
                        results[job.job_id] = future.result()

        return [results[job.job_id] for job in jobs]
