import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .logger import get_logger

ProgressObserver = Callable[["ProgressSnapshot"], None]


@dataclass(frozen=True)
class ProgressSnapshot:
    """
    Counters of one export job at a point in time.

    Attributes:
        job_id: The job the counters belong to.
        rows_written: Rows handed to the sink so far.
        bytes_written: Bytes that reached the output target so far.
        elapsed: Seconds since the job started.
        total_rows: Expected row count, when the source knows it.
        final: Whether this is the last snapshot of the job.
    """

    job_id: str
    rows_written: int
    bytes_written: int
    elapsed: float
    total_rows: Optional[int] = None
    final: bool = False

    @property
    def rows_per_second(self: "ProgressSnapshot") -> float:
        return self.rows_written / self.elapsed if self.elapsed > 0 else 0.0


class ProgressReporter:
    """
    Progress channel shared by concurrent pipelines.

    Snapshots are delivered to observers one at a time, under a lock, so an
    observer never sees interleaved updates.
    """

    def __init__(self: "ProgressReporter"):
        self.logger = get_logger(__name__)
        self._lock = threading.Lock()
        self._observers: list[ProgressObserver] = []
        self._latest: dict[str, ProgressSnapshot] = {}

    def subscribe(self: "ProgressReporter", observer: ProgressObserver) -> Callable[[], None]:
        """
        Registers an observer.

        Returns:
            A function that removes the observer again.
        """
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def publish(self: "ProgressReporter", snapshot: ProgressSnapshot):
        with self._lock:
            self._latest[snapshot.job_id] = snapshot
            for observer in self._observers:
                try:
                    observer(snapshot)
                except Exception:
                    self.logger.exception(f"Progress observer failed on job {snapshot.job_id}")

    def totals(self: "ProgressReporter") -> tuple[int, int]:
        """Rows and bytes written across all jobs."""
        with self._lock:
            snapshots = list(self._latest.values())
        return (
            sum(snapshot.rows_written for snapshot in snapshots),
            sum(snapshot.bytes_written for snapshot in snapshots),
        )


class LoggingProgressObserver:
    """
    Writes snapshots as log lines.
    """

    def __init__(self: "LoggingProgressObserver", name: str = "db_export.progress"):
        self.logger = get_logger(name)

    def __call__(self: "LoggingProgressObserver", snapshot: ProgressSnapshot):
        total = f"/{snapshot.total_rows}" if snapshot.total_rows is not None else ""
        status = "done" if snapshot.final else "running"
        self.logger.info(
            f"[{snapshot.job_id}] {status}: {snapshot.rows_written}{total} rows, "
            f"{snapshot.bytes_written} bytes, {snapshot.elapsed:.1f}s "
            f"({snapshot.rows_per_second:.0f} rows/s)"
        )
