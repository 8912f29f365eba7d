"""Persistent record of a run ("job file").

The ledger keeps the job list in memory and writes it back lazily: updates
only mark it dirty, and a background thread (plus the final shutdown) flushes
dirty state to disk. Aggregates are always recomputed from the job list.
"""

import logging
import threading
from pathlib import Path
from typing import List, Optional
from pydantic import ValidationError
from vconv.domain.models import JobState, Ledger
from vconv.infrastructure.file_manager import FileManager
from vconv.utils.pretty import bytes_to_human_readable, milliseconds_to_hhmmss

LEDGER_FLUSH_INTERVAL_MS = 5000


class JobLedgerError(Exception):
    """Base class for job file errors. These abort the run."""


class MissingJobFileDataError(JobLedgerError):
    def __init__(self, path: Path):
        super().__init__(f"job file does not exist and no initial job data was provided: {path}")
        self.path = Path(path)


class JobFilePathIsNotAFileError(JobLedgerError):
    def __init__(self, path: Path):
        super().__init__(f"job file does not point to a file: {path}")
        self.path = Path(path)


class CorruptJobFileError(JobLedgerError):
    def __init__(self, path: Path, detail: str):
        super().__init__(f"job file could not be parsed: {path} ({detail})")
        self.path = Path(path)


def compute_ledger_statistics(ledger: Ledger) -> Ledger:
    """Returns a copy of `ledger` with every aggregate folded from its jobs.

    Size totals only count processed (completed or failed) jobs, so the
    percent change compares like with like while a run is in progress.
    """
    num_jobs = len(ledger.jobs)
    completed = [j for j in ledger.jobs if j.state == JobState.COMPLETED]
    failed = [j for j in ledger.jobs if j.state == JobState.ERROR]
    processed = completed + failed

    size_before = sum(j.source_file.size for j in processed)
    size_change = sum(j.result.size_difference for j in processed if j.result is not None)
    duration_ms = sum(j.result.duration_ms for j in ledger.jobs if j.result is not None)

    return ledger.model_copy(update={
        "num_jobs": num_jobs,
        "num_completed_jobs": len(completed),
        "num_failed_jobs": len(failed),
        "failed_job_ids": [j.job_id for j in failed],
        "percent_done": round(len(processed) / num_jobs * 100, 2) if num_jobs else 0.0,
        "total_size_before_processing": size_before,
        "total_size_after_processing": size_before + size_change,
        "total_size_change_bytes": size_change,
        "pretty_total_size_change": bytes_to_human_readable(size_change),
        "percent_size_change": round(size_change / size_before * 100, 2) if size_before else 0.0,
        "duration_ms": duration_ms,
        "pretty_duration": milliseconds_to_hhmmss(duration_ms),
    })


class JobLedger:
    """Owns the job file of one run.

    `update_job` is the only way job state changes; it never touches the disk.
    Writes happen in `flush`, called by the background flush thread and by
    `shutdown`, and only when something changed since the last write.
    """

    def __init__(
        self,
        path: Path,
        ledger: Ledger,
        file_manager: FileManager,
        flush_interval_ms: int = LEDGER_FLUSH_INTERVAL_MS,
        pretty: bool = True,
        dirty: bool = False,
    ):
        self.path = Path(path).absolute()
        self.file_manager = file_manager
        self.flush_interval_ms = flush_interval_ms
        self.pretty = pretty
        self.logger = logging.getLogger(__name__)
        self._ledger = compute_ledger_statistics(ledger)
        self._dirty = dirty
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._shut_down = False
        self._thread: Optional[threading.Thread] = None
        self._start_flush_thread()

    # -- construction ------------------------------------------------------

    @classmethod
    def load(
        cls,
        path: Path,
        file_manager: FileManager,
        flush_interval_ms: int = LEDGER_FLUSH_INTERVAL_MS,
        pretty: bool = True,
    ) -> "JobLedger":
        """Loads an existing job file; its jobs and settings are authoritative."""
        path = Path(path).absolute()
        if not file_manager.exists(path):
            raise MissingJobFileDataError(path)
        if not path.is_file():
            raise JobFilePathIsNotAFileError(path)
        try:
            ledger = Ledger.model_validate_json(file_manager.read_file(path))
        except ValidationError as e:
            raise CorruptJobFileError(path, f"{e.error_count()} validation errors") from e
        logging.getLogger(__name__).info(f"LEDGER_LOADED: {path} ({len(ledger.jobs)} jobs)")
        return cls(path, ledger, file_manager, flush_interval_ms, pretty)

    @classmethod
    def create(
        cls,
        path: Path,
        initial: Ledger,
        file_manager: FileManager,
        flush_interval_ms: int = LEDGER_FLUSH_INTERVAL_MS,
        pretty: bool = True,
    ) -> "JobLedger":
        """Creates a new job file and writes it immediately."""
        path = Path(path).absolute()
        if file_manager.exists(path) and not path.is_file():
            raise JobFilePathIsNotAFileError(path)
        file_manager.make_dir(path.parent)
        job_ledger = cls(path, initial, file_manager, flush_interval_ms, pretty, dirty=True)
        try:
            job_ledger.flush()
        except Exception:
            job_ledger._stop_flush_thread()
            raise
        logging.getLogger(__name__).info(f"LEDGER_CREATED: {path} ({len(initial.jobs)} jobs)")
        return job_ledger

    @classmethod
    def open(
        cls,
        path: Path,
        file_manager: FileManager,
        initial: Optional[Ledger] = None,
        flush_interval_ms: int = LEDGER_FLUSH_INTERVAL_MS,
        pretty: bool = True,
    ) -> "JobLedger":
        if file_manager.exists(path):
            return cls.load(path, file_manager, flush_interval_ms, pretty)
        if initial is None:
            raise MissingJobFileDataError(Path(path))
        return cls.create(path, initial, file_manager, flush_interval_ms, pretty)

    # -- state -------------------------------------------------------------

    @property
    def ledger(self) -> Ledger:
        with self._lock:
            return self._ledger

    @property
    def jobs(self) -> List:
        with self._lock:
            return list(self._ledger.jobs)

    @property
    def settings(self) -> dict:
        with self._lock:
            return dict(self._ledger.settings)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def get_job(self, job_id: str):
        with self._lock:
            return next((j for j in self._ledger.jobs if j.job_id == job_id), None)

    def update_job(self, job) -> bool:
        """Replaces the job with the same id and recomputes aggregates."""
        with self._lock:
            jobs = list(self._ledger.jobs)
            index = next((i for i, j in enumerate(jobs) if j.job_id == job.job_id), None)
            if index is None:
                self.logger.warning(f"LEDGER_UNKNOWN_JOB: {job.job_id} is not in {self.path}")
                return False
            jobs[index] = job
            self._ledger = compute_ledger_statistics(self._ledger.model_copy(update={"jobs": jobs}))
            self._dirty = True
        self.logger.debug(f"LEDGER_UPDATE: {job.job_id} state={job.state.value}")
        return True

    # -- persistence -------------------------------------------------------

    def flush(self) -> bool:
        """Writes the ledger if it changed. Returns True when a write happened."""
        with self._lock:
            if not self._dirty:
                return False
            content = self._ledger.model_dump_json(indent=2 if self.pretty else None)
            tmp_path = self.path.with_name(f"{self.path.name}.tmp")
            self.file_manager.write_file(tmp_path, content, truncate=True)
            self.file_manager.rename_file(tmp_path, self.path)
            self._dirty = False
        self.logger.debug(f"LEDGER_FLUSH: {self.path}")
        return True

    def shutdown(self) -> None:
        """Stops the flush thread and writes pending changes. Safe to call twice."""
        if self._shut_down:
            return
        self._shut_down = True
        self._stop_flush_thread()
        self.flush()
        self.logger.info(f"LEDGER_SHUTDOWN: {self.path}")

    def _start_flush_thread(self):
        self._thread = threading.Thread(target=self._flush_loop, name="ledger-flush", daemon=True)
        self._thread.start()

    def _stop_flush_thread(self):
        self._stop_event.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

    def _flush_loop(self):
        interval_s = self.flush_interval_ms / 1000.0
        while not self._stop_event.wait(interval_s):
            try:
                self.flush()
            except OSError as e:
                # Stays dirty; the next tick or shutdown retries
                self.logger.error(f"LEDGER_FLUSH_FAILED: {self.path} ({e})")
