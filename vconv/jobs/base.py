import logging
import time
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar
from vconv.domain.models import BaseJobOptions, BaseJobResult, FileDescriptor, JobTask
from vconv.infrastructure.event_bus import EventBus
from vconv.infrastructure.file_manager import FileManager
from vconv.output.writers import OutputWriter
from vconv.utils.pretty import bytes_to_human_readable, milliseconds_to_hhmmss

O = TypeVar("O", bound=BaseJobOptions)
R = TypeVar("R", bound=BaseJobResult)


def same_path(a: Path, b: Path) -> bool:
    """True when both paths name the same file once `..` and symlinks are resolved."""
    return Path(a).resolve() == Path(b).resolve()


class BaseJob(Generic[O, R]):
    """One unit of work on one source file.

    Subclasses implement `_execute`, which returns a result instead of
    raising for expected failures, and `_handle_job_failure_cleanup`, which
    removes whatever an interrupted or failed attempt may have left behind.
    """

    task: JobTask
    result_type: type

    def __init__(
        self,
        options: O,
        converter: Any,
        file_manager: FileManager,
        output_writer: OutputWriter,
        event_bus: EventBus,
        on_options_changed: Optional[Callable[[O], None]] = None,
    ):
        self.options = options
        self.converter = converter
        self.file_manager = file_manager
        self.output_writer = output_writer
        self.event_bus = event_bus
        self.on_options_changed = on_options_changed
        self.logger = logging.getLogger(__name__)
        self._start = time.monotonic()

    @property
    def job_id(self) -> str:
        return self.options.job_id

    @property
    def source_file(self) -> FileDescriptor:
        return self.options.source_file

    def execute(self) -> R:
        self._start = time.monotonic()
        self.logger.info(f"JOB_START: {self.job_id} {self.source_file.full_path}")
        result = self._execute()
        status = "completed" if result.success else f"failed ({result.failure_reason})"
        self.logger.info(f"JOB_END: {self.job_id} status={status} elapsed={result.duration_ms}ms")
        return result

    def handle_job_failure_cleanup(self) -> None:
        self.logger.info(f"JOB_CLEANUP: {self.job_id} (state={self.options.state.value})")
        self._handle_job_failure_cleanup()

    def _mark_target_written(self) -> None:
        """Records that the target path is about to be written by this job.

        Resume cleanup only deletes targets of jobs carrying this mark, so it
        has to reach the job file before the first byte is written.
        """
        self.options = self.options.model_copy(update={"target_written": True})
        if self.on_options_changed is not None:
            self.on_options_changed(self.options)

    def _execute(self) -> R:
        raise NotImplementedError

    def _handle_job_failure_cleanup(self) -> None:
        pass

    def _make_result(self, success: bool, **fields) -> R:
        duration_ms = int(round((time.monotonic() - self._start) * 1000))
        size_difference = fields.pop("size_difference", 0)
        return self.result_type(
            job_id=self.job_id,
            success=success,
            duration_ms=duration_ms,
            pretty_duration=milliseconds_to_hhmmss(duration_ms),
            size_difference=size_difference,
            pretty_size_difference=bytes_to_human_readable(size_difference),
            **fields,
        )
