import logging
import time
import uuid
from pathlib import Path
from typing import Any, Optional
from vconv.config.models import AppConfig
from vconv.domain.models import JobState, Ledger
from vconv.infrastructure.event_bus import EventBus
from vconv.infrastructure.file_manager import FileManager
from vconv.jobs.factory import make_job
from vconv.output.writers import OutputWriter
from vconv.pipeline.discovery import get_all_jobs
from vconv.pipeline.ledger import JobLedger
from vconv.utils.pretty import file_safe_timestamp, milliseconds_to_hhmmss


class RunnerConfigurationError(Exception):
    """The run cannot start with the given settings."""


def default_job_file_path(config: AppConfig) -> Path:
    return Path(config.general.metadata_path) / f"{file_safe_timestamp()}-{config.general.task.value}.vconv.json"


class Runner:
    """Builds or resumes a job file and executes its jobs one at a time."""

    def __init__(
        self,
        config: AppConfig,
        converter: Any,
        file_manager: FileManager,
        output_writer: OutputWriter,
        event_bus: EventBus,
    ):
        self.config = config
        self.converter = converter
        self.file_manager = file_manager
        self.output_writer = output_writer
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self.job_ledger: Optional[JobLedger] = None

    def run(self) -> Ledger:
        start = time.monotonic()
        job_file = Path(self.config.general.job_file or default_job_file_path(self.config)).absolute()
        self.job_ledger = self._open_ledger(job_file)
        job_ledger = self.job_ledger

        try:
            if self.config.general.save_job_file_only:
                self.output_writer.write_line(f"saving job file ({len(job_ledger.jobs)} jobs) to {job_file}")
                self.logger.info(f"RUN_SAVE_ONLY: {job_file}")
                return job_ledger.ledger

            jobs = job_ledger.jobs
            self.output_writer.write_line(f"found {len(jobs)} jobs")
            for index, options in enumerate(jobs, start=1):
                self.output_writer.write_line("")
                self.output_writer.write_line(f"starting job {index} of {len(jobs)} {options.job_id} - {options.task}")
                self._run_job(options)
        except KeyboardInterrupt:
            self.logger.info("RUN_INTERRUPTED: flushing job file before exit")
            raise
        finally:
            job_ledger.shutdown()

        ledger = job_ledger.ledger
        self._write_summary(ledger, int((time.monotonic() - start) * 1000), job_file)
        return ledger

    def _open_ledger(self, job_file: Path) -> JobLedger:
        general = self.config.general
        if self.file_manager.exists(job_file):
            self.output_writer.write_line(f"reading job data from {job_file}")
            job_ledger = JobLedger.load(
                job_file, self.file_manager, general.ledger_flush_interval_ms, general.pretty_job_file
            )
            # Persisted settings win so a resumed run behaves like the original one
            self.config = self.config.with_run_settings(job_ledger.settings)
            return job_ledger

        source_path = self.config.selection.source_path
        if source_path is None:
            raise RunnerConfigurationError("a source path is required when the job file does not exist yet")
        source_path = Path(source_path).absolute()
        if not source_path.is_dir():
            raise RunnerConfigurationError(f"source path is not a directory: {source_path}")

        self.output_writer.write_line(f"enumerating directory: {source_path}")
        items = self.file_manager.enumerate_directory(source_path, general.max_depth)
        excluded = [Path(general.metadata_path)]
        if not self.config.output.save_in_place:
            excluded.append(Path(self.config.output.save_path))
        jobs = get_all_jobs(general.task, items, self.config, excluded_dirs=excluded)

        name = job_file.name[: -len(".vconv.json")] if job_file.name.endswith(".vconv.json") else job_file.stem
        initial = Ledger(
            ledger_id=str(uuid.uuid4()),
            name=name,
            settings=self.config.run_settings(),
            jobs=jobs,
        )
        self.output_writer.write_line(f"writing job file to {job_file}")
        return JobLedger.create(
            job_file, initial, self.file_manager, general.ledger_flush_interval_ms, general.pretty_job_file
        )

    def _run_job(self, options) -> None:
        if options.state == JobState.COMPLETED:
            self.output_writer.write_line(f"previously completed job {options.job_id}, skipping")
            self.logger.info(f"JOB_SKIP_COMPLETED: {options.job_id}")
            return

        job = None
        try:
            if options.state in (JobState.RUNNING, JobState.ERROR):
                self.output_writer.write_line("job was interrupted or failed earlier, cleaning up and restarting it")
                self._make_job(options).handle_job_failure_cleanup()
                options = options.model_copy(update={
                    "state": JobState.PENDING,
                    "failure_reason": None,
                    "result": None,
                    "target_written": False,
                })
                self.job_ledger.update_job(options)

            options = options.model_copy(update={"state": JobState.RUNNING})
            self.job_ledger.update_job(options)

            job = self._make_job(options)
            result = job.execute()
            options = job.options.model_copy(update={
                "state": JobState.COMPLETED if result.success else JobState.ERROR,
                "failure_reason": result.failure_reason,
                "result": result,
            })
        except KeyboardInterrupt:
            # Left as running; the next resume cleans it up
            raise
        except Exception as e:
            self.logger.exception(f"JOB_EXCEPTION: {options.job_id}")
            current = job.options if job is not None else options
            options = current.model_copy(update={"state": JobState.ERROR, "failure_reason": str(e)})

        self.job_ledger.update_job(options)
        if options.state == JobState.ERROR:
            self.output_writer.write_line(f"job failed: {options.job_id}")
            self.output_writer.write_line(f"reason: {self._reason_text(options.failure_reason)} - see logs for more details")
        elif options.result is not None and getattr(options.result, "skipped", False):
            self.output_writer.write_line(f"job skipped: {options.result.skipped_reason}")
        else:
            self.output_writer.write_line(f"job completed in {options.result.pretty_duration}")

    def _make_job(self, options):
        return make_job(
            options, self.converter, self.file_manager, self.output_writer, self.event_bus,
            on_options_changed=self._checkpoint,
        )

    def _checkpoint(self, options) -> None:
        # Must be on disk before the job writes its target
        self.job_ledger.update_job(options)
        self.job_ledger.flush()

    @staticmethod
    def _reason_text(reason) -> str:
        return getattr(reason, "value", reason) or "unknown"

    def _write_summary(self, ledger: Ledger, elapsed_ms: int, job_file: Path) -> None:
        self.output_writer.write_line("")
        self.output_writer.write_line(f"run time: {milliseconds_to_hhmmss(elapsed_ms)}")
        self.output_writer.write_line(f"total size change: {ledger.pretty_total_size_change} ({ledger.percent_size_change}%)")
        self.output_writer.write_line(f"successful jobs: {ledger.num_completed_jobs}")
        self.output_writer.write_line(f"failed jobs: {ledger.num_failed_jobs}")
        self.output_writer.write_line(f"total jobs: {ledger.num_jobs}")
        self.output_writer.write_line(f"job file: {job_file}")
        self.logger.info(
            f"RUN_END: completed={ledger.num_completed_jobs} failed={ledger.num_failed_jobs} "
            f"total={ledger.num_jobs} size_change={ledger.total_size_change_bytes}"
        )
