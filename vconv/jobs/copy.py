from pathlib import Path
from vconv.domain.models import CopyJobOptions, CopyJobResult, FailureReason, JobTask
from vconv.infrastructure.file_manager import FileManagerError
from vconv.jobs.base import BaseJob, same_path


class CopyJob(BaseJob[CopyJobOptions, CopyJobResult]):
    """Copies a non-video file next to the converted output."""

    task = JobTask.COPY
    result_type = CopyJobResult

    def _execute(self) -> CopyJobResult:
        source = self.source_file
        target_path = Path(self.options.command_options.target_file_full_path)

        if same_path(target_path, source.full_path):
            return self._make_result(False, failure_reason=FailureReason.SOURCE_TARGET_COLLISION)

        if self.file_manager.exists(target_path):
            if self.options.allow_clobber_existing:
                self.file_manager.safe_unlink_file(target_path)
            if self.file_manager.exists(target_path):
                if self.options.skip_convert_existing:
                    return self._make_result(True, skipped=True, skipped_reason="target file already exists")
                self.output_writer.write_line(f"target file already exists, not overwriting: {target_path}")
                return self._make_result(False, failure_reason=FailureReason.CANNOT_CLOBBER_EXISTING_TARGET)

        self.output_writer.write_line(f"copying file: {source.full_path} => {target_path}")
        self._mark_target_written()
        try:
            self.file_manager.make_dir(target_path.parent)
            self.file_manager.copy_file(source.full_path, target_path)
            target_file = self.file_manager.get_fs_item_from_path(target_path)
        except (FileManagerError, OSError) as e:
            self.logger.error(f"COPY_FAILED: {source.full_path} -> {target_path} ({e})")
            return self._make_result(False, failure_reason=FailureReason.COPY_FAILED)

        return self._make_result(True, target_file=target_file)

    def _handle_job_failure_cleanup(self) -> None:
        if not self.options.target_written:
            return
        target_path = Path(self.options.command_options.target_file_full_path)
        if not same_path(target_path, self.source_file.full_path) and self.file_manager.exists(target_path):
            self.file_manager.safe_unlink_file(target_path)
