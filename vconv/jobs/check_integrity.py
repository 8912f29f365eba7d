from vconv.domain.models import CheckIntegrityJobOptions, CheckIntegrityJobResult, FailureReason, JobTask
from vconv.infrastructure.command_runner import make_command_id
from vconv.jobs.base import BaseJob


class CheckVideoIntegrityJob(BaseJob[CheckIntegrityJobOptions, CheckIntegrityJobResult]):
    """Runs the integrity rules against one file.

    A bad verdict is a finding, not a job failure; only a probe that could
    not run fails the job.
    """

    task = JobTask.CHECK_INTEGRITY
    result_type = CheckIntegrityJobResult

    def _execute(self) -> CheckIntegrityJobResult:
        path = self.source_file.full_path
        self.output_writer.write_line(f"checking video integrity of: {path}")
        check = self.converter.check_integrity(
            path, self.job_id, make_command_id("checkintegrity"), self.options.command_options
        )
        if not check.success:
            return self._make_result(
                False,
                failure_reason=FailureReason.SOURCE_INTEGRITY_CHECK_FAILED,
                verdict=check.verdict,
                failed_command=check.command_result,
            )

        if not check.verdict.is_good:
            self.output_writer.write_line(f"  integrity issues => {', '.join(check.verdict.issues.names())}")
        return self._make_result(True, video_info=check.video_info, verdict=check.verdict)
