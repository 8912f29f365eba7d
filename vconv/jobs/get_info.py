from vconv.domain.models import FailureReason, GetInfoJobOptions, GetInfoJobResult, JobTask
from vconv.infrastructure.command_runner import make_command_id
from vconv.jobs.base import BaseJob


class GetVideoInfoJob(BaseJob[GetInfoJobOptions, GetInfoJobResult]):
    """Probes a file and records the ffprobe output in the job file."""

    task = JobTask.GET_INFO
    result_type = GetInfoJobResult

    def _execute(self) -> GetInfoJobResult:
        self.output_writer.write_line(f"getting file info: {self.source_file.full_path}")
        probe = self.converter.probe(
            self.source_file.full_path, self.job_id, make_command_id("getinfo"), self.options.command_options
        )
        if not probe.success:
            return self._make_result(
                False,
                failure_reason=FailureReason.GET_INFO_FAILED,
                failed_command=probe.command_result,
            )

        stream = probe.video_info.video_stream()
        if stream is not None:
            self.output_writer.write_line(f"  video codec => {stream.codec_name}")
        return self._make_result(True, video_info=probe.video_info)
