from pathlib import Path
from typing import Optional
from vconv.domain.events import CommandMessageReceived
from vconv.domain.models import (
    ConvertJobOptions,
    ConvertJobResult,
    FailureReason,
    FileDescriptor,
    IntegrityCheckResult,
    JobTask,
)
from vconv.domain.paths import has_temp_token, strip_temp_token
from vconv.infrastructure.command_runner import make_command_id
from vconv.infrastructure.video_converter import total_duration_seconds, total_frame_count
from vconv.jobs.base import BaseJob, same_path
from vconv.jobs.progress import select_progress_renderer


class ConvertVideoJob(BaseJob[ConvertJobOptions, ConvertJobResult]):
    """Converts one source video.

    Steps, each of which may end the job:
      1. refuse a target equal to the source
      2. integrity-check the source
      3. skip sources whose video codec is in skip_video_codec_names
      4. resolve an existing target (clobber, skip or refuse)
      5. transcode, rendering progress
      6. integrity-check the target
      7. move a temp-token target to its final name and re-check it
      8. optionally delete the source
    """

    task = JobTask.CONVERT
    result_type = ConvertJobResult

    def _execute(self) -> ConvertJobResult:
        opts = self.options
        source = opts.source_file
        target_path = Path(opts.command_options.target_file_full_path)
        final_target_path = strip_temp_token(target_path)

        if same_path(target_path, source.full_path):
            self.logger.error(f"CONVERT_COLLISION: {self.job_id} target equals source {source.full_path}")
            return self._fail(FailureReason.SOURCE_TARGET_COLLISION, source_file=source)

        # 2. source integrity
        source_check = self.converter.check_integrity(
            source.full_path, self.job_id, make_command_id("checkintegrity"), opts.probe_options
        )
        details = {
            "source_file": source_check.file or source,
            "source_video_info": source_check.video_info,
            "source_integrity": source_check.verdict,
        }
        if not source_check.success:
            return self._fail(
                FailureReason.SOURCE_INTEGRITY_CHECK_FAILED,
                failed_command=source_check.command_result,
                **details,
            )
        if not source_check.verdict.is_good:
            self.output_writer.write_line(
                f"source failed integrity check: {source.full_path} ({', '.join(source_check.verdict.issues.names())})"
            )
            return self._fail(FailureReason.SOURCE_FAILED_INTEGRITY_CHECK, **details)

        # 3. codec skip
        if opts.skip_video_codec_names:
            video_stream = source_check.video_info.video_stream() if source_check.video_info else None
            if video_stream is None:
                self.logger.error(f"CONVERT_NO_VIDEO_STREAM: {source.full_path}")
                return self._fail(FailureReason.SOURCE_VIDEO_STREAM_MISSING, **details)
            codec = (video_stream.codec_name or "").lower()
            if codec in {name.lower() for name in opts.skip_video_codec_names}:
                reason = f"video codec {codec} is in the skip list"
                self.output_writer.write_line(f"skipping {source.full_path}: {reason}")
                return self._make_result(True, skipped=True, skipped_reason=reason, **details)

        # 4. existing target; a temp-token file is a leftover of an interrupted
        # in-place conversion, and its final path is the source itself
        if has_temp_token(target_path):
            if self.file_manager.exists(target_path):
                self.logger.info(f"CONVERT_STALE_TEMP: deleting leftover {target_path}")
                if not self.file_manager.safe_unlink_file(target_path):
                    self.output_writer.write_line(f"failed to delete leftover temp file: {target_path}")
                    return self._fail(FailureReason.CANNOT_CLOBBER_EXISTING_TARGET, **details)
        elif self.file_manager.exists(target_path):
            if opts.allow_clobber_existing:
                self.logger.info(f"CONVERT_CLOBBER: deleting existing target {target_path}")
                self.file_manager.safe_unlink_file(target_path)
            if self.file_manager.exists(target_path):
                if opts.skip_convert_existing:
                    reason = "target file already exists"
                    self.output_writer.write_line(f"skipping {source.full_path}: {reason} ({target_path})")
                    return self._make_result(True, skipped=True, skipped_reason=reason, **details)
                self.output_writer.write_line(f"target file already exists, not overwriting: {target_path}")
                return self._fail(FailureReason.CANNOT_CLOBBER_EXISTING_TARGET, **details)

        # 5. transcode
        cmd = opts.command_options
        self.output_writer.write_line(f"converting file: {source.full_path}")
        self.output_writer.write_line(f"video encoder => {cmd.target_video_encoder}")
        self.output_writer.write_line(f"audio encoder => {cmd.target_audio_encoder}")
        self.output_writer.write_line(f"container format => {cmd.target_container_format}")
        self.output_writer.write_line(f"target file => {final_target_path}")

        convert_command_id = make_command_id("convert")
        renderer = select_progress_renderer(
            self.output_writer,
            convert_command_id,
            total_seconds=total_duration_seconds(source_check.video_info),
            total_frames=total_frame_count(source_check.video_info),
        )
        self._mark_target_written()
        self.event_bus.subscribe(CommandMessageReceived, renderer)
        try:
            convert_result = self.converter.convert(source, self.job_id, convert_command_id, cmd)
        finally:
            self.event_bus.unsubscribe(CommandMessageReceived, renderer)
            renderer.finish()

        if not convert_result.success:
            self.output_writer.write_line(f"conversion failed: {source.full_path}")
            if self.file_manager.exists(target_path):
                self.file_manager.safe_unlink_file(target_path)
            return self._fail(FailureReason.CONVERT_FAILED, failed_command=convert_result.command_result, **details)

        # 6. target integrity
        target_check = self.converter.check_integrity(
            target_path, self.job_id, make_command_id("checkintegrity"), opts.probe_options
        )
        details.update(self._target_details(target_check))
        if not target_check.success:
            self.output_writer.write_line(f"failed to run integrity check on converted file: {target_path}")
            return self._fail(
                FailureReason.TARGET_INTEGRITY_CHECK_FAILED,
                failed_command=target_check.command_result,
                **details,
            )
        if not target_check.verdict.is_good:
            if opts.keep_invalid_convert_result:
                self.output_writer.write_line(f"converted file failed integrity check, keeping it: {target_path}")
            else:
                self.output_writer.write_line(f"converted file failed integrity check, deleting it: {target_path}")
                if not self.file_manager.safe_unlink_file(target_path):
                    self.output_writer.write_line(f"failed to delete invalid converted file: {target_path}")
            return self._fail(FailureReason.TARGET_FAILED_INTEGRITY_CHECK, **details)

        # 7. temp token
        if has_temp_token(target_path):
            if not self.file_manager.safe_rename_file(target_path, final_target_path):
                self.output_writer.write_line(f"failed to rename {target_path} to {final_target_path}")
                return self._fail(FailureReason.TEMP_RENAME_FAILED, **details)
            final_check = self.converter.check_integrity(
                final_target_path, self.job_id, make_command_id("checkintegrity"), opts.probe_options
            )
            if not final_check.success or not final_check.verdict.is_good:
                self.logger.warning(f"CONVERT_FINAL_CHECK: {final_target_path} did not pass re-check after rename")
            details.update(self._target_details(final_check))

        target_file: Optional[FileDescriptor] = details.get("target_file")
        converted_size = target_file.size if target_file else 0
        size_difference = converted_size - source.size

        # 8. source removal
        if opts.delete_source_after_convert and not same_path(final_target_path, source.full_path):
            self.logger.info(f"CONVERT_DELETE_SOURCE: {source.full_path}")
            if not self.file_manager.safe_unlink_file(source.full_path):
                self.output_writer.write_line(f"failed to delete source file: {source.full_path}")

        return self._make_result(
            True,
            size_difference=size_difference,
            converted_file_size=converted_size,
            **details,
        )

    @staticmethod
    def _target_details(check: IntegrityCheckResult) -> dict:
        return {
            "target_file": check.file,
            "target_video_info": check.video_info,
            "target_integrity": check.verdict,
        }

    def _fail(self, reason: FailureReason, **fields) -> ConvertJobResult:
        return self._make_result(False, failure_reason=reason, **fields)

    def _handle_job_failure_cleanup(self) -> None:
        # Only targets this job started writing are removed; a temp-token
        # path can only have been written by a conversion
        target_path = Path(self.options.command_options.target_file_full_path)
        if not (self.options.target_written or has_temp_token(target_path)):
            return
        if same_path(target_path, self.source_file.full_path):
            return
        if self.file_manager.exists(target_path):
            self.logger.info(f"JOB_CLEANUP: removing {target_path}")
            self.file_manager.safe_unlink_file(target_path)
