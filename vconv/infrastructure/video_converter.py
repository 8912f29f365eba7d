import logging
from pathlib import Path
from typing import Any, List, Optional
from pydantic import ValidationError
from vconv.domain.models import (
    CommandCheckResult,
    ConvertCommandOptions,
    ConvertCommandResult,
    FileDescriptor,
    IntegrityCheckResult,
    IntegrityIssues,
    IntegrityVerdict,
    ProbeCommandOptions,
    ProbeResult,
    VideoInfo,
)
from vconv.infrastructure.command_runner import ProcessCommandRunner, make_command_id
from vconv.infrastructure.file_manager import FileManager, FileManagerError

RAW_VIDEO_CODEC = "rawvideo"
COMMAND_CHECK_TIMEOUT_MS = 10000


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return -1.0


def total_duration_seconds(video_info: Optional[VideoInfo]) -> float:
    """Video stream duration, else container duration, else -1."""
    if video_info is None:
        return -1.0
    stream = video_info.video_stream()
    if stream is not None and stream.duration is not None:
        duration = _to_float(stream.duration)
        if duration > 0:
            return duration
    if video_info.format is not None and video_info.format.duration is not None:
        duration = _to_float(video_info.format.duration)
        if duration > 0:
            return duration
    return -1.0


def total_frame_count(video_info: Optional[VideoInfo]) -> int:
    """`nb_frames` of the video stream, or -1 when unknown."""
    if video_info is None:
        return -1
    stream = video_info.video_stream()
    if stream is None or stream.nb_frames is None:
        return -1
    try:
        frames = int(stream.nb_frames)
    except ValueError:
        return -1
    return frames if frames > 0 else -1


class FFmpegVideoConverter:
    """Wrapper around ffmpeg/ffprobe for probing, integrity checks and conversion."""

    def __init__(
        self,
        command_runner: ProcessCommandRunner,
        file_manager: FileManager,
        ffmpeg_command: str = "ffmpeg",
        ffprobe_command: str = "ffprobe",
        converted_by: str = "vconv",
    ):
        self.command_runner = command_runner
        self.file_manager = file_manager
        self.ffmpeg_command = ffmpeg_command
        self.ffprobe_command = ffprobe_command
        self.converted_by = converted_by
        self.logger = logging.getLogger(__name__)

    def check_commands(self) -> CommandCheckResult:
        """Verifies that ffmpeg and ffprobe can be executed."""
        results = {
            self.ffmpeg_command: self.command_runner.run(
                self.ffmpeg_command, ["-h"], make_command_id("checkcommand"), COMMAND_CHECK_TIMEOUT_MS
            ),
            self.ffprobe_command: self.command_runner.run(
                self.ffprobe_command, ["-L"], make_command_id("checkcommand"), COMMAND_CHECK_TIMEOUT_MS
            ),
        }
        success = all(r.success for r in results.values())
        if not success:
            failed = [name for name, r in results.items() if not r.success]
            self.logger.error(f"COMMAND_CHECK_FAILED: {', '.join(failed)}")
        return CommandCheckResult(success=success, results=results)

    def build_probe_args(self, file_path: Path, options: ProbeCommandOptions) -> List[str]:
        return [
            "-hide_banner",
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            *options.x_args,
            str(file_path),
        ]

    def build_convert_args(self, file_path: Path, options: ConvertCommandOptions) -> List[str]:
        args = ["-hide_banner", "-y"]
        if options.use_cuda:
            args.extend([
                "-hwaccel", "cuda",
                "-hwaccel_output_format", "cuda",
                "-extra_hw_frames", "4",
            ])
        args.extend([
            "-i", str(file_path),
            "-c:v", options.target_video_encoder,
            "-c:a", options.target_audio_encoder,
            "-metadata", f"convertedby={self.converted_by}",
        ])
        args.extend(options.x_args)
        args.append(str(options.target_file_full_path))
        return args

    def probe(self, file_path: Path, job_id: str, command_id: str, options: ProbeCommandOptions) -> ProbeResult:
        """Runs ffprobe and parses its JSON output."""
        args = self.build_probe_args(file_path, options)
        result = self.command_runner.run(self.ffprobe_command, args, command_id, options.timeout_ms, job_id)
        if not result.success:
            self.logger.warning(f"PROBE_FAILED: {file_path} ({result.error})")
            return ProbeResult(success=False, command_result=result)

        try:
            video_info = VideoInfo.model_validate_json("\n".join(result.stdout))
        except ValidationError as e:
            self.logger.warning(f"PROBE_PARSE_FAILED: {file_path} ({e.error_count()} errors)")
            return ProbeResult(success=False, command_result=result)

        return ProbeResult(success=True, video_info=video_info, command_result=result)

    def check_integrity(
        self,
        file_path: Path,
        job_id: str,
        command_id: str,
        options: ProbeCommandOptions,
        video_info: Optional[VideoInfo] = None,
    ) -> IntegrityCheckResult:
        """Judges whether a media file looks decodable.

        A missing or empty file yields a bad verdict without probing. A failed
        probe yields success=False; the job decides what that means.
        """
        if not self.file_manager.exists(file_path):
            issues = IntegrityIssues(file_does_not_exist=True)
            return IntegrityCheckResult(success=True, verdict=IntegrityVerdict.from_issues(issues))

        file_info = self.file_manager.get_fs_item_from_path(file_path)
        if not isinstance(file_info, FileDescriptor):
            issues = IntegrityIssues(file_does_not_exist=True)
            return IntegrityCheckResult(success=True, verdict=IntegrityVerdict.from_issues(issues))
        if file_info.size == 0:
            issues = IntegrityIssues(is_empty_file=True)
            return IntegrityCheckResult(success=True, verdict=IntegrityVerdict.from_issues(issues), file=file_info)

        command_result = None
        if video_info is None:
            probe_result = self.probe(file_path, job_id, command_id, options)
            command_result = probe_result.command_result
            if not probe_result.success:
                issues = IntegrityIssues(probe_failed=True)
                return IntegrityCheckResult(
                    success=False,
                    verdict=IntegrityVerdict.from_issues(issues),
                    file=file_info,
                    command_result=command_result,
                )
            video_info = probe_result.video_info

        verdict = self.evaluate_integrity(video_info)
        if not verdict.is_good:
            self.logger.info(f"INTEGRITY_BAD: {file_path} issues={verdict.issues.names()}")
        return IntegrityCheckResult(
            success=True,
            verdict=verdict,
            file=file_info,
            video_info=video_info,
            command_result=command_result,
        )

    @staticmethod
    def evaluate_integrity(video_info: VideoInfo) -> IntegrityVerdict:
        video_stream = video_info.video_stream()
        issues = IntegrityIssues(
            container_info_missing=video_info.format is None,
            video_stream_missing=video_stream is None,
            audio_stream_missing=video_info.audio_stream() is None,
            video_stream_is_raw=video_stream is not None and (video_stream.codec_name or "").lower() == RAW_VIDEO_CODEC,
        )
        return IntegrityVerdict.from_issues(issues)

    def convert(self, file: FileDescriptor, job_id: str, command_id: str, options: ConvertCommandOptions) -> ConvertCommandResult:
        """Transcodes `file` into `options.target_file_full_path`.

        Progress lines reach subscribers as CommandMessageReceived events
        carrying `command_id`.
        """
        target = Path(options.target_file_full_path)
        try:
            self.file_manager.make_dir(target.parent)
        except (FileManagerError, OSError) as e:
            self.logger.error(f"CONVERT_TARGET_DIR_FAILED: {target.parent} ({e})")
            return ConvertCommandResult(success=False, target_file_full_path=target)

        args = self.build_convert_args(file.full_path, options)
        self.logger.info(f"CONVERT_START: {file.name} -> {target}")
        result = self.command_runner.run(self.ffmpeg_command, args, command_id, options.timeout_ms, job_id)
        if result.success:
            self.logger.info(f"CONVERT_END: {file.name} status=completed elapsed={result.elapsed_ms}ms")
        else:
            self.logger.warning(f"CONVERT_END: {file.name} status=failed ({result.error})")
        return ConvertCommandResult(
            success=result.success,
            elapsed_ms=result.elapsed_ms,
            target_file_full_path=target,
            command_result=result,
        )
