import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Set
from vconv.domain.events import CommandMessageReceived
from vconv.domain.models import (
    CommandCheckResult,
    CommandInvocationResult,
    CommandState,
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
from vconv.domain.paths import has_temp_token, strip_temp_token
from vconv.infrastructure.event_bus import EventBus
from vconv.infrastructure.file_manager import FileManager

DEFAULT_VIDEO_INFO = {
    "format": {"filename": "mock.mp4", "format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "10.000000"},
    "streams": [
        {"index": 0, "codec_type": "video", "codec_name": "h264", "duration": "10.000000", "nb_frames": "300"},
        {"index": 1, "codec_type": "audio", "codec_name": "aac", "duration": "10.000000"},
    ],
}


class MockVideoConverter:
    """Drop-in FFmpegVideoConverter replacement that never starts a process.

    Probe and integrity answers are canned. Paths this converter produced get
    the target answers, every other path gets the source answers. A temp-token
    output counts at its final name only once it has been renamed there.
    Conversion still writes a real file so rename, delete and size
    bookkeeping behave as in a real run.
    """

    def __init__(
        self,
        file_manager: FileManager,
        event_bus: Optional[EventBus] = None,
        source_video_info: Optional[VideoInfo] = None,
        target_video_info: Optional[VideoInfo] = None,
        source_verdict: Optional[IntegrityVerdict] = None,
        target_verdict: Optional[IntegrityVerdict] = None,
        probe_success: bool = True,
        source_check_success: bool = True,
        target_check_success: bool = True,
        convert_success: bool = True,
        progress_messages: Optional[List[str]] = None,
        target_content: bytes = b"converted video content",
    ):
        self.file_manager = file_manager
        self.event_bus = event_bus
        self.source_video_info = source_video_info or VideoInfo.model_validate(DEFAULT_VIDEO_INFO)
        self.target_video_info = target_video_info or self.source_video_info
        self.source_verdict = source_verdict or IntegrityVerdict(is_good=True)
        self.target_verdict = target_verdict or IntegrityVerdict(is_good=True)
        self.probe_success = probe_success
        self.source_check_success = source_check_success
        self.target_check_success = target_check_success
        self.convert_success = convert_success
        self.progress_messages = progress_messages or []
        self.target_content = target_content
        self.produced_paths: Set[Path] = set()
        # final path -> inode of the temp-token file written for it
        self.pending_renames: Dict[Path, int] = {}
        self.convert_calls: List[Path] = []
        self.integrity_calls: List[Path] = []
        self.logger = logging.getLogger(__name__)

    def _is_target(self, file_path: Path) -> bool:
        file_path = Path(file_path)
        if file_path in self.produced_paths:
            return True
        inode = self.pending_renames.get(file_path)
        return inode is not None and file_path.exists() and file_path.stat().st_ino == inode

    def check_commands(self) -> CommandCheckResult:
        return CommandCheckResult(success=True)

    def probe(self, file_path: Path, job_id: str, command_id: str, options: ProbeCommandOptions) -> ProbeResult:
        if not self.probe_success:
            return ProbeResult(success=False, command_result=self._command_result(command_id, False))
        info = self.target_video_info if self._is_target(file_path) else self.source_video_info
        return ProbeResult(success=True, video_info=info, command_result=self._command_result(command_id, True))

    def check_integrity(
        self,
        file_path: Path,
        job_id: str,
        command_id: str,
        options: ProbeCommandOptions,
        video_info: Optional[VideoInfo] = None,
    ) -> IntegrityCheckResult:
        self.integrity_calls.append(Path(file_path))
        if not self.file_manager.exists(file_path):
            issues = IntegrityIssues(file_does_not_exist=True)
            return IntegrityCheckResult(success=True, verdict=IntegrityVerdict.from_issues(issues))

        file_info = self.file_manager.get_fs_item_from_path(file_path)
        is_target = self._is_target(file_path)
        check_success = self.target_check_success if is_target else self.source_check_success
        if not check_success:
            issues = IntegrityIssues(probe_failed=True)
            return IntegrityCheckResult(
                success=False,
                verdict=IntegrityVerdict.from_issues(issues),
                file=file_info,
                command_result=self._command_result(command_id, False),
            )
        return IntegrityCheckResult(
            success=True,
            verdict=self.target_verdict if is_target else self.source_verdict,
            file=file_info,
            video_info=video_info or (self.target_video_info if is_target else self.source_video_info),
            command_result=self._command_result(command_id, True),
        )

    def convert(self, file: FileDescriptor, job_id: str, command_id: str, options: ConvertCommandOptions) -> ConvertCommandResult:
        start = time.monotonic()
        target = Path(options.target_file_full_path)
        self.convert_calls.append(target)
        self.file_manager.make_dir(target.parent)

        if self.event_bus is not None:
            for message in self.progress_messages:
                self.event_bus.publish(
                    CommandMessageReceived(command_id=command_id, job_id=job_id, command="mock", stream="stderr", message=message)
                )

        # A failed conversion leaves a partial file behind, like ffmpeg does
        target.write_bytes(self.target_content)
        self.produced_paths.add(target)
        if has_temp_token(target):
            self.pending_renames[strip_temp_token(target)] = target.stat().st_ino

        elapsed_ms = int((time.monotonic() - start) * 1000)
        return ConvertCommandResult(
            success=self.convert_success,
            elapsed_ms=elapsed_ms,
            target_file_full_path=target,
            command_result=self._command_result(command_id, self.convert_success),
        )

    @staticmethod
    def _command_result(command_id: str, success: bool) -> CommandInvocationResult:
        return CommandInvocationResult(
            command_id=command_id,
            state=CommandState.FINISHED,
            success=success,
            exit_code=0 if success else 1,
            error=None if success else "mock command failed",
        )
