from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class JobTask(str, Enum):
    CONVERT = "convert"
    COPY = "copy"
    GET_INFO = "getinfo"
    CHECK_INTEGRITY = "checkintegrity"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class FailureReason(str, Enum):
    """Terminal failure reasons recorded on a job result."""

    SOURCE_TARGET_COLLISION = "source_target_collision"
    SOURCE_INTEGRITY_CHECK_FAILED = "source_integrity_check_failed"
    SOURCE_FAILED_INTEGRITY_CHECK = "source_failed_integrity_check"
    SOURCE_VIDEO_STREAM_MISSING = "source_video_stream_missing"
    CANNOT_CLOBBER_EXISTING_TARGET = "cannot_clobber_existing_target"
    CONVERT_FAILED = "convert_failed"
    TARGET_INTEGRITY_CHECK_FAILED = "target_integrity_check_failed"
    TARGET_FAILED_INTEGRITY_CHECK = "target_failed_integrity_check"
    TEMP_RENAME_FAILED = "temp_rename_failed"
    COPY_FAILED = "copy_failed"
    GET_INFO_FAILED = "get_info_failed"


class CommandState(str, Enum):
    PENDING = "pending"
    STARTED = "started"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"
    TIMEOUT = "timeout"


# Known failure reasons stay enum members; exception text from the runner stays a plain string.
FailureText = Union[FailureReason, str]


# ---------------------------------------------------------------------------
# Filesystem snapshots
# ---------------------------------------------------------------------------

class FileDescriptor(BaseModel):
    """Immutable snapshot of a file taken at enumeration time."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    full_path: Path
    name: str
    parent_path: Path
    relative_path: Path = Path(".")  # parent directory relative to the enumeration root
    size: int = 0
    extension: str = ""


class DirectoryDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["directory"] = "directory"
    full_path: Path
    name: str
    parent_path: Path
    relative_path: Path = Path(".")
    files: List["FSItem"] = Field(default_factory=list)


FSItem = Annotated[Union[FileDescriptor, DirectoryDescriptor], Field(discriminator="kind")]

DirectoryDescriptor.model_rebuild()


# ---------------------------------------------------------------------------
# ffprobe output
# ---------------------------------------------------------------------------

class StreamInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    index: Optional[int] = None
    codec_name: Optional[str] = None
    codec_type: Optional[str] = None
    duration: Optional[str] = None
    nb_frames: Optional[str] = None


class VideoFormatInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    filename: Optional[str] = None
    format_name: Optional[str] = None
    duration: Optional[str] = None
    size: Optional[str] = None
    bit_rate: Optional[str] = None


class VideoInfo(BaseModel):
    """Parsed `ffprobe -print_format json -show_format -show_streams` output."""

    model_config = ConfigDict(extra="allow")

    format: Optional[VideoFormatInfo] = None
    streams: List[StreamInfo] = Field(default_factory=list)

    def video_stream(self) -> Optional[StreamInfo]:
        return next((s for s in self.streams if s.codec_type == "video"), None)

    def audio_stream(self) -> Optional[StreamInfo]:
        return next((s for s in self.streams if s.codec_type == "audio"), None)


class IntegrityIssues(BaseModel):
    file_does_not_exist: bool = False
    is_empty_file: bool = False
    probe_failed: bool = False
    container_info_missing: bool = False
    video_stream_missing: bool = False
    audio_stream_missing: bool = False
    video_stream_is_raw: bool = False

    def names(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if value]


class IntegrityVerdict(BaseModel):
    is_good: bool
    issues: IntegrityIssues = Field(default_factory=IntegrityIssues)

    @classmethod
    def from_issues(cls, issues: IntegrityIssues) -> "IntegrityVerdict":
        return cls(is_good=not issues.names(), issues=issues)


# ---------------------------------------------------------------------------
# Command results
# ---------------------------------------------------------------------------

class CommandInvocationResult(BaseModel):
    command_id: str
    state: CommandState = CommandState.PENDING
    success: bool = False
    exit_code: Optional[int] = None
    elapsed_ms: int = 0
    stdout: List[str] = Field(default_factory=list)
    stderr: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def timed_out(self) -> bool:
        return self.state == CommandState.TIMEOUT


class ProbeResult(BaseModel):
    success: bool
    video_info: Optional[VideoInfo] = None
    command_result: Optional[CommandInvocationResult] = None


class IntegrityCheckResult(BaseModel):
    success: bool
    verdict: IntegrityVerdict
    file: Optional[FileDescriptor] = None
    video_info: Optional[VideoInfo] = None
    command_result: Optional[CommandInvocationResult] = None


class ConvertCommandResult(BaseModel):
    success: bool
    elapsed_ms: int = 0
    target_file_full_path: Path
    command_result: Optional[CommandInvocationResult] = None


class CommandCheckResult(BaseModel):
    success: bool
    results: Dict[str, CommandInvocationResult] = Field(default_factory=dict)

    @property
    def failed_commands(self) -> List[str]:
        return [name for name, result in self.results.items() if not result.success]


# ---------------------------------------------------------------------------
# Command options
# ---------------------------------------------------------------------------

class ProbeCommandOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_ms: int = 10000
    x_args: List[str] = Field(default_factory=list)


class ConvertCommandOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_file_full_path: Path
    target_container_format: str = "copy"
    target_video_encoder: str = "copy"
    target_audio_encoder: str = "copy"
    use_cuda: bool = False
    x_args: List[str] = Field(default_factory=list)
    timeout_ms: int = 0


class CopyCommandOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_file_full_path: Path


# ---------------------------------------------------------------------------
# Job results
# ---------------------------------------------------------------------------

class BaseJobResult(BaseModel):
    job_id: str
    success: bool = False
    duration_ms: int = 0
    pretty_duration: str = "00:00:00"
    size_difference: int = 0
    pretty_size_difference: str = "0B"
    failure_reason: Optional[FailureText] = Field(default=None, union_mode="left_to_right")


class ConvertJobResult(BaseJobResult):
    skipped: bool = False
    skipped_reason: Optional[str] = None
    converted_file_size: int = 0
    source_file: Optional[FileDescriptor] = None
    source_video_info: Optional[VideoInfo] = None
    source_integrity: Optional[IntegrityVerdict] = None
    target_file: Optional[FileDescriptor] = None
    target_video_info: Optional[VideoInfo] = None
    target_integrity: Optional[IntegrityVerdict] = None
    failed_command: Optional[CommandInvocationResult] = None


class CopyJobResult(BaseJobResult):
    skipped: bool = False
    skipped_reason: Optional[str] = None
    target_file: Optional[FileDescriptor] = None


class GetInfoJobResult(BaseJobResult):
    video_info: Optional[VideoInfo] = None
    failed_command: Optional[CommandInvocationResult] = None


class CheckIntegrityJobResult(BaseJobResult):
    video_info: Optional[VideoInfo] = None
    verdict: Optional[IntegrityVerdict] = None
    failed_command: Optional[CommandInvocationResult] = None


# ---------------------------------------------------------------------------
# Job options (tagged by task)
# ---------------------------------------------------------------------------

class BaseJobOptions(BaseModel):
    """Shared shape of every persisted job.

    Options are frozen; state changes produce a new copy via `model_copy(update=...)`.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    state: JobState = JobState.PENDING
    source_file: FileDescriptor
    failure_reason: Optional[FailureText] = Field(default=None, union_mode="left_to_right")
    # Set just before the job starts writing its target; gates resume cleanup
    target_written: bool = False


class ConvertJobOptions(BaseJobOptions):
    task: Literal["convert"] = "convert"
    command_options: ConvertCommandOptions
    allow_clobber_existing: bool = False
    skip_convert_existing: bool = False
    delete_source_after_convert: bool = False
    keep_invalid_convert_result: bool = False
    skip_video_codec_names: List[str] = Field(default_factory=list)
    probe_options: ProbeCommandOptions = Field(default_factory=ProbeCommandOptions)
    result: Optional[ConvertJobResult] = None


class CopyJobOptions(BaseJobOptions):
    task: Literal["copy"] = "copy"
    command_options: CopyCommandOptions
    allow_clobber_existing: bool = False
    skip_convert_existing: bool = False
    result: Optional[CopyJobResult] = None


class GetInfoJobOptions(BaseJobOptions):
    task: Literal["getinfo"] = "getinfo"
    command_options: ProbeCommandOptions = Field(default_factory=ProbeCommandOptions)
    result: Optional[GetInfoJobResult] = None


class CheckIntegrityJobOptions(BaseJobOptions):
    task: Literal["checkintegrity"] = "checkintegrity"
    command_options: ProbeCommandOptions = Field(default_factory=ProbeCommandOptions)
    result: Optional[CheckIntegrityJobResult] = None


JobOptions = Annotated[
    Union[ConvertJobOptions, CopyJobOptions, GetInfoJobOptions, CheckIntegrityJobOptions],
    Field(discriminator="task"),
]

JobResult = Union[ConvertJobResult, CopyJobResult, GetInfoJobResult, CheckIntegrityJobResult]


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class Ledger(BaseModel):
    """Persisted record of a run.

    Field order is the order written to disk: aggregates first, then the
    settings snapshot, then the job list.
    """

    ledger_id: str
    name: str
    percent_done: float = 0.0
    percent_size_change: float = 0.0
    total_size_change_bytes: int = 0
    pretty_total_size_change: str = "0B"
    duration_ms: int = 0
    pretty_duration: str = "00:00:00"
    total_size_before_processing: int = 0
    total_size_after_processing: int = 0
    num_jobs: int = 0
    num_completed_jobs: int = 0
    num_failed_jobs: int = 0
    failed_job_ids: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    jobs: List[JobOptions] = Field(default_factory=list)
