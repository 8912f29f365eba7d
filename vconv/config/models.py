import re
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from vconv.domain.models import JobTask

SUPPORTED_CONTAINER_FORMATS = {"copy", "mp4", "mkv", "mov", "avi"}
RUNNABLE_TASKS = {JobTask.CONVERT, JobTask.GET_INFO, JobTask.CHECK_INTEGRITY}


def normalize_extensions(extensions: List[str]) -> List[str]:
    normalized = []
    for ext in extensions:
        ext = ext.strip()
        if not ext:
            continue
        ext = (ext if ext.startswith(".") else f".{ext}").lower()
        if ext not in normalized:
            normalized.append(ext)
    return normalized


def _validate_regex(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        re.compile(value)
    except re.error as exc:
        raise ValueError(f"Invalid regular expression {value!r}: {exc}") from exc
    return value


class GeneralConfig(BaseModel):
    """Runtime behaviour of this invocation. Not restored from a job file."""
    task: JobTask = JobTask.CONVERT
    job_file: Optional[Path] = None
    save_job_file_only: bool = False
    metadata_path: Path = Path(".vconv")
    log_path: Optional[Path] = None
    output_file: Optional[Path] = None
    debug: bool = False
    ledger_flush_interval_ms: int = Field(default=5000, gt=0)
    pretty_job_file: bool = True
    ffmpeg_command: str = "ffmpeg"
    ffprobe_command: str = "ffprobe"
    check_commands: bool = True
    probe_timeout_ms: int = Field(default=10000, ge=0)
    convert_timeout_ms: int = Field(default=0, ge=0)  # 0 disables the timeout
    max_depth: int = Field(default=10, ge=0)

    @field_validator("task")
    @classmethod
    def validate_task(cls, v: JobTask) -> JobTask:
        if v not in RUNNABLE_TASKS:
            raise ValueError(f"Unsupported task: {v.value}. Use one of {sorted(t.value for t in RUNNABLE_TASKS)}")
        return v


class SelectionConfig(BaseModel):
    """Which files under the source path become jobs."""
    source_path: Optional[Path] = None
    allowed_extensions: List[str] = Field(default_factory=lambda: [".mp4", ".mkv", ".avi", ".mov"])
    file_name_regex: Optional[str] = None
    copy_extensions: List[str] = Field(default_factory=list)
    copy_file_regex: Optional[str] = None

    @field_validator("allowed_extensions", "copy_extensions")
    @classmethod
    def validate_extensions(cls, v: List[str]) -> List[str]:
        return normalize_extensions(v)

    @field_validator("file_name_regex", "copy_file_regex")
    @classmethod
    def validate_regex(cls, v: Optional[str]) -> Optional[str]:
        return _validate_regex(v)


class OutputConfig(BaseModel):
    """Where converted and copied files are written."""
    save_path: Path = Path("./video-converter-output")
    save_in_place: bool = False
    copy_relative_folder_path: bool = False


class ConvertConfig(BaseModel):
    target_container_format: str = "copy"
    target_video_encoder: str = "copy"
    target_audio_encoder: str = "copy"
    use_cuda: bool = False
    x_args: List[str] = Field(default_factory=list)
    allow_clobber_existing: bool = False
    skip_convert_existing: bool = False
    delete_source_after_convert: bool = False
    keep_invalid_convert_result: bool = False
    skip_video_codec_names: List[str] = Field(default_factory=list)

    @field_validator("target_container_format")
    @classmethod
    def validate_container(cls, v: str) -> str:
        fmt = v.strip().lstrip(".").lower()
        if fmt not in SUPPORTED_CONTAINER_FORMATS:
            raise ValueError(
                f"Unsupported container format: {v}. Use one of {sorted(SUPPORTED_CONTAINER_FORMATS)}"
            )
        return fmt

    @field_validator("skip_video_codec_names")
    @classmethod
    def validate_codec_names(cls, v: List[str]) -> List[str]:
        return [name.strip() for name in v if name.strip()]


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    convert: ConvertConfig = Field(default_factory=ConvertConfig)

    @model_validator(mode="after")
    def validate_output_mode(self):
        if self.output.save_in_place and self.output.copy_relative_folder_path:
            raise ValueError("save_in_place cannot be combined with copy_relative_folder_path")
        return self

    def run_settings(self) -> dict:
        """Settings persisted in the job file and restored on resume."""
        return self.model_dump(mode="json", include={"selection", "output", "convert"})

    def with_run_settings(self, settings: dict) -> "AppConfig":
        """Returns a copy whose run settings come from a job file."""
        data = self.model_dump(mode="json")
        for key in ("selection", "output", "convert"):
            if key in settings:
                data[key] = settings[key]
        return AppConfig.model_validate(data)
