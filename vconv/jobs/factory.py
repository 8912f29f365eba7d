import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type, Union
from vconv.config.models import AppConfig, OutputConfig
from vconv.domain.models import (
    CheckIntegrityJobOptions,
    ConvertCommandOptions,
    ConvertJobOptions,
    CopyCommandOptions,
    CopyJobOptions,
    FileDescriptor,
    GetInfoJobOptions,
    JobTask,
    ProbeCommandOptions,
)
from vconv.domain.paths import add_temp_token
from vconv.infrastructure.event_bus import EventBus
from vconv.infrastructure.file_manager import FileManager
from vconv.jobs.base import BaseJob, same_path
from vconv.jobs.check_integrity import CheckVideoIntegrityJob
from vconv.jobs.convert import ConvertVideoJob
from vconv.jobs.copy import CopyJob
from vconv.jobs.get_info import GetVideoInfoJob
from vconv.output.writers import OutputWriter

logger = logging.getLogger(__name__)

AnyJobOptions = Union[ConvertJobOptions, CopyJobOptions, GetInfoJobOptions, CheckIntegrityJobOptions]

JOB_REGISTRY: Dict[JobTask, Type[BaseJob]] = {
    JobTask.CONVERT: ConvertVideoJob,
    JobTask.COPY: CopyJob,
    JobTask.GET_INFO: GetVideoInfoJob,
    JobTask.CHECK_INTEGRITY: CheckVideoIntegrityJob,
}


class SourceTargetCollisionError(Exception):
    """The resolved target would overwrite its own source."""

    def __init__(self, source: Path, target: Path):
        super().__init__(
            f"target path equals source path: {source}. "
            "Choose another save path or container format, or allow deleting the source after conversion."
        )
        self.source = Path(source)
        self.target = Path(target)


def make_job_id(task: JobTask) -> str:
    return f"{JobTask(task).value}-{uuid.uuid4()}"


def resolve_target_directory(source_file: FileDescriptor, output: OutputConfig) -> Path:
    if output.save_in_place:
        return Path(source_file.parent_path)
    save_path = Path(output.save_path).resolve()
    if output.copy_relative_folder_path:
        return save_path / source_file.relative_path
    return save_path


def resolve_target_file_name(source_file: FileDescriptor, container_format: str) -> str:
    if container_format == "copy":
        return source_file.name
    return f"{Path(source_file.name).stem}.{container_format}"


def make_job_options(task: JobTask, source_file: FileDescriptor, config: AppConfig) -> AnyJobOptions:
    """Builds the persisted options for one job.

    Raises SourceTargetCollisionError when a conversion or copy would write
    onto its own source and the settings do not allow replacing it.
    """
    task = JobTask(task)
    job_id = make_job_id(task)
    probe_options = ProbeCommandOptions(timeout_ms=config.general.probe_timeout_ms)

    if task == JobTask.GET_INFO:
        return GetInfoJobOptions(job_id=job_id, source_file=source_file, command_options=probe_options)
    if task == JobTask.CHECK_INTEGRITY:
        return CheckIntegrityJobOptions(job_id=job_id, source_file=source_file, command_options=probe_options)

    target_dir = resolve_target_directory(source_file, config.output)

    if task == JobTask.COPY:
        target_path = target_dir / source_file.name
        if same_path(target_path, source_file.full_path):
            raise SourceTargetCollisionError(source_file.full_path, target_path)
        return CopyJobOptions(
            job_id=job_id,
            source_file=source_file,
            command_options=CopyCommandOptions(target_file_full_path=target_path),
            allow_clobber_existing=config.convert.allow_clobber_existing,
            skip_convert_existing=config.convert.skip_convert_existing,
        )

    convert = config.convert
    target_path = target_dir / resolve_target_file_name(source_file, convert.target_container_format)
    if same_path(target_path, source_file.full_path):
        if not convert.delete_source_after_convert:
            raise SourceTargetCollisionError(source_file.full_path, target_path)
        target_path = add_temp_token(target_path)
        logger.debug(f"TARGET_TEMP_TOKEN: {source_file.full_path} converts via {target_path}")

    return ConvertJobOptions(
        job_id=job_id,
        source_file=source_file,
        command_options=ConvertCommandOptions(
            target_file_full_path=target_path,
            target_container_format=convert.target_container_format,
            target_video_encoder=convert.target_video_encoder,
            target_audio_encoder=convert.target_audio_encoder,
            use_cuda=convert.use_cuda,
            x_args=list(convert.x_args),
            timeout_ms=config.general.convert_timeout_ms,
        ),
        allow_clobber_existing=convert.allow_clobber_existing,
        skip_convert_existing=convert.skip_convert_existing,
        delete_source_after_convert=convert.delete_source_after_convert,
        keep_invalid_convert_result=convert.keep_invalid_convert_result,
        skip_video_codec_names=list(convert.skip_video_codec_names),
        probe_options=probe_options,
    )


def make_job(
    options: AnyJobOptions,
    converter: Any,
    file_manager: FileManager,
    output_writer: OutputWriter,
    event_bus: EventBus,
    on_options_changed: Optional[Callable[[AnyJobOptions], None]] = None,
) -> BaseJob:
    job_class = JOB_REGISTRY[JobTask(options.task)]
    return job_class(options, converter, file_manager, output_writer, event_bus, on_options_changed)
