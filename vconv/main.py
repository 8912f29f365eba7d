import logging
import shlex
import typer
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import ValidationError

from vconv.config.loader import load_config
from vconv.config.models import AppConfig
from vconv.infrastructure.command_runner import ProcessCommandRunner
from vconv.infrastructure.event_bus import EventBus
from vconv.infrastructure.file_manager import FileManager, FileManagerError
from vconv.infrastructure.logging import setup_logging
from vconv.infrastructure.video_converter import FFmpegVideoConverter
from vconv.jobs.factory import SourceTargetCollisionError
from vconv.output.writers import ConsoleOutputWriter, FileOutputWriter, OutputWriter
from vconv.pipeline.ledger import JobLedgerError
from vconv.pipeline.runner import Runner, RunnerConfigurationError

app = typer.Typer(help="vconv - resumable batch video conversion")


def _split_list(value: Optional[str]):
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def apply_overrides(config: AppConfig, overrides: Dict[str, Dict[str, Any]]) -> AppConfig:
    """Returns a validated copy of `config` with non-None CLI values applied."""
    data = config.model_dump()
    for section, values in overrides.items():
        for key, value in values.items():
            if value is not None:
                data[section][key] = value
    return AppConfig.model_validate(data)


@app.command()
def convert(
    source_path: Optional[Path] = typer.Argument(
        None,
        help="Directory to process (optional when resuming from an existing job file)"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    task: Optional[str] = typer.Option(None, "--task", "-t", help="Task to run: convert, getinfo, checkintegrity"),
    job_file: Optional[Path] = typer.Option(None, "--job-file", "-j", help="Job file to create or resume"),
    save_job_file_only: bool = typer.Option(False, "--save-job-file-only", help="Write the job file and exit without running jobs"),
    save_path: Optional[Path] = typer.Option(None, "--save-path", "-o", help="Directory for converted files"),
    save_in_place: Optional[bool] = typer.Option(None, "--save-in-place/--no-save-in-place", help="Write converted files next to their sources"),
    copy_relative_folder_path: Optional[bool] = typer.Option(
        None, "--copy-relative-folder-path/--flat", help="Mirror source sub-folders under the save path"
    ),
    extensions: Optional[str] = typer.Option(None, "--ext", help="Comma-separated extensions to process (e.g. mp4,mkv)"),
    file_name_regex: Optional[str] = typer.Option(None, "--file-regex", help="Select files by name regex (overrides --ext)"),
    copy_extensions: Optional[str] = typer.Option(None, "--copy-ext", help="Comma-separated extensions to copy alongside output"),
    copy_file_regex: Optional[str] = typer.Option(None, "--copy-regex", help="Select files to copy by name regex"),
    video_encoder: Optional[str] = typer.Option(None, "--video-encoder", help="ffmpeg video encoder (default: copy)"),
    audio_encoder: Optional[str] = typer.Option(None, "--audio-encoder", help="ffmpeg audio encoder (default: copy)"),
    container: Optional[str] = typer.Option(None, "--container", help="Target container: copy, mp4, mkv, mov, avi"),
    use_cuda: Optional[bool] = typer.Option(None, "--cuda/--no-cuda", help="Use CUDA hardware decoding"),
    x_args: Optional[str] = typer.Option(None, "--x-args", help="Extra ffmpeg arguments, shell-quoted"),
    allow_clobber: Optional[bool] = typer.Option(None, "--allow-clobber/--no-allow-clobber", help="Delete existing targets before converting"),
    skip_existing: Optional[bool] = typer.Option(None, "--skip-existing/--no-skip-existing", help="Skip files whose target already exists"),
    delete_source: Optional[bool] = typer.Option(None, "--delete-source/--keep-source", help="Delete sources after a verified conversion"),
    keep_invalid: Optional[bool] = typer.Option(None, "--keep-invalid/--no-keep-invalid", help="Keep converted files that fail the integrity check"),
    skip_codecs: Optional[str] = typer.Option(None, "--skip-codecs", help="Comma-separated video codecs to leave untouched (e.g. hevc,av1)"),
    convert_timeout_ms: Optional[int] = typer.Option(None, "--convert-timeout-ms", help="Kill ffmpeg after this many ms (0 = never)"),
    metadata_path: Optional[Path] = typer.Option(None, "--metadata-path", help="Directory for job files and logs"),
    output_file: Optional[Path] = typer.Option(None, "--output-file", help="Write run output to a file instead of the console"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides metadata path)"),
    skip_command_check: bool = typer.Option(False, "--skip-command-check", help="Do not verify ffmpeg/ffprobe before running"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
):
    """Convert, probe or integrity-check every video under SOURCE_PATH, resumably."""
    output_writer: Optional[OutputWriter] = None
    try:
        config = load_config(config_path) if config_path else AppConfig()
        try:
            config = apply_overrides(config, {
                "general": {
                    "task": task,
                    "job_file": job_file,
                    "save_job_file_only": save_job_file_only or None,
                    "metadata_path": metadata_path,
                    "output_file": output_file,
                    "log_path": log_path,
                    "debug": debug or None,
                    "convert_timeout_ms": convert_timeout_ms,
                    "check_commands": False if skip_command_check else None,
                },
                "selection": {
                    "source_path": source_path,
                    "allowed_extensions": _split_list(extensions),
                    "file_name_regex": file_name_regex,
                    "copy_extensions": _split_list(copy_extensions),
                    "copy_file_regex": copy_file_regex,
                },
                "output": {
                    "save_path": save_path,
                    "save_in_place": save_in_place,
                    "copy_relative_folder_path": copy_relative_folder_path,
                },
                "convert": {
                    "target_container_format": container,
                    "target_video_encoder": video_encoder,
                    "target_audio_encoder": audio_encoder,
                    "use_cuda": use_cuda,
                    "x_args": shlex.split(x_args) if x_args is not None else None,
                    "allow_clobber_existing": allow_clobber,
                    "skip_convert_existing": skip_existing,
                    "delete_source_after_convert": delete_source,
                    "keep_invalid_convert_result": keep_invalid,
                    "skip_video_codec_names": _split_list(skip_codecs),
                },
            })
        except ValidationError as exc:
            typer.secho(f"Error: invalid settings: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        general = config.general
        if general.job_file is None and config.selection.source_path is None:
            typer.secho("Error: provide SOURCE_PATH or --job-file.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        logger = setup_logging(general.metadata_path, debug=general.debug, log_path=general.log_path)
        logger.info(f"vconv started: task={general.task.value} source={config.selection.source_path} job_file={general.job_file}")

        output_writer = FileOutputWriter(general.output_file) if general.output_file else ConsoleOutputWriter()
        event_bus = EventBus()
        file_manager = FileManager()
        converter = FFmpegVideoConverter(
            ProcessCommandRunner(event_bus),
            file_manager,
            ffmpeg_command=general.ffmpeg_command,
            ffprobe_command=general.ffprobe_command,
        )

        if general.check_commands and not general.save_job_file_only:
            check = converter.check_commands()
            if not check.success:
                typer.secho(
                    f"Error: required commands are not runnable: {', '.join(check.failed_commands)}",
                    fg=typer.colors.RED,
                    err=True,
                )
                raise typer.Exit(code=1)

        runner = Runner(config, converter, file_manager, output_writer, event_bus)
        ledger = runner.run()
        if ledger.num_failed_jobs and not general.save_job_file_only:
            logger.warning(f"{ledger.num_failed_jobs} jobs failed: {', '.join(ledger.failed_job_ids)}")

    except KeyboardInterrupt:
        typer.secho("\nStopped by user (Ctrl+C); job file saved, rerun with --job-file to resume", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except (SourceTargetCollisionError, RunnerConfigurationError, JobLedgerError, FileManagerError, FileNotFoundError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except Exception as e:
        logging.getLogger(__name__).exception("Fatal error")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    finally:
        if output_writer is not None:
            output_writer.shutdown()

if __name__ == "__main__":
    app()
