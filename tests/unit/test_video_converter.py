import json
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from vconv.domain.models import (
    CommandInvocationResult,
    CommandState,
    ConvertCommandOptions,
    ProbeCommandOptions,
    VideoInfo,
)
from vconv.infrastructure.file_manager import FileManager
from vconv.infrastructure.video_converter import (
    FFmpegVideoConverter,
    total_duration_seconds,
    total_frame_count,
)

PROBE_JSON = {
    "streams": [
        {"index": 0, "codec_name": "h264", "codec_type": "video", "duration": "12.500000", "nb_frames": "375", "width": 1920},
        {"index": 1, "codec_name": "aac", "codec_type": "audio", "duration": "12.480000"},
    ],
    "format": {"filename": "clip.mp4", "format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "12.500000", "size": "1000"},
}


def _result(success=True, stdout=None, exit_code=0):
    return CommandInvocationResult(
        command_id="cmd-1",
        state=CommandState.FINISHED,
        success=success,
        exit_code=exit_code if success else 1,
        stdout=stdout or [],
        error=None if success else "ffprobe exited with code 1",
    )


@pytest.fixture
def runner():
    return MagicMock()


@pytest.fixture
def converter(runner):
    return FFmpegVideoConverter(runner, FileManager(), ffmpeg_command="ffmpeg", ffprobe_command="ffprobe")


@pytest.fixture
def clip(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"x" * 1000)
    return path


def test_build_probe_args(converter):
    args = converter.build_probe_args(Path("/videos/a.mp4"), ProbeCommandOptions(x_args=["-count_frames"]))
    assert args == [
        "-hide_banner", "-v", "quiet", "-print_format", "json",
        "-show_format", "-show_streams", "-count_frames", "/videos/a.mp4",
    ]


def test_build_convert_args(converter):
    options = ConvertCommandOptions(
        target_file_full_path=Path("/out/a.mkv"),
        target_container_format="mkv",
        target_video_encoder="libx265",
        target_audio_encoder="aac",
        x_args=["-crf", "22"],
    )
    args = converter.build_convert_args(Path("/videos/a.mp4"), options)
    assert args[:2] == ["-hide_banner", "-y"]
    assert args[args.index("-i") + 1] == "/videos/a.mp4"
    assert args[args.index("-c:v") + 1] == "libx265"
    assert args[args.index("-c:a") + 1] == "aac"
    assert "convertedby=vconv" in args
    assert "-hwaccel" not in args
    assert args[-3:] == ["-crf", "22", "/out/a.mkv"]


def test_build_convert_args_cuda(converter):
    options = ConvertCommandOptions(target_file_full_path=Path("/out/a.mp4"), use_cuda=True)
    args = converter.build_convert_args(Path("/videos/a.mp4"), options)
    assert args[args.index("-hwaccel") + 1] == "cuda"
    assert args.index("-hwaccel") < args.index("-i")


def test_probe_parses_json(converter, runner):
    runner.run.return_value = _result(stdout=json.dumps(PROBE_JSON, indent=2).splitlines())

    result = converter.probe(Path("/videos/clip.mp4"), "job-1", "probe-1", ProbeCommandOptions(timeout_ms=500))

    assert result.success is True
    assert result.video_info.video_stream().codec_name == "h264"
    assert result.video_info.audio_stream().codec_name == "aac"
    args, kwargs = runner.run.call_args
    assert args[0] == "ffprobe"
    assert args[2] == "probe-1"
    assert args[3] == 500
    assert args[4] == "job-1"


def test_probe_failure(converter, runner):
    runner.run.return_value = _result(success=False)

    result = converter.probe(Path("/videos/clip.mp4"), "job-1", "probe-1", ProbeCommandOptions())

    assert result.success is False
    assert result.video_info is None
    assert result.command_result.error == "ffprobe exited with code 1"


def test_probe_unparseable_output(converter, runner):
    runner.run.return_value = _result(stdout=["not json"])

    result = converter.probe(Path("/videos/clip.mp4"), "job-1", "probe-1", ProbeCommandOptions())

    assert result.success is False


def test_check_integrity_missing_file(converter, runner, tmp_path):
    result = converter.check_integrity(tmp_path / "missing.mp4", "job-1", "c-1", ProbeCommandOptions())

    assert result.success is True
    assert result.verdict.is_good is False
    assert result.verdict.issues.file_does_not_exist is True
    runner.run.assert_not_called()


def test_check_integrity_empty_file(converter, runner, tmp_path):
    empty = tmp_path / "empty.mp4"
    empty.touch()

    result = converter.check_integrity(empty, "job-1", "c-1", ProbeCommandOptions())

    assert result.success is True
    assert result.verdict.issues.names() == ["is_empty_file"]
    assert result.file.size == 0
    runner.run.assert_not_called()


def test_check_integrity_good_file(converter, runner, clip):
    runner.run.return_value = _result(stdout=[json.dumps(PROBE_JSON)])

    result = converter.check_integrity(clip, "job-1", "c-1", ProbeCommandOptions())

    assert result.success is True
    assert result.verdict.is_good is True
    assert result.file.size == 1000
    assert result.video_info is not None


def test_check_integrity_probe_failed(converter, runner, clip):
    runner.run.return_value = _result(success=False)

    result = converter.check_integrity(clip, "job-1", "c-1", ProbeCommandOptions())

    assert result.success is False
    assert result.verdict.issues.probe_failed is True


def test_check_integrity_uses_given_video_info(converter, runner, clip):
    info = VideoInfo.model_validate({"streams": [{"codec_type": "video", "codec_name": "rawvideo"}]})

    result = converter.check_integrity(clip, "job-1", "c-1", ProbeCommandOptions(), video_info=info)

    runner.run.assert_not_called()
    assert result.verdict.is_good is False
    assert set(result.verdict.issues.names()) == {
        "container_info_missing", "audio_stream_missing", "video_stream_is_raw",
    }


def test_evaluate_integrity_missing_video():
    info = VideoInfo.model_validate({"format": {"format_name": "mp3"}, "streams": [{"codec_type": "audio"}]})
    verdict = FFmpegVideoConverter.evaluate_integrity(info)
    assert verdict.issues.names() == ["video_stream_missing"]


def test_convert_runs_ffmpeg_and_creates_target_dir(converter, runner, clip, tmp_path):
    runner.run.return_value = _result()
    target = tmp_path / "out" / "nested" / "clip.mkv"
    options = ConvertCommandOptions(target_file_full_path=target, timeout_ms=1234)
    source = FileManager().get_fs_item_from_path(clip)

    result = converter.convert(source, "job-1", "convert-1", options)

    assert result.success is True
    assert result.target_file_full_path == target
    assert target.parent.is_dir()
    args = runner.run.call_args[0]
    assert args[0] == "ffmpeg"
    assert args[2] == "convert-1"
    assert args[3] == 1234


def test_convert_failure(converter, runner, clip, tmp_path):
    runner.run.return_value = _result(success=False)
    options = ConvertCommandOptions(target_file_full_path=tmp_path / "clip.mkv")
    source = FileManager().get_fs_item_from_path(clip)

    result = converter.convert(source, "job-1", "convert-1", options)

    assert result.success is False
    assert result.command_result is not None


def test_convert_target_dir_blocked_by_file(converter, runner, clip, tmp_path):
    blocker = tmp_path / "out"
    blocker.write_text("not a directory")
    options = ConvertCommandOptions(target_file_full_path=blocker / "clip.mkv")
    source = FileManager().get_fs_item_from_path(clip)

    result = converter.convert(source, "job-1", "convert-1", options)

    assert result.success is False
    runner.run.assert_not_called()


def test_check_commands(converter, runner):
    runner.run.side_effect = [_result(), _result(success=False)]

    result = converter.check_commands()

    assert result.success is False
    assert result.failed_commands == ["ffprobe"]
    assert runner.run.call_args_list[0][0][1] == ["-h"]
    assert runner.run.call_args_list[1][0][1] == ["-L"]


def test_total_duration_and_frames():
    info = VideoInfo.model_validate(PROBE_JSON)
    assert total_duration_seconds(info) == 12.5
    assert total_frame_count(info) == 375

    no_stream_duration = VideoInfo.model_validate(
        {"format": {"duration": "8.0"}, "streams": [{"codec_type": "video", "nb_frames": "N/A"}]}
    )
    assert total_duration_seconds(no_stream_duration) == 8.0
    assert total_frame_count(no_stream_duration) == -1
    assert total_duration_seconds(None) == -1
    assert total_frame_count(VideoInfo()) == -1
