from vconv.config.models import AppConfig
from vconv.domain.models import JobTask
from vconv.domain.paths import TEMP_FILE_PREFIX
from vconv.pipeline.discovery import get_all_jobs


def _enumerate(file_manager, directory, depth=10):
    return file_manager.enumerate_directory(directory, depth)


def test_discovery_builds_jobs_in_traversal_order(sample_config, dummy_video_files, file_manager, test_input_dir):
    jobs = get_all_jobs(JobTask.CONVERT, _enumerate(file_manager, test_input_dir), sample_config)

    assert [(j.task, j.source_file.name) for j in jobs] == [
        ("convert", "subvideo.mp4"),
        ("copy", "subvideo.srt"),
        ("convert", "video0.mp4"),
        ("convert", "video1.mp4"),
        ("convert", "video2.mp4"),
    ]
    assert len({j.job_id for j in jobs}) == len(jobs)


def test_discovery_name_regex_replaces_extension_filter(sample_config, dummy_video_files, file_manager, test_input_dir):
    config = AppConfig.model_validate({
        **sample_config.model_dump(),
        "selection": {"file_name_regex": r"^VIDEO[12]\.", "copy_extensions": []},
    })

    jobs = get_all_jobs(JobTask.GET_INFO, _enumerate(file_manager, test_input_dir), config)

    assert [j.source_file.name for j in jobs] == ["video1.mp4", "video2.mp4"]
    assert all(j.task == "getinfo" for j in jobs)


def test_discovery_no_copy_jobs_when_saving_in_place(dummy_video_files, file_manager, test_input_dir):
    config = AppConfig(
        output={"save_in_place": True},
        selection={"copy_extensions": [".srt"]},
        convert={"target_container_format": "mkv"},
    )

    jobs = get_all_jobs(JobTask.CONVERT, _enumerate(file_manager, test_input_dir), config)

    assert all(j.task == "convert" for j in jobs)
    assert len(jobs) == 4


def test_discovery_skips_temp_files_and_excluded_dirs(sample_config, dummy_video_files, file_manager, test_input_dir):
    (test_input_dir / f"{TEMP_FILE_PREFIX}video0.mp4").write_bytes(b"partial")
    out_dir = test_input_dir / "converted"
    out_dir.mkdir()
    (out_dir / "video0.mp4").write_bytes(b"converted")

    jobs = get_all_jobs(
        JobTask.CHECK_INTEGRITY, _enumerate(file_manager, test_input_dir), sample_config, excluded_dirs=[out_dir]
    )

    names = [j.source_file.name for j in jobs]
    assert f"{TEMP_FILE_PREFIX}video0.mp4" not in names
    assert names.count("video0.mp4") == 1


def test_discovery_respects_depth(sample_config, dummy_video_files, file_manager, test_input_dir):
    jobs = get_all_jobs(JobTask.CONVERT, _enumerate(file_manager, test_input_dir, depth=0), sample_config)
    assert [j.source_file.name for j in jobs] == ["video0.mp4", "video1.mp4", "video2.mp4"]
