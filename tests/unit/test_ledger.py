import json
import time
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from vconv.domain.models import (
    ConvertCommandOptions,
    ConvertJobOptions,
    ConvertJobResult,
    FailureReason,
    FileDescriptor,
    GetInfoJobOptions,
    JobState,
    Ledger,
)
from vconv.infrastructure.file_manager import FileManager
from vconv.pipeline.ledger import (
    CorruptJobFileError,
    JobFilePathIsNotAFileError,
    JobLedger,
    MissingJobFileDataError,
    compute_ledger_statistics,
)


def _source(name: str, size: int) -> FileDescriptor:
    return FileDescriptor(full_path=Path("/videos") / name, name=name, parent_path=Path("/videos"), size=size, extension=".mp4")


def _convert_job(job_id: str, size: int, state=JobState.PENDING, result=None, failure_reason=None) -> ConvertJobOptions:
    return ConvertJobOptions(
        job_id=job_id,
        state=state,
        source_file=_source(f"{job_id}.mp4", size),
        command_options=ConvertCommandOptions(target_file_full_path=Path("/out") / f"{job_id}.mkv"),
        result=result,
        failure_reason=failure_reason,
    )


def _ledger(*jobs) -> Ledger:
    return Ledger(ledger_id="ledger-1", name="20240101000000-convert", settings={"convert": {"x": 1}}, jobs=list(jobs))


def test_compute_ledger_statistics():
    done = _convert_job(
        "a", 1000, JobState.COMPLETED,
        ConvertJobResult(job_id="a", success=True, duration_ms=2000, size_difference=-400),
    )
    failed = _convert_job(
        "b", 3000, JobState.ERROR,
        ConvertJobResult(job_id="b", success=False, duration_ms=1000, failure_reason=FailureReason.CONVERT_FAILED),
        FailureReason.CONVERT_FAILED,
    )
    pending = _convert_job("c", 5000)
    running = _convert_job("d", 7000, JobState.RUNNING)

    stats = compute_ledger_statistics(_ledger(done, failed, pending, running))

    assert stats.num_jobs == 4
    assert stats.num_completed_jobs == 1
    assert stats.num_failed_jobs == 1
    assert stats.failed_job_ids == ["b"]
    assert stats.percent_done == 50.0
    assert stats.total_size_before_processing == 4000
    assert stats.total_size_change_bytes == -400
    assert stats.total_size_after_processing == 3600
    assert stats.percent_size_change == -10.0
    assert stats.pretty_total_size_change == "-400B"
    assert stats.duration_ms == 3000
    assert stats.pretty_duration == "00:00:03"


def test_compute_ledger_statistics_empty():
    stats = compute_ledger_statistics(_ledger())
    assert stats.num_jobs == 0
    assert stats.percent_done == 0.0
    assert stats.percent_size_change == 0.0


def test_create_writes_immediately(tmp_path):
    path = tmp_path / "meta" / "run.vconv.json"
    job_ledger = JobLedger.create(path, _ledger(_convert_job("a", 1000)), FileManager(), flush_interval_ms=60000)
    try:
        data = json.loads(path.read_text())
        assert data["ledger_id"] == "ledger-1"
        assert data["num_jobs"] == 1
        assert data["jobs"][0]["task"] == "convert"
        assert data["jobs"][0]["state"] == "pending"
        assert list(data)[:3] == ["ledger_id", "name", "percent_done"]
        assert list(data)[-2:] == ["settings", "jobs"]
        assert job_ledger.is_dirty is False
        assert not (tmp_path / "meta" / "run.vconv.json.tmp").exists()
    finally:
        job_ledger.shutdown()


def test_update_job_marks_dirty_without_writing(tmp_path):
    path = tmp_path / "run.vconv.json"
    job_ledger = JobLedger.create(path, _ledger(_convert_job("a", 1000)), FileManager(), flush_interval_ms=60000)
    try:
        running = job_ledger.get_job("a").model_copy(update={"state": JobState.RUNNING})
        assert job_ledger.update_job(running) is True
        assert job_ledger.is_dirty is True
        assert json.loads(path.read_text())["jobs"][0]["state"] == "pending"

        assert job_ledger.flush() is True
        assert json.loads(path.read_text())["jobs"][0]["state"] == "running"
        assert job_ledger.flush() is False
    finally:
        job_ledger.shutdown()


def test_flush_without_changes_does_not_touch_disk(tmp_path):
    file_manager = MagicMock(wraps=FileManager())
    job_ledger = JobLedger(tmp_path / "run.vconv.json", _ledger(), file_manager, flush_interval_ms=60000)
    try:
        assert job_ledger.flush() is False
        file_manager.write_file.assert_not_called()
    finally:
        job_ledger.shutdown()
    file_manager.write_file.assert_not_called()


def test_update_unknown_job_is_ignored(tmp_path):
    job_ledger = JobLedger.create(tmp_path / "run.vconv.json", _ledger(_convert_job("a", 1)), FileManager(), flush_interval_ms=60000)
    try:
        assert job_ledger.update_job(_convert_job("zzz", 1)) is False
        assert job_ledger.is_dirty is False
        assert [j.job_id for j in job_ledger.jobs] == ["a"]
    finally:
        job_ledger.shutdown()


def test_aggregates_follow_updates(tmp_path):
    job_ledger = JobLedger.create(
        tmp_path / "run.vconv.json", _ledger(_convert_job("a", 1000), _convert_job("b", 1000)), FileManager(), flush_interval_ms=60000
    )
    try:
        done = job_ledger.get_job("a").model_copy(update={
            "state": JobState.COMPLETED,
            "result": ConvertJobResult(job_id="a", success=True, size_difference=-500),
        })
        job_ledger.update_job(done)
        assert job_ledger.ledger.num_completed_jobs == 1
        assert job_ledger.ledger.percent_done == 50.0
        assert job_ledger.ledger.percent_size_change == -50.0
    finally:
        job_ledger.shutdown()


def test_background_flush(tmp_path):
    path = tmp_path / "run.vconv.json"
    job_ledger = JobLedger.create(path, _ledger(_convert_job("a", 1000)), FileManager(), flush_interval_ms=20)
    try:
        job_ledger.update_job(job_ledger.get_job("a").model_copy(update={"state": JobState.RUNNING}))
        deadline = time.monotonic() + 5
        while job_ledger.is_dirty and time.monotonic() < deadline:
            time.sleep(0.02)
        assert json.loads(path.read_text())["jobs"][0]["state"] == "running"
    finally:
        job_ledger.shutdown()


def test_shutdown_flushes_and_is_idempotent(tmp_path):
    path = tmp_path / "run.vconv.json"
    job_ledger = JobLedger.create(path, _ledger(_convert_job("a", 1000)), FileManager(), flush_interval_ms=60000)
    job_ledger.update_job(job_ledger.get_job("a").model_copy(update={"state": JobState.ERROR, "failure_reason": "boom"}))

    job_ledger.shutdown()
    job_ledger.shutdown()

    data = json.loads(path.read_text())
    assert data["jobs"][0]["state"] == "error"
    assert data["jobs"][0]["failure_reason"] == "boom"
    assert data["num_failed_jobs"] == 1


def test_load_round_trip(tmp_path):
    path = tmp_path / "run.vconv.json"
    info_job = GetInfoJobOptions(job_id="getinfo-1", source_file=_source("x.mp4", 10))
    failed = _convert_job("a", 1000, JobState.ERROR, failure_reason=FailureReason.CONVERT_FAILED)
    JobLedger.create(path, _ledger(failed, info_job), FileManager(), flush_interval_ms=60000).shutdown()

    job_ledger = JobLedger.load(path, FileManager(), flush_interval_ms=60000)
    try:
        jobs = job_ledger.jobs
        assert isinstance(jobs[0], ConvertJobOptions)
        assert jobs[0].failure_reason is FailureReason.CONVERT_FAILED
        assert isinstance(jobs[1], GetInfoJobOptions)
        assert job_ledger.settings == {"convert": {"x": 1}}
        assert job_ledger.is_dirty is False
    finally:
        job_ledger.shutdown()


def test_compact_job_file(tmp_path):
    path = tmp_path / "run.vconv.json"
    JobLedger.create(path, _ledger(), FileManager(), flush_interval_ms=60000, pretty=False).shutdown()
    assert "\n" not in path.read_text()


def test_load_errors(tmp_path):
    with pytest.raises(MissingJobFileDataError):
        JobLedger.load(tmp_path / "missing.json", FileManager())

    with pytest.raises(JobFilePathIsNotAFileError):
        JobLedger.load(tmp_path, FileManager())

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    with pytest.raises(CorruptJobFileError):
        JobLedger.load(corrupt, FileManager())


def test_open_requires_initial_data_for_new_file(tmp_path):
    with pytest.raises(MissingJobFileDataError):
        JobLedger.open(tmp_path / "new.json", FileManager())

    job_ledger = JobLedger.open(tmp_path / "new.json", FileManager(), initial=_ledger(), flush_interval_ms=60000)
    job_ledger.shutdown()
    assert (tmp_path / "new.json").exists()
