import pytest
import yaml
from pathlib import Path
from vconv.config.models import AppConfig
from vconv.domain.models import FileDescriptor
from vconv.infrastructure.event_bus import EventBus
from vconv.infrastructure.file_manager import FileManager
from vconv.infrastructure.mock_converter import MockVideoConverter
from vconv.output.writers import OutputWriter

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns an AppConfig pointing at temporary source/output directories."""
    return AppConfig(
        general={
            "task": "convert",
            "metadata_path": tmp_path / "meta",
            "ledger_flush_interval_ms": 50,
            "check_commands": False,
        },
        selection={
            "source_path": tmp_path / "input",
            "allowed_extensions": [".mp4", ".mkv"],
            "copy_extensions": [".srt"],
        },
        output={
            "save_path": tmp_path / "output",
            "copy_relative_folder_path": True,
        },
        convert={
            "target_container_format": "mkv",
            "target_video_encoder": "libx265",
            "target_audio_encoder": "copy",
        },
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vconv.yaml"

    content = {
        'general': {
            'task': 'getinfo',
            'probe_timeout_ms': 5000,
            'debug': False,
        },
        'selection': {
            'allowed_extensions': 'mp4, MOV',
            'copy_extensions': ['srt'],
        },
        'output': {
            'save_path': str(tmp_path / "out"),
            'copy_relative_folder_path': True,
        },
        'convert': {
            'target_container_format': 'mkv',
            'skip_video_codec_names': 'hevc,av1',
            'x_args': '-preset slow -crf 22',
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus / Infrastructure Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def file_manager():
    return FileManager()


class RecordingOutputWriter(OutputWriter):
    """Collects everything written; optionally claims to be a terminal."""

    def __init__(self, progressive: bool = False):
        self.chunks = []
        self.progressive = progressive

    def write(self, message: str) -> None:
        self.chunks.append(message)

    def supports_progressive_updates(self) -> bool:
        return self.progressive

    @property
    def text(self) -> str:
        return "".join(self.chunks)


@pytest.fixture
def output_writer():
    return RecordingOutputWriter()


@pytest.fixture
def terminal_writer():
    return RecordingOutputWriter(progressive=True)


@pytest.fixture
def mock_converter(file_manager, event_bus):
    return MockVideoConverter(file_manager, event_bus)

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir


@pytest.fixture
def dummy_video_files(test_input_dir):
    """Creates dummy video files (and one subtitle) in the input directory."""
    files = []

    for i in range(3):
        f = test_input_dir / f"video{i}.mp4"
        f.write_bytes(b"dummy video content " * 100)  # 2000 bytes
        files.append(f)

    subdir = test_input_dir / "subdir"
    subdir.mkdir()
    f = subdir / "subvideo.mp4"
    f.write_bytes(b"dummy video content " * 100)
    files.append(f)

    (subdir / "subvideo.srt").write_text("1\n00:00:01,000 --> 00:00:02,000\nhello\n")
    (test_input_dir / "notes.txt").write_text("ignored")

    return files


def make_source_file(path: Path, content: bytes = b"dummy video content " * 100, base: Path = None) -> FileDescriptor:
    """Writes `content` to `path` and returns its descriptor."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return FileManager().get_fs_item_from_path(path, base)


@pytest.fixture
def make_source():
    return make_source_file

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (integration tests that run ffmpeg)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
