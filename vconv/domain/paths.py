from pathlib import Path

# Prefix for in-place conversion targets while the source is still on disk.
TEMP_FILE_PREFIX = ".vconv-tmp-"


def add_temp_token(path: Path) -> Path:
    path = Path(path)
    if path.name.startswith(TEMP_FILE_PREFIX):
        return path
    return path.with_name(f"{TEMP_FILE_PREFIX}{path.name}")


def has_temp_token(path: Path) -> bool:
    return Path(path).name.startswith(TEMP_FILE_PREFIX)


def strip_temp_token(path: Path) -> Path:
    path = Path(path)
    if not has_temp_token(path):
        return path
    return path.with_name(path.name[len(TEMP_FILE_PREFIX):])
