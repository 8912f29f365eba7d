import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Union
from vconv.domain.models import DirectoryDescriptor, FileDescriptor, FSItem

PathLike = Union[str, Path]


class FileManagerError(Exception):
    """Base class for filesystem errors raised by FileManager."""


class DirectoryDoesNotExistError(FileManagerError):
    def __init__(self, path: PathLike):
        super().__init__(f"directory does not exist: {path}")
        self.path = Path(path)


class PathIsNotADirectoryError(FileManagerError):
    def __init__(self, path: PathLike):
        super().__init__(f"item exists and is not a directory: {path}")
        self.path = Path(path)


class FileManager:
    """Filesystem primitives used by jobs, the ledger and discovery."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def exists(self, path: PathLike) -> bool:
        return Path(path).exists()

    def make_dir(self, path: PathLike) -> bool:
        """Creates a directory recursively. Existing directories are fine."""
        target = Path(path)
        if target.exists():
            if not target.is_dir():
                raise PathIsNotADirectoryError(target)
            return True
        target.mkdir(parents=True, exist_ok=True)
        return True

    def read_file(self, path: PathLike) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_file(self, path: PathLike, content: str, truncate: bool = True) -> None:
        mode = "w" if truncate else "a"
        with open(path, mode, encoding="utf-8") as f:
            f.write(content)

    def copy_file(self, source: PathLike, target: PathLike) -> None:
        shutil.copy2(source, target)

    def unlink_file(self, path: PathLike) -> None:
        Path(path).unlink()

    def safe_unlink_file(self, path: PathLike) -> bool:
        """Deletes a file, logging instead of raising. Returns True on success."""
        try:
            Path(path).unlink()
            return True
        except OSError as e:
            self.logger.warning(f"UNLINK_FAILED: {path} ({e})")
            return False

    def rename_file(self, source: PathLike, target: PathLike) -> None:
        # os.replace overwrites an existing target on every platform
        os.replace(source, target)

    def safe_rename_file(self, source: PathLike, target: PathLike) -> bool:
        try:
            self.rename_file(source, target)
            return True
        except OSError as e:
            self.logger.warning(f"RENAME_FAILED: {source} -> {target} ({e})")
            return False

    def get_fs_item_from_path(self, path: PathLike, base_path: Optional[PathLike] = None) -> FSItem:
        """Snapshots a file or directory.

        `relative_path` is the item's parent directory relative to `base_path`
        (or "." when no base is given or the item lies outside of it).
        """
        item_path = Path(path).absolute()
        stats = item_path.stat()
        relative_path = self._relative_parent(item_path, base_path)
        if item_path.is_dir():
            return DirectoryDescriptor(
                full_path=item_path,
                name=item_path.name,
                parent_path=item_path.parent,
                relative_path=relative_path,
            )
        return FileDescriptor(
            full_path=item_path,
            name=item_path.name,
            parent_path=item_path.parent,
            relative_path=relative_path,
            size=stats.st_size,
            extension=item_path.suffix.lower(),
        )

    def enumerate_directory(self, path: PathLike, max_depth: int = 0, base_path: Optional[PathLike] = None) -> List[FSItem]:
        """Lists a directory as a tree of descriptors.

        max_depth <= 0 lists one level; a positive value descends that many
        additional levels. Entries are sorted by name.
        """
        directory = Path(path)
        if not directory.exists():
            raise DirectoryDoesNotExistError(directory)
        if not directory.is_dir():
            raise PathIsNotADirectoryError(directory)
        base = Path(base_path) if base_path is not None else directory

        items: List[FSItem] = []
        for child in sorted(directory.iterdir(), key=lambda p: p.name):
            try:
                item = self.get_fs_item_from_path(child, base)
            except OSError as e:
                self.logger.warning(f"ENUMERATE_SKIP: {child} ({e})")
                continue
            if isinstance(item, DirectoryDescriptor) and max_depth > 0:
                files = self.enumerate_directory(child, max_depth - 1, base)
                item = item.model_copy(update={"files": files})
            items.append(item)
        return items

    @staticmethod
    def _relative_parent(item_path: Path, base_path: Optional[PathLike]) -> Path:
        if base_path is None:
            return Path(".")
        try:
            return item_path.parent.relative_to(Path(base_path).absolute())
        except ValueError:
            return Path(".")
