import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Pattern
from vconv.config.models import AppConfig
from vconv.domain.models import DirectoryDescriptor, FileDescriptor, FSItem, JobTask
from vconv.domain.paths import has_temp_token
from vconv.jobs.factory import AnyJobOptions, make_job_options

logger = logging.getLogger(__name__)


def _compile(pattern: Optional[str]) -> Optional[Pattern]:
    return re.compile(pattern, re.IGNORECASE) if pattern else None


def file_matches(item: FileDescriptor, extensions: List[str], name_regex: Optional[Pattern]) -> bool:
    """A name regex, when given, replaces the extension filter."""
    if name_regex is not None:
        return bool(name_regex.search(item.name))
    return item.extension in extensions


def get_all_jobs(task: JobTask, items: Iterable[FSItem], config: AppConfig, excluded_dirs: Iterable[Path] = ()) -> List[AnyJobOptions]:
    """Walks an enumerated tree and builds job options in traversal order.

    Files matching the selection become `task` jobs. Otherwise, unless
    converting in place, files matching the copy selection become copy jobs.
    Leftover temp-token files and `excluded_dirs` (output and metadata
    directories living under the source) are ignored.
    """
    selection = config.selection
    name_regex = _compile(selection.file_name_regex)
    copy_regex = _compile(selection.copy_file_regex)
    allow_copy = not config.output.save_in_place
    excluded = {Path(d).resolve() for d in excluded_dirs}

    jobs: List[AnyJobOptions] = []

    def _walk(entries: Iterable[FSItem]):
        for item in entries:
            if isinstance(item, DirectoryDescriptor):
                if Path(item.full_path).resolve() in excluded:
                    logger.info(f"DISCOVERY_SKIP_DIR: {item.full_path}")
                    continue
                _walk(item.files)
                continue
            if has_temp_token(item.full_path):
                logger.info(f"DISCOVERY_SKIP_TEMP: {item.full_path}")
                continue
            if file_matches(item, selection.allowed_extensions, name_regex):
                jobs.append(make_job_options(task, item, config))
            elif allow_copy and (selection.copy_extensions or copy_regex is not None) \
                    and file_matches(item, selection.copy_extensions, copy_regex):
                logger.info(f"DISCOVERY_COPY: {item.full_path}")
                jobs.append(make_job_options(JobTask.COPY, item, config))
            else:
                logger.debug(f"DISCOVERY_IGNORED: {item.full_path}")

    _walk(items)
    return jobs
