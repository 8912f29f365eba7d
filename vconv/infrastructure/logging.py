import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

def setup_logging(metadata_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for vconv.

    Creates the metadata directory and a timestamped `<YYYYmmddHHMMSS>-vconv.log`
    file inside it. Returns configured logger instance.

    Args:
        metadata_dir: Directory holding the run's job file and logs
        debug: If True, enable DEBUG level logging (command lines, progress parsing)
        log_path: Optional path to log file (overrides metadata_dir)
    """
    metadata_dir = Path(metadata_dir)
    metadata_dir.mkdir(parents=True, exist_ok=True)

    if log_path:
        log_file = Path(log_path)
    else:
        log_file = metadata_dir / f"{datetime.now().strftime('%Y%m%d%H%M%S')}-vconv.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=[logging.FileHandler(log_file)],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
