"""Output sinks for user-facing run messages.

Log records go to the log file (see `infrastructure/logging.py`); writers
carry what the user watches: per-job headlines, progress bars and the run
summary.
"""

from pathlib import Path
from typing import Optional, TextIO
from rich.console import Console
from rich.control import Control
from rich.segment import ControlType


class OutputWriter:
    """Base sink. Subclasses override `write`; the rest builds on it."""

    def write(self, message: str) -> None:
        raise NotImplementedError

    def write_line(self, message: str = "") -> None:
        self.write(f"{message}\n")

    def supports_progressive_updates(self) -> bool:
        """True when a carriage return rewrites the current line."""
        return False

    def shutdown(self) -> None:
        pass


class ConsoleOutputWriter(OutputWriter):
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def write(self, message: str) -> None:
        # rich drops bare carriage returns from text, so emit them as control codes
        parts = message.split("\r")
        for index, part in enumerate(parts):
            if index > 0:
                self.console.control(Control(ControlType.CARRIAGE_RETURN))
            if part:
                self.console.out(part, end="", highlight=False)

    def write_line(self, message: str = "") -> None:
        self.console.print(message, highlight=False, markup=False)

    def supports_progressive_updates(self) -> bool:
        return self.console.is_terminal

    def shutdown(self) -> None:
        self.console.file.flush()


class FileOutputWriter(OutputWriter):
    """Appends output to a file; progress bars degrade to nothing."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle: Optional[TextIO] = open(self.path, "a", encoding="utf-8")

    def write(self, message: str) -> None:
        if self._handle is None:
            return
        self._handle.write(message)
        self._handle.flush()

    def shutdown(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class NoopOutputWriter(OutputWriter):
    def write(self, message: str) -> None:
        pass

    def write_line(self, message: str = "") -> None:
        pass
