"""Progress rendering for ffmpeg conversions.

One renderer is chosen per conversion, before it starts, and subscribed to
CommandMessageReceived for that conversion's command id only:

* no-op when the output sink cannot rewrite a line,
* duration based when the source duration is known (`time=hh:mm:ss.ff`),
* frame based when the source frame count is known (`frame=N`),
* naive otherwise (a dot every Nth message).
"""

import logging
import math
import re
from typing import Optional
from vconv.domain.events import CommandMessageReceived
from vconv.output.writers import OutputWriter
from vconv.utils.pretty import hhmmss_to_seconds

FRAME_REGEX = re.compile(r"frame=\s*(?P<framenumber>\d+)", re.IGNORECASE)
TIME_REGEX = re.compile(r"time=\s*(?P<duration>\d{2,}:\d{2}:\d{2}\.?\d*)", re.IGNORECASE)

PROGRESS_BAR_WIDTH = 20
PROGRESS_LINE_WIDTH = 40
NAIVE_MARKER_EVERY = 10

logger = logging.getLogger(__name__)


def percent_done(current: float, total: float) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, math.floor(current / total * 100)))


def make_progress_line(current: float, total: float) -> str:
    """`|=====>              | %25` padded to a fixed width."""
    pct = percent_done(current, total)
    arrow = f"{'=' * (pct // 5)}>".ljust(PROGRESS_BAR_WIDTH)
    return f"|{arrow}| %{pct}".ljust(PROGRESS_LINE_WIDTH)


class ProgressRenderer:
    """Consumes one command's output lines and renders progress."""

    def __init__(self, output_writer: OutputWriter, command_id: str):
        self.output_writer = output_writer
        self.command_id = command_id
        self.rendered = 0

    def __call__(self, event: CommandMessageReceived) -> None:
        if event.command_id != self.command_id or event.stream != "stderr":
            return
        rendered = self.on_message(event.message)
        if rendered is not None:
            self.output_writer.write(rendered)
            self.rendered += 1

    def on_message(self, line: str) -> Optional[str]:
        """Returns the text to write for `line`, or None to skip it."""
        return None

    def finish(self) -> None:
        # Move past the progress line so the next output starts cleanly
        if self.rendered:
            self.output_writer.write_line("")


class NoopProgressRenderer(ProgressRenderer):
    pass


class NaiveProgressRenderer(ProgressRenderer):
    def __init__(self, output_writer: OutputWriter, command_id: str, every: int = NAIVE_MARKER_EVERY):
        super().__init__(output_writer, command_id)
        self.every = every
        self.message_count = 0

    def on_message(self, line: str) -> Optional[str]:
        marker = "." if self.message_count % self.every == 0 else None
        self.message_count += 1
        return marker


class FrameProgressRenderer(ProgressRenderer):
    def __init__(self, output_writer: OutputWriter, command_id: str, total_frames: int):
        super().__init__(output_writer, command_id)
        self.total_frames = total_frames

    def on_message(self, line: str) -> Optional[str]:
        match = FRAME_REGEX.search(line)
        if not match:
            return None
        current = int(match.group("framenumber"))
        return f"{make_progress_line(current, self.total_frames)}\r"


class DurationProgressRenderer(ProgressRenderer):
    def __init__(self, output_writer: OutputWriter, command_id: str, total_seconds: float):
        super().__init__(output_writer, command_id)
        self.total_seconds = total_seconds

    def on_message(self, line: str) -> Optional[str]:
        match = TIME_REGEX.search(line)
        if not match:
            return None
        current = hhmmss_to_seconds(match.group("duration"))
        return f"{make_progress_line(current, self.total_seconds)}\r"


def select_progress_renderer(
    output_writer: OutputWriter,
    command_id: str,
    total_seconds: float = -1,
    total_frames: int = -1,
) -> ProgressRenderer:
    if not output_writer.supports_progressive_updates():
        logger.debug(f"PROGRESS_MODE: noop for {command_id} (sink cannot rewrite lines)")
        return NoopProgressRenderer(output_writer, command_id)
    if total_seconds > 0:
        logger.debug(f"PROGRESS_MODE: duration for {command_id} (total={total_seconds}s)")
        return DurationProgressRenderer(output_writer, command_id, total_seconds)
    if total_frames > 0:
        logger.debug(f"PROGRESS_MODE: frames for {command_id} (total={total_frames})")
        return FrameProgressRenderer(output_writer, command_id, total_frames)
    logger.debug(f"PROGRESS_MODE: naive for {command_id}")
    return NaiveProgressRenderer(output_writer, command_id)
