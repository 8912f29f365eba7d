"""Domain events for external command supervision.

Events flow through the EventBus so that progress rendering and logging stay
decoupled from the process runner. Every invocation publishes `CommandStarted`,
then `CommandRunning` once the OS accepted the process, any number of
`CommandMessageReceived`, and finally exactly one terminal event.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class CommandEvent(Event):
    """Base class for events tied to one command invocation."""

    command_id: str
    job_id: str = ""
    command: str = ""


class CommandStarted(CommandEvent):
    """Emitted when spawning the process is requested."""

    args: List[str] = Field(default_factory=list)


class CommandRunning(CommandEvent):
    """Emitted once the OS confirmed the process started."""

    pid: Optional[int] = None


class CommandMessageReceived(CommandEvent):
    """One line of output; ffmpeg reports progress on stderr."""

    stream: Literal["stdout", "stderr"] = "stderr"
    message: str


class CommandFinished(CommandEvent):
    """Terminal: the process exited on its own."""

    exit_code: Optional[int] = None
    success: bool = False
    elapsed_ms: int = 0


class CommandErrored(CommandEvent):
    """Terminal: the process could not be spawned or supervised."""

    error: str
    elapsed_ms: int = 0


class CommandTimedOut(CommandEvent):
    """Terminal: the process outlived its timeout and was killed."""

    timeout_ms: int
    elapsed_ms: int = 0


TERMINAL_EVENTS = (CommandFinished, CommandErrored, CommandTimedOut)
