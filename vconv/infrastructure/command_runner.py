import logging
import queue
import subprocess
import threading
import time
import uuid
from typing import IO, List, Optional, Tuple
from vconv.domain.events import (
    CommandErrored,
    CommandEvent,
    CommandFinished,
    CommandMessageReceived,
    CommandRunning,
    CommandStarted,
    CommandTimedOut,
)
from vconv.domain.models import CommandInvocationResult, CommandState
from vconv.infrastructure.event_bus import EventBus


def make_command_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


class _CommandLifecycle:
    """State of one invocation.

    The first terminal transition wins; later ones and any message arriving
    after it are dropped, so subscribers see exactly one terminal event.
    """

    def __init__(self, event_bus: EventBus, command_id: str, job_id: str, command: str):
        self.event_bus = event_bus
        self.command_id = command_id
        self.job_id = job_id
        self.command = command
        self.state = CommandState.PENDING
        self._resolved = False
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def resolved(self) -> bool:
        return self._resolved

    def started(self, args: List[str]):
        self.state = CommandState.STARTED
        self._publish(CommandStarted(args=args, **self.ids()))

    def running(self, pid: Optional[int]):
        if self._resolved:
            return
        self.state = CommandState.RUNNING
        self._publish(CommandRunning(pid=pid, **self.ids()))

    def message(self, stream: str, line: str):
        if self._resolved:
            return
        self._publish(CommandMessageReceived(stream=stream, message=line, **self.ids()))

    def resolve(self, state: CommandState, event: CommandEvent) -> bool:
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
            self.state = state
        self._publish(event)
        return True

    def ids(self) -> dict:
        return {"command_id": self.command_id, "job_id": self.job_id, "command": self.command}

    def _publish(self, event: CommandEvent):
        try:
            self.event_bus.publish(event)
        except Exception as e:
            self.logger.warning(f"EVENT_HANDLER_FAILED: {type(event).__name__} for {self.command_id}: {e}")


class ProcessCommandRunner:
    """Supervises external commands.

    `run` blocks until the process exits, fails to start, or exceeds its
    timeout. It never raises for process failures; the outcome is described by
    the returned CommandInvocationResult.
    """

    POLL_INTERVAL_S = 0.1

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    def run(self, command: str, args: List[str], command_id: str, timeout_ms: int = 0, job_id: str = "") -> CommandInvocationResult:
        lifecycle = _CommandLifecycle(self.event_bus, command_id, job_id, command)
        cmd = [command, *args]
        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        self.logger.debug(f"COMMAND_START: {command_id} {' '.join(cmd)}")
        start = time.monotonic()
        lifecycle.started(list(args))

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,  # ffmpeg's \r progress updates become separate lines
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as e:
            elapsed_ms = self._elapsed_ms(start)
            self.logger.error(f"COMMAND_ERROR: {command_id} could not start {command}: {e}")
            lifecycle.resolve(CommandState.ERROR, CommandErrored(error=str(e), elapsed_ms=elapsed_ms, **lifecycle.ids()))
            return CommandInvocationResult(
                command_id=command_id,
                state=CommandState.ERROR,
                success=False,
                elapsed_ms=elapsed_ms,
                error=str(e),
            )

        lifecycle.running(process.pid)

        output_queue: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()
        readers = [
            self._start_reader(process.stdout, "stdout", output_queue),
            self._start_reader(process.stderr, "stderr", output_queue),
        ]
        open_streams = len(readers)
        deadline = start + timeout_ms / 1000.0 if timeout_ms > 0 else None
        timed_out = False

        try:
            while open_streams > 0:
                if deadline is not None and time.monotonic() > deadline:
                    timed_out = True
                    break
                try:
                    stream, line = output_queue.get(timeout=self.POLL_INTERVAL_S)
                except queue.Empty:
                    continue
                if line is None:
                    open_streams -= 1
                    continue
                line = line.rstrip("\r\n")
                if stream == "stdout":
                    stdout_lines.append(line)
                else:
                    stderr_lines.append(line)
                lifecycle.message(stream, line)

            if not timed_out:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    process.wait(timeout=remaining)
                except subprocess.TimeoutExpired:
                    timed_out = True
        except KeyboardInterrupt:
            self.logger.info(f"COMMAND_INTERRUPTED: {command_id}")
            self._kill(process)
            raise

        elapsed_ms = self._elapsed_ms(start)

        if timed_out:
            self._kill(process)
            self.logger.warning(f"COMMAND_TIMEOUT: {command_id} exceeded {timeout_ms}ms, process killed")
            lifecycle.resolve(
                CommandState.TIMEOUT,
                CommandTimedOut(timeout_ms=timeout_ms, elapsed_ms=elapsed_ms, **lifecycle.ids()),
            )
            return CommandInvocationResult(
                command_id=command_id,
                state=CommandState.TIMEOUT,
                success=False,
                exit_code=process.returncode,
                elapsed_ms=elapsed_ms,
                stdout=stdout_lines,
                stderr=stderr_lines,
                error=f"{command} timed out after {timeout_ms}ms",
            )

        exit_code = process.returncode
        success = exit_code == 0
        self.logger.debug(f"COMMAND_END: {command_id} exit_code={exit_code} elapsed={elapsed_ms}ms")
        lifecycle.resolve(
            CommandState.FINISHED,
            CommandFinished(exit_code=exit_code, success=success, elapsed_ms=elapsed_ms, **lifecycle.ids()),
        )
        return CommandInvocationResult(
            command_id=command_id,
            state=CommandState.FINISHED,
            success=success,
            exit_code=exit_code,
            elapsed_ms=elapsed_ms,
            stdout=stdout_lines,
            stderr=stderr_lines,
            error=None if success else f"{command} exited with code {exit_code}",
        )

    @staticmethod
    def _start_reader(pipe: Optional[IO[str]], name: str, output_queue: "queue.Queue") -> threading.Thread:
        def _reader():
            try:
                if pipe is not None:
                    for line in pipe:
                        output_queue.put((name, line))
            except (OSError, ValueError):
                # Pipe closed underneath us after a kill
                pass
            finally:
                output_queue.put((name, None))

        thread = threading.Thread(target=_reader, daemon=True)
        thread.start()
        return thread

    def _kill(self, process: subprocess.Popen):
        try:
            process.kill()
            process.wait(timeout=3)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"COMMAND_KILL_FAILED: pid={getattr(process, 'pid', None)} ({e})")

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int(round((time.monotonic() - start) * 1000))
