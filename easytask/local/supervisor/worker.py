import time
import signal
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from easytask import settings

if TYPE_CHECKING:
    from easytask.local.registry import TaskDescriptor

log = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    TERMINATING = "terminating"
    EXITED = "exited"


class WorkerTerminated(BaseException):
    """Raised from the termination handler to abandon a sleep."""


class WorkerLoop:
    """
    The periodic loop run inside one worker process.

    Invocations start one interval apart; one that overruns the interval is
    followed immediately by the next, with no catch-up burst. Failures of
    the task are logged and never end the loop; only a termination request does.
    A termination request that arrives mid-invocation lets the invocation finish.
    """

    def __init__(
        self,
        task: "TaskDescriptor",
        replica: int,
        stop_check: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = settings.WORKER_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        :param task: The descriptor this worker executes.
        :param replica: The replica index, used for logging.
        :param stop_check: Polled between sleep slices when signals are not available.
        :param sleep: The sleep function; replaced in tests.
        :param poll_interval: Length of a sleep slice when stop_check is set.
        :param clock: Monotonic clock used to measure invocation time.
        """
        self.task = task
        self.replica = replica
        self.stop_check = stop_check
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.clock = clock
        self.state = WorkerState.IDLE
        self.iterations = 0
        self.failures = 0
        self._terminate_requested = False

    @property
    def name(self) -> str:
        return f"{self.task.alias}#{self.replica}"

    def install_signal_handlers(self) -> None:
        """Reacts to SIGTERM; SIGINT and status queries are left to the master."""
        signal.signal(signal.SIGTERM, self._handle_terminate)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, signal.SIG_IGN)
        if hasattr(signal, "SIGCHLD"):
            signal.signal(signal.SIGCHLD, signal.SIG_DFL)

    def _handle_terminate(self, signum, frame) -> None:
        log.debug(f"Worker {self.name} received signal {signum}.")
        self.request_stop()
        if self.state in (WorkerState.IDLE, WorkerState.SLEEPING):
            raise WorkerTerminated()

    def request_stop(self) -> None:
        self._terminate_requested = True

    def should_stop(self) -> bool:
        if self._terminate_requested:
            return True
        if self.stop_check is not None and self.stop_check():
            self._terminate_requested = True
        return self._terminate_requested

    def run_once(self) -> None:
        """Invokes the task once, containing any failure to this iteration."""
        self.state = WorkerState.RUNNING
        try:
            self.task.target()
        except Exception as e:
            self.failures += 1
            log.error(f"Task '{self.name}' failed on iteration {self.iterations + 1}: {e}", exc_info=True)
        finally:
            self.iterations += 1

    def _wait_interval(self, started: float) -> None:
        """Sleeps until one interval after the invocation started; an overrun skips the sleep."""
        self.state = WorkerState.SLEEPING
        remaining = self.task.interval - (self.clock() - started)
        if remaining <= 0:
            return
        if self.stop_check is None:
            self.sleep(remaining)
            return

        while remaining > 0 and not self.should_stop():
            chunk = min(self.poll_interval, remaining)
            self.sleep(chunk)
            remaining -= chunk

    def run(self) -> int:
        """
        Runs until a termination request arrives.

        :return: The process exit status.
        """
        try:
            log.info(f"Worker {self.name} started (interval {self.task.interval}s).")
            while not self.should_stop():
                started = self.clock()
                self.run_once()
                if self.should_stop():
                    break
                self._wait_interval(started)
        except WorkerTerminated:
            pass

        self.state = WorkerState.TERMINATING
        log.info(f"Worker {self.name} stopping after {self.iterations} iterations ({self.failures} failed).")
        self.state = WorkerState.EXITED
        return 0
