import os
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from easytask.log import setup_logging
from easytask.local.supervisor.report import build_status_report, format_uptime
from easytask.local.supervisor import persistence, process_utils, shutdown

if TYPE_CHECKING:
    from easytask.local.registry import TaskDescriptor, TaskRegistry
    from easytask.local.runtime import RuntimeConfig

log = logging.getLogger(__name__)


@dataclass
class WorkerHandle:
    """A spawned worker as tracked by the master."""
    pid: int
    key: str
    alias: str
    replica: int
    process: Any = None
    exit_code: Optional[int] = None
    created: Optional[float] = None


class Supervisor(ABC):
    """
    Turns a registry into running worker processes and mediates status and stop.
    start() runs in the master; status() and stop() may run in any later process.
    """

    def __init__(self, registry: "TaskRegistry", config: "RuntimeConfig") -> None:
        self.registry = registry
        self.config = config
        self.handles: Dict[int, WorkerHandle] = {}
        self.master_pid: Optional[int] = None
        self.started_at: Optional[float] = None
        self.master_created: Optional[float] = None

    @abstractmethod
    def start(self) -> None:
        """Spawns every worker replica and supervises them until stopped."""

    @abstractmethod
    def status(self) -> str:
        """Prints and returns the liveness report of a running supervisor."""

    @abstractmethod
    def stop(self, force: bool = False) -> None:
        """Stops a running supervisor and all of its workers."""

    #* --- Master helpers ---
    def check_if_already_running(self) -> bool:
        """
        Checks if a supervisor with the same prefix is alive.
        A stale record is removed.
        """
        record = persistence.read_control_record(self.config)
        if record is None:
            return False
        if persistence.master_is_alive(record):
            log.error(f"'{self.config.prefix}' is already running (master PID {record['master']}). Use 'stop' first.")
            return True
        persistence.cleanup_control_files(self.config)
        return False

    def setup_master_logging(self) -> None:
        level = logging.DEBUG if self.config.verbose else logging.INFO
        setup_logging(level, log_file=persistence.log_file_path(self.config), labels={"prefix": self.config.prefix})

    def begin_master(self) -> None:
        """Records the master's identity and clears leftovers from a previous run."""
        self.master_pid = os.getpid()
        self.master_created = process_utils.get_create_time(self.master_pid)
        self.started_at = time.time()
        persistence.shutdown_signal_path(self.config).unlink(missing_ok=True)
        persistence.status_report_path(self.config).unlink(missing_ok=True)
        process_utils.set_process_title(process_utils.master_title(self.config.prefix))

    def record_worker(self, task: "TaskDescriptor", replica: int, pid: int, process: Any = None) -> None:
        self.handles[pid] = WorkerHandle(
            pid=pid, key=task.key, alias=task.alias, replica=replica, process=process,
            created=process_utils.get_create_time(pid),
        )

    def control_record(self) -> Dict[str, Any]:
        return persistence.build_control_record(
            self.config, self.master_pid, self.started_at, self.registry, self.handles.values(),
            master_created=self.master_created,
        )

    def write_record(self) -> None:
        persistence.write_control_record(self.config, self.control_record())
        log.info(f"Supervising {len(self.handles)} workers for {len(self.registry)} tasks (master PID {self.master_pid}).")

    def on_worker_exit(self, pid: int, exit_code: int) -> None:
        """Logs a worker exit. Workers are not restarted."""
        handle = self.handles.get(pid)
        if handle is None:
            log.debug(f"Reaped unknown child PID {pid} (exit code {exit_code}).")
            return
        handle.exit_code = exit_code
        remaining = sum(1 for h in self.handles.values() if h.key == handle.key and h.exit_code is None)
        log.warning(
            f"Worker {handle.alias}#{handle.replica} (PID {pid}) exited with code {exit_code}. "
            f"{remaining} replicas of '{handle.alias}' remain."
        )

    def live_worker_processes(self):
        return shutdown.collect_processes(pid for pid, h in self.handles.items() if h.exit_code is None)

    def report(self) -> str:
        return build_status_report(self.control_record())

    def finish(self) -> None:
        persistence.cleanup_control_files(self.config)
        if self.started_at:
            log.info(f"Stop sequence completed. Total runtime: {format_uptime(time.time() - self.started_at)}")

    #* --- Caller helpers ---
    def kill_recorded(self, record: Dict[str, Any]) -> None:
        """Hard-kills the master and every worker named in a record, skipping reused PIDs."""
        procs = shutdown.collect_processes(persistence.verified_pids(record))
        log.warning(f"Force stopping {len(procs)} processes.")
        shutdown.forceful_kill(procs)
        shutdown.wait_for_exit(procs, 2)
        persistence.cleanup_control_files(self.config)
