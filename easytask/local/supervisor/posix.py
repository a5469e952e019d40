import os
import time
import signal
import logging
from typing import TYPE_CHECKING

from easytask import settings
from easytask.errors import NotRunning
from easytask.log import setup_logging
from easytask.local.supervisor.report import build_status_report
from easytask.local.supervisor import persistence, process_utils, shutdown
from easytask.local.supervisor.base import Supervisor
from easytask.local.supervisor.worker import WorkerLoop

if TYPE_CHECKING:
    from easytask.local.registry import TaskDescriptor

log = logging.getLogger(__name__)


class ShutdownRequested(Exception):
    """Raised in the master to leave the supervising loop."""


class PosixSupervisor(Supervisor):
    """
    Fork/signal supervisor.

    The master forks one child per replica and then blocks reaping child exits.
    SIGTERM and SIGINT start a graceful shutdown; SIGUSR1 writes a status report.
    Without asynchronous signals the master polls the shutdown signal file instead.
    """

    def __init__(self, registry, config) -> None:
        super().__init__(registry, config)
        self._stopping = False
        self._previous_handlers = {}

    #* --- Master side ---
    def start(self) -> None:
        if self.check_if_already_running():
            return

        if self.config.daemon:
            process_utils.daemonize(self.config)

        self.begin_master()
        self.setup_master_logging()
        log.info("=" * 20 + f" {self.config.prefix} Starting " + "=" * 20)

        for task in self.registry:
            for replica in range(task.replicas):
                self._spawn_worker(task, replica)

        if not self.handles:
            log.critical("No worker process could be started.")
            self.finish()
            return

        if not self.config.can_async:
            log.warning("Asynchronous signals unavailable: supervising by polling the shutdown signal file.")

        try:
            self._install_signal_handlers()
            self.write_record()
            self._supervise()
        except ShutdownRequested:
            pass
        finally:
            self._shutdown_workers()
            self.finish()
            self._restore_signal_handlers()

    def _spawn_worker(self, task: "TaskDescriptor", replica: int) -> None:
        title = process_utils.worker_title(self.config.prefix, task.alias, replica)
        try:
            pid = os.fork()
        except OSError as e:
            log.error(f"Failed to fork worker {title}: {e}")
            return

        if pid == 0:
            self._run_worker_child(task, replica, title)

        self.record_worker(task, replica, pid)
        log.info(f"Worker {title} started with PID: {pid}")

    def _run_worker_child(self, task: "TaskDescriptor", replica: int, title: str) -> None:
        """Runs in the forked child and never returns."""
        exit_code = 1
        try:
            process_utils.set_process_title(title)
            level = logging.DEBUG if self.config.verbose else logging.INFO
            setup_logging(level, log_file=persistence.log_file_path(self.config),
                          labels={"prefix": self.config.prefix, "task": task.alias})

            stop_check = None if self.config.can_async else self._worker_should_stop
            loop = WorkerLoop(task, replica, stop_check=stop_check)
            if self.config.can_async:
                loop.install_signal_handlers()
            exit_code = loop.run()
        except Exception as e:
            log.critical(f"Worker {title} crashed: {e}", exc_info=True)
        finally:
            logging.shutdown()
            os._exit(exit_code)

    def _worker_should_stop(self) -> bool:
        return os.getppid() != self.master_pid or persistence.check_for_shutdown_signal(self.config)

    def _install_signal_handlers(self) -> None:
        handlers = {signal.SIGINT: self._handle_stop_signal}
        if self.config.can_async:
            handlers[signal.SIGTERM] = self._handle_stop_signal
            handlers[signal.SIGUSR1] = self._handle_status_signal
        for signum, handler in handlers.items():
            self._previous_handlers[signum] = signal.signal(signum, handler)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def _handle_stop_signal(self, signum, frame) -> None:
        if self._stopping:
            return
        log.info(f"Signal {signum} received, stopping.")
        self._stopping = True
        raise ShutdownRequested()

    def _handle_status_signal(self, signum, frame) -> None:
        report = self.report()
        persistence.write_status_report(self.config, report)
        log.info("Status requested:\n" + report)

    def _supervise(self) -> None:
        """Reaps worker exits until a shutdown is requested."""
        while True:
            if self.config.can_async:
                self._reap(blocking=True)
            else:
                if persistence.check_for_shutdown_signal(self.config):
                    self._stopping = True
                    return
                self._reap(blocking=False)
                time.sleep(settings.SUPERVISOR_SLEEP_INTERVAL)

    def _reap(self, blocking: bool) -> None:
        try:
            pid, status = os.waitpid(-1, 0 if blocking else os.WNOHANG)
        except ChildProcessError:
            # Every worker is gone; wait for stop.
            time.sleep(settings.SUPERVISOR_SLEEP_INTERVAL)
            return
        if pid == 0:
            return
        self.on_worker_exit(pid, os.waitstatus_to_exitcode(status))

    def _shutdown_workers(self) -> None:
        self._stopping = True
        procs = self.live_worker_processes()
        if not procs:
            return
        log.info(f"Initiating graceful shutdown for {len(procs)} workers...")
        if self.config.can_async:
            shutdown.graceful_shutdown_sequence(procs, self.config.grace_timeout)
        else:
            # Workers without signal handlers stop on the shutdown file.
            persistence.request_shutdown(self.config)
            shutdown.graceful_shutdown_sequence(procs, self.config.grace_timeout, send_terminate=False)

    #* --- Caller side ---
    def _signal_master(self, record, signum: int) -> None:
        """
        Signals the recorded master.

        :raises NotRunning: If the master exited after its record was checked.
        """
        try:
            os.kill(record["master"], signum)
        except ProcessLookupError:
            persistence.cleanup_control_files(self.config)
            raise NotRunning(f"Supervisor for prefix '{self.config.prefix}' exited before it could be signalled.")

    def status(self) -> str:
        record = persistence.require_running(self.config)
        report = None
        if self.config.can_async:
            persistence.status_report_path(self.config).unlink(missing_ok=True)
            self._signal_master(record, signal.SIGUSR1)
            report = persistence.wait_for_status_report(self.config, settings.STATUS_REPLY_TIMEOUT)

        if report is None:
            report = build_status_report(record) + "\n(Report built from the control record; the master did not answer.)"
        print(report)
        return report

    def stop(self, force: bool = False) -> None:
        record = persistence.require_running(self.config)
        if force:
            self.kill_recorded(record)
            log.info(f"'{self.config.prefix}' force stopped.")
            return

        if self.config.can_async:
            self._signal_master(record, signal.SIGTERM)
        else:
            persistence.request_shutdown(self.config)

        master = shutdown.collect_processes([record["master"]])
        alive = shutdown.wait_for_exit(master, self.config.grace_timeout + settings.STOP_WAIT_MARGIN)
        if alive:
            log.warning("Master did not stop within the grace period.")
            self.kill_recorded(record)
            return

        # Workers that escaped the master's shutdown sequence.
        leftovers = shutdown.collect_processes(persistence.verified_pids(record))
        if leftovers:
            shutdown.forceful_kill(leftovers)
        persistence.cleanup_control_files(self.config)
        log.info(f"'{self.config.prefix}' stopped.")
