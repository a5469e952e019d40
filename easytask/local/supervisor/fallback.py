import os
import time
import logging
from typing import TYPE_CHECKING, Optional

from easytask import settings
from easytask.log import setup_logging
from easytask.local.supervisor.report import build_status_report
from easytask.local.supervisor import persistence, process_utils, shutdown
from easytask.local.supervisor.base import Supervisor
from easytask.local.supervisor.worker import WorkerLoop

if TYPE_CHECKING:
    from easytask.local.registry import TaskRegistry
    from easytask.local.runtime import RuntimeConfig

log = logging.getLogger(__name__)


class FallbackSupervisor(Supervisor):
    """
    Supervisor for hosts without fork or asynchronous signals.

    Each replica is a fresh process running the same program in worker sub-mode.
    A graceful stop is requested through the shutdown signal file, which the master
    and every worker poll; a forced stop kills the recorded processes outright.
    """

    def start(self) -> None:
        if self.check_if_already_running():
            return

        self.begin_master()
        self.setup_master_logging()
        if self.config.daemon:
            log.warning("Daemon mode is not available on this platform. Running in the foreground.")
        log.info("=" * 20 + f" {self.config.prefix} Starting " + "=" * 20)

        for task in self.registry:
            for replica in range(task.replicas):
                try:
                    p = process_utils.launch_worker_process(self.config, task, replica)
                except OSError as e:
                    log.error(f"Failed to start worker {task.alias}#{replica}: {e}")
                    continue
                self.record_worker(task, replica, p.pid, process=p)

        if not self.handles:
            log.critical("No worker process could be started.")
            self.finish()
            return

        self.write_record()
        try:
            self._supervise()
        except KeyboardInterrupt:
            log.info("Interrupted by user, stopping.")
            persistence.request_shutdown(self.config)
        finally:
            self._shutdown_workers()
            self.finish()

    def _supervise(self) -> None:
        """Polls worker exits until the shutdown signal file appears."""
        while not persistence.check_for_shutdown_signal(self.config):
            for handle in self.handles.values():
                if handle.exit_code is None:
                    code = handle.process.poll()
                    if code is not None:
                        self.on_worker_exit(handle.pid, code)
            time.sleep(settings.SUPERVISOR_SLEEP_INTERVAL)

    def _shutdown_workers(self) -> None:
        procs = self.live_worker_processes()
        if procs:
            log.info(f"Waiting for {len(procs)} workers to finish their current iteration...")
            shutdown.graceful_shutdown_sequence(procs, self.config.grace_timeout, send_terminate=False)
        for handle in self.handles.values():
            handle.process.poll()

    def status(self) -> str:
        record = persistence.require_running(self.config)
        report = build_status_report(record)
        print(report)
        return report

    def stop(self, force: bool = False) -> None:
        record = persistence.require_running(self.config)
        if force:
            self.kill_recorded(record)
            log.info(f"'{self.config.prefix}' force stopped.")
            return

        persistence.request_shutdown(self.config)
        procs = shutdown.collect_processes(persistence.verified_pids(record))
        alive = shutdown.wait_for_exit(procs, self.config.grace_timeout + settings.STOP_WAIT_MARGIN)
        if alive:
            log.warning(f"{len(alive)} processes did not stop within the grace period.")
            shutdown.forceful_kill(alive)
            shutdown.wait_for_exit(alive, 2)
        persistence.cleanup_control_files(self.config)
        log.info(f"'{self.config.prefix}' stopped.")


def worker_sub_mode() -> Optional[dict]:
    """Returns the worker assignment passed by a fallback master, if any."""
    key = os.environ.get(settings.WORKER_KEY_ENV)
    if not key:
        return None
    return {
        "key": key,
        "ordinal": int(os.environ.get(settings.WORKER_ORDINAL_ENV, "-1")),
        "replica": int(os.environ.get(settings.WORKER_REPLICA_ENV, "0")),
        "master": int(os.environ.get(settings.WORKER_MASTER_ENV, "0")),
    }


def run_spawned_worker(registry: "TaskRegistry", config: "RuntimeConfig", assignment: dict) -> int:
    """
    Runs the worker loop in a process started by FallbackSupervisor.

    :return: The process exit status.
    """
    task = registry.find(assignment["key"], assignment["ordinal"])
    level = logging.DEBUG if config.verbose else logging.INFO
    alias = task.alias if task else assignment["key"]
    setup_logging(level, log_file=persistence.log_file_path(config),
                  labels={"prefix": config.prefix, "task": alias})
    if task is None:
        log.error(f"Worker could not find task {assignment['key']} in the registry.")
        return 1

    replica = assignment["replica"]
    process_utils.set_process_title(process_utils.worker_title(config.prefix, task.alias, replica))
    master_pid = assignment["master"]

    def should_stop() -> bool:
        if master_pid and not process_utils.pid_exists(master_pid):
            log.warning(f"Master PID {master_pid} is gone.")
            return True
        return persistence.check_for_shutdown_signal(config)

    return WorkerLoop(task, replica, stop_check=should_stop).run()
