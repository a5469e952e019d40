import time
import psutil
import logging
from typing import Iterable, List

log = logging.getLogger(__name__)


def collect_processes(pids: Iterable[int]) -> List[psutil.Process]:
    """Turns PIDs into psutil handles, skipping those that no longer exist."""
    procs = []
    for pid in pids:
        try:
            procs.append(psutil.Process(pid))
        except psutil.NoSuchProcess:
            log.debug(f"Process {pid} no longer exists, skipping.")
    return procs


def _terminate_processes(processes: Iterable[psutil.Process]) -> None:
    """Sends SIGTERM (or the platform equivalent) to every process."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to PID {proc.pid}")
            proc.terminate()
        except psutil.NoSuchProcess:
            log.warning(f"Process {proc.pid} no longer exists, skipping termination.")
            continue


def forceful_kill(processes: Iterable[psutil.Process]) -> None:
    """Sends SIGKILL to every process."""
    processes = list(processes)
    if not processes:
        return

    for proc in processes:
        try:
            log.warning(f"Killing process PID {proc.pid}.")
            proc.kill()
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping forceful kill.")
            continue


def wait_for_exit(processes: Iterable[psutil.Process], timeout: float) -> List[psutil.Process]:
    """
    Waits for processes to exit.

    :return: The processes still alive after the timeout.
    """
    pending = list(processes)
    deadline = time.monotonic() + timeout
    while pending:
        # Reaps our own children; zombies of other parents count as gone.
        _, pending = psutil.wait_procs(pending, timeout=0.1)
        pending = [p for p in pending if _still_running(p)]
        if time.monotonic() >= deadline:
            break
    return pending


def _still_running(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def graceful_shutdown_sequence(processes: Iterable[psutil.Process], timeout: float, send_terminate: bool = True) -> None:
    """
    Terminates processes, waits for them and kills any that outlive the timeout.

    :param processes: The processes to shut down.
    :param timeout: Seconds to wait before force-killing.
    :param send_terminate: False when the processes were already asked to stop some other way.
    """
    procs_list = list(processes)
    if send_terminate:
        _terminate_processes(procs_list)

    alive = wait_for_exit(procs_list, timeout)
    if alive:
        log.warning(f"{len(alive)} processes did not terminate gracefully. Forcing shutdown...")
        forceful_kill(alive)
        wait_for_exit(alive, 1)
