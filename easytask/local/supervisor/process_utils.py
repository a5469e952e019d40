import os
import sys
import psutil
import logging
import subprocess
import setproctitle
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from easytask import settings

if TYPE_CHECKING:
    from easytask.local.registry import TaskDescriptor
    from easytask.local.runtime import RuntimeConfig

log = logging.getLogger(__name__)

CREATE_TIME_TOLERANCE = 0.01  # seconds


#* --- Process Status ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking if needed."""
    return psutil.pid_exists(pid)

def get_create_time(pid: int) -> Optional[float]:
    """The start time psutil reports for a PID, or None if it cannot be read."""
    try:
        return psutil.Process(pid).create_time()
    except psutil.Error:
        return None

def is_alive(pid: int, created: Optional[float] = None) -> bool:
    """
    True if the PID exists and is not a zombie.
    When created is given, the process must also have that start time,
    so a PID the OS has since reused counts as dead.
    """
    try:
        proc = psutil.Process(pid)
        if created is not None and abs(proc.create_time() - created) > CREATE_TIME_TOLERANCE:
            return False
        return proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True

def get_proc_status_string(pid: int) -> str:
    """Gets a string representation of a process status."""
    try:
        status = psutil.Process(pid).status()
        if status == psutil.STATUS_ZOMBIE:
            return "zombie"
        return status
    except psutil.NoSuchProcess:
        return "stopped"
    except psutil.Error:
        return "unknown"


#* --- Process titles ---
def worker_title(prefix: str, alias: str, replica: int) -> str:
    return f"{prefix}:{alias}#{replica}"

def master_title(prefix: str) -> str:
    return f"{prefix}:master"

def set_process_title(title: str) -> None:
    setproctitle.setproctitle(title)


#* --- Daemonizing ---
def redirect_standard_streams() -> None:
    """Points stdin, stdout and stderr at the null device."""
    sys.stdout.flush()
    sys.stderr.flush()
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)

def daemonize(config: "RuntimeConfig") -> None:
    """
    Detaches the current process from its controlling terminal.
    The original parent exits immediately so the calling shell returns.
    """
    sys.stdout.flush()
    sys.stderr.flush()
    if os.fork() > 0:
        os._exit(0)

    os.setsid()
    if config.chdir:
        os.chdir(config.chdir_path)
    if config.umask:
        os.umask(0)
    if config.close_in_out:
        redirect_standard_streams()
    log.debug(f"Daemonized as PID {os.getpid()}.")


#* --- Process Creation (fallback platform) ---
def get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}

def get_worker_args() -> List[str]:
    """Returns the command line that re-invokes the running program."""
    main_module = sys.modules.get("__main__")
    spec = getattr(main_module, "__spec__", None)
    if spec is not None and spec.name:
        module_name = spec.name
        if module_name.endswith(".__main__"):
            module_name = module_name[:-len(".__main__")]
        return [sys.executable, "-m", module_name, *sys.argv[1:]]
    return [sys.executable, *sys.argv]

def get_worker_env(config: "RuntimeConfig", task: "TaskDescriptor", replica: int) -> Dict[str, str]:
    """Environment that puts a re-invoked program into worker sub-mode."""
    env = dict(os.environ)
    env.update({
        settings.WORKER_KEY_ENV: task.key,
        settings.WORKER_ORDINAL_ENV: str(task.ordinal),
        settings.WORKER_REPLICA_ENV: str(replica),
        settings.WORKER_PREFIX_ENV: config.prefix,
        settings.WORKER_MASTER_ENV: str(os.getpid()),
        "EASYTASK_RUNTIME_DIR": str(config.runtime_dir),
    })
    return env

def launch_worker_process(config: "RuntimeConfig", task: "TaskDescriptor", replica: int) -> subprocess.Popen:
    """
    Starts one worker replica as a fresh process running the same program.

    :raises OSError: If the process cannot be created.
    """
    args = get_worker_args()
    stream = subprocess.DEVNULL if config.close_in_out else None
    p = subprocess.Popen(
        args,
        env=get_worker_env(config, task, replica),
        stdin=subprocess.DEVNULL,
        stdout=stream,
        stderr=stream,
        **get_popen_creation_flags(),
    )
    log.info(f"Worker {worker_title(config.prefix, task.alias, replica)} started with PID: {p.pid}")
    return p
