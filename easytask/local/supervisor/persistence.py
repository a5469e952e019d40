import json
import time
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple
from easytask.errors import NotRunning
from easytask.local.supervisor import process_utils

if TYPE_CHECKING:
    from easytask.local.runtime import RuntimeConfig
    from .base import WorkerHandle

log = logging.getLogger(__name__)


#* --- Control file locations ---
def pid_file_path(config: "RuntimeConfig") -> Path:
    return config.runtime_dir / f"{config.prefix}.pid"

def shutdown_signal_path(config: "RuntimeConfig") -> Path:
    return config.runtime_dir / f"{config.prefix}.shutdown.signal"

def status_report_path(config: "RuntimeConfig") -> Path:
    return config.runtime_dir / f"{config.prefix}.status"

def log_file_path(config: "RuntimeConfig") -> Path:
    return config.runtime_dir / f"{config.prefix}.log"


#* --- Control record ---
def build_control_record(config: "RuntimeConfig", master_pid: int, started_at: float,
                         tasks: Iterable[Any], handles: Iterable["WorkerHandle"],
                         master_created: Optional[float] = None) -> Dict[str, Any]:
    """
    Builds the control record for a running supervisor.
    Every PID is stored with its process start time so a reused PID is never
    mistaken for one of ours.

    :param tasks: The task descriptors being supervised.
    :param handles: The worker handles that were spawned successfully.
    :param master_created: The master's start time as reported by psutil.
    """
    record_tasks: Dict[str, Dict[str, Any]] = {
        task.key: {
            "alias": task.alias,
            "interval": task.interval,
            "replicas": task.replicas,
            "workers": [],
        }
        for task in tasks
    }
    for handle in sorted(handles, key=lambda h: (h.key, h.replica)):
        record_tasks[handle.key]["workers"].append(
            {"pid": handle.pid, "replica": handle.replica, "created": handle.created}
        )

    return {
        "prefix": config.prefix,
        "platform": config.platform,
        "can_async": config.can_async,
        "master": master_pid,
        "master_created": master_created,
        "started_at": started_at,
        "tasks": record_tasks,
    }

def write_control_record(config: "RuntimeConfig", record: Dict[str, Any]) -> None:
    """
    Atomically writes the control record to disk.

    :param config: The runtime configuration naming the record.
    :param record: The record built by build_control_record.
    """
    pid_path = pid_file_path(config)
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    temp_pid_path = pid_path.with_name(pid_path.name + ".tmp")
    try:
        with temp_pid_path.open("w") as f:
            json.dump(record, f, indent=4)
        temp_pid_path.replace(pid_path)
    except (IOError, OSError) as e:
        log.error(f"Failed to write control record: {e}", exc_info=True)
    finally:
        temp_pid_path.unlink(missing_ok=True)

def _is_pid(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0

def _is_timestamp(value: Any) -> bool:
    return value is None or (isinstance(value, (int, float)) and not isinstance(value, bool))

def _is_worker_entry(entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and _is_pid(entry.get("pid"))
        and isinstance(entry.get("replica"), int) and not isinstance(entry.get("replica"), bool)
        and _is_timestamp(entry.get("created"))
    )

def is_valid_record(record: Any) -> bool:
    """Checks the shape every reader of the record relies on."""
    if not isinstance(record, dict):
        return False
    if not _is_pid(record.get("master")) or not _is_timestamp(record.get("master_created")):
        return False
    tasks = record.get("tasks")
    if not isinstance(tasks, dict):
        return False
    for task in tasks.values():
        if not isinstance(task, dict) or not isinstance(task.get("workers"), list):
            return False
        if not all(_is_worker_entry(entry) for entry in task["workers"]):
            return False
    return True

def read_control_record(config: "RuntimeConfig") -> Optional[Dict[str, Any]]:
    """
    Reads the control record from disk.
    A file that cannot be decoded or has the wrong shape is removed.

    :return: The record if the file exists and is valid, else None.
    """
    pid_path = pid_file_path(config)
    if not pid_path.exists():
        return None
    try:
        with pid_path.open("r", encoding="utf-8") as f:
            record = json.load(f)
    except (ValueError, OSError) as e:
        log.warning(f"Discarding unreadable control record {pid_path}: {e}")
        pid_path.unlink(missing_ok=True)
        return None
    if not is_valid_record(record):
        log.warning(f"Discarding malformed control record {pid_path}.")
        pid_path.unlink(missing_ok=True)
        return None
    return record

def master_is_alive(record: Dict[str, Any]) -> bool:
    return process_utils.is_alive(record["master"], record.get("master_created"))

def require_running(config: "RuntimeConfig") -> Dict[str, Any]:
    """
    Returns the control record of a live supervisor.

    :raises NotRunning: If no record exists or its master process is gone.
    """
    record = read_control_record(config)
    if record is None:
        raise NotRunning(f"No running supervisor found for prefix '{config.prefix}'.")
    if not master_is_alive(record):
        log.warning(f"Removing stale control record for '{config.prefix}' (master PID {record['master']}).")
        cleanup_control_files(config)
        raise NotRunning(f"Supervisor for prefix '{config.prefix}' is not running (stale PID {record['master']}).")
    return record

def recorded_processes(record: Dict[str, Any]) -> List[Tuple[int, Optional[float]]]:
    """Returns (pid, start time) for every worker in a record, followed by the master."""
    procs = [
        (entry["pid"], entry.get("created"))
        for task in record["tasks"].values()
        for entry in task["workers"]
    ]
    procs.append((record["master"], record.get("master_created")))
    return procs

def recorded_pids(record: Dict[str, Any]) -> List[int]:
    """Returns every worker PID in a record followed by the master PID."""
    return [pid for pid, _ in recorded_processes(record)]

def verified_pids(record: Dict[str, Any]) -> List[int]:
    """Returns the recorded PIDs that still belong to the processes that were recorded."""
    return [pid for pid, created in recorded_processes(record) if process_utils.is_alive(pid, created)]


#* --- Signal files ---
def request_shutdown(config: "RuntimeConfig") -> None:
    """Creates the shutdown signal file polled by fallback workers and masters."""
    path = shutdown_signal_path(config)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()

def check_for_shutdown_signal(config: "RuntimeConfig") -> bool:
    """Checks if the shutdown signal file exists."""
    if shutdown_signal_path(config).exists():
        log.info("Shutdown signal file detected.")
        return True
    return False

def write_status_report(config: "RuntimeConfig", report: str) -> None:
    path = status_report_path(config)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        temp_path.write_text(report)
        temp_path.replace(path)
    except OSError as e:
        log.error(f"Failed to write status report: {e}")

def wait_for_status_report(config: "RuntimeConfig", timeout: float) -> Optional[str]:
    """Polls for the report the master writes in answer to a status query."""
    path = status_report_path(config)
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            try:
                report = path.read_text()
            except OSError:
                report = ""
            if report:
                path.unlink(missing_ok=True)
                return report
        time.sleep(0.1)
    return None

def cleanup_control_files(config: "RuntimeConfig") -> None:
    """Removes the control record and the signal files."""
    pid_file_path(config).unlink(missing_ok=True)
    shutdown_signal_path(config).unlink(missing_ok=True)
    status_report_path(config).unlink(missing_ok=True)
    log.debug("Cleaned up control record and signal files.")
