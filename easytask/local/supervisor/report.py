import time
from typing import Any, Dict, Optional
from easytask.local.supervisor import process_utils


def format_uptime(seconds: float) -> str:
    seconds = max(0, int(seconds))
    days, rest = divmod(seconds, 86400)
    clock = time.strftime('%H:%M:%S', time.gmtime(rest))
    return f"{days}d {clock}" if days else clock


def build_status_report(record: Dict[str, Any], now: Optional[float] = None) -> str:
    """
    Renders a human-readable liveness report from a control record.
    Each worker PID is probed with psutil at call time.

    :param record: The control record of a supervisor.
    :param now: The reference time for the uptime; defaults to the current time.
    """
    now = time.time() if now is None else now
    master_pid = record["master"]
    master_alive = process_utils.is_alive(master_pid, record.get("master_created"))
    master_state = "RUNNING" if master_alive else "STOPPED"
    lines = [
        f"--- {record.get('prefix', '')} Status ---",
        f"Master PID {master_pid:<8} | Status: {master_state} | Platform: {record.get('platform', '?')}"
        f" | Uptime: {format_uptime(now - record.get('started_at', now))}",
    ]

    total = alive_total = 0
    for task in record.get("tasks", {}).values():
        workers = task.get("workers", [])
        alive_flags = [process_utils.is_alive(w["pid"], w.get("created")) for w in workers]
        alive = sum(alive_flags)
        total += task.get("replicas", len(workers))
        alive_total += alive
        lines.append(
            f"  - {task.get('alias', '?'):<24} : {alive}/{task.get('replicas', len(workers))} replicas alive"
            f" | interval {task.get('interval')}s"
        )
        for worker, is_alive in zip(workers, alive_flags):
            # A dead or reused PID is not probed again.
            state = process_utils.get_proc_status_string(worker["pid"]) if is_alive else "stopped"
            lines.append(f"      #{worker['replica']} PID {worker['pid']:<8} | Status: {state.upper()}")

    lines.append(f"TOTAL: {alive_total}/{total} workers alive")
    lines.append("-" * 26)
    return "\n".join(lines)
