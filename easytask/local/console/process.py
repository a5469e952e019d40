import logging
from typing import TYPE_CHECKING, List
from easytask.errors import NotRunning
from easytask.local.console.handler import print_help

if TYPE_CHECKING:
    from easytask.task import Task

log = logging.getLogger(__name__)


def execute_command(task: "Task", command: str, args: List[str]) -> int:
    """
    Executes a single control command.

    :param task: The Task whose supervisor the command targets.
    :param command: The command string ('start', 'status', 'stop' or 'help').
    :param args: Arguments for the command; 'stop' accepts '--force'.
    :return int: The process exit code.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "start": task.start,
        "status": task.status,
        "stop": lambda: task.stop(force="--force" in args or "-f" in args),
        "help": print_help,
    }

    if command not in command_map:
        print(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return 2

    try:
        command_map[command]()
    except NotRunning as e:
        print(f"ERROR: {e}")
        return 1
    return 0
