import sys
import logging
import dataclasses
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from easytask.errors import InvalidArgument
from easytask.local.console import execute_command
from easytask.local.registry import TaskRegistry
from easytask.local.runtime import RuntimeConfig, probe_runtime
from easytask.local.supervisor import get_control_supervisor, get_supervisor
from easytask.local.supervisor.fallback import run_spawned_worker, worker_sub_mode

log = logging.getLogger(__name__)


class Task:
    """
    Fluent entry point: register tasks, set runtime options, then start, query or stop.

    The platform and signal capability are probed once, when the object is built.
    Options set afterwards only change the daemon and naming behaviour.
    """

    def __init__(self) -> None:
        self.registry = TaskRegistry()
        self._probed = probe_runtime()
        self._options = {}

    @property
    def config(self) -> RuntimeConfig:
        """The RuntimeConfig handed to the supervisor."""
        return dataclasses.replace(self._probed, **self._options)

    #* --- Runtime options ---
    def set_daemon(self, daemon: bool = False) -> "Task":
        self._options["daemon"] = bool(daemon)
        return self

    def set_umask(self, umask: bool = False) -> "Task":
        """Clears the file-creation mask of a daemonized master."""
        self._options["umask"] = bool(umask)
        return self

    def set_chdir(self, is_chdir: bool = False, path: Optional[str] = None) -> "Task":
        """Moves a daemonized master out of the current directory (to / by default)."""
        self._options["chdir"] = bool(is_chdir)
        if path:
            self._options["chdir_path"] = path
        return self

    def set_in_out(self, close_in_out: bool = False) -> "Task":
        """Redirects stdin, stdout and stderr of a daemonized master to the null device."""
        self._options["close_in_out"] = bool(close_in_out)
        return self

    def set_prefix(self, prefix: str = "") -> "Task":
        """
        Sets the process-name prefix, which also names the control record.

        :raises InvalidArgument: If the prefix is empty or contains a path separator.
        """
        if not prefix or "/" in prefix or "\\" in prefix:
            raise InvalidArgument(f"invalid prefix {prefix!r}")
        self._options["prefix"] = prefix
        return self

    def set_grace_timeout(self, seconds: float) -> "Task":
        if seconds < 0:
            raise InvalidArgument("grace timeout must not be negative")
        self._options["grace_timeout"] = seconds
        return self

    def set_runtime_dir(self, path: Union[str, Path]) -> "Task":
        self._options["runtime_dir"] = Path(path).resolve()
        return self

    #* --- Registration ---
    def add_func(self, func: Callable[[], Any], alias: str = "", interval: float = 1, replicas: int = 1) -> "Task":
        """Adds a callable as a task running `replicas` workers every `interval` seconds."""
        self.registry.register_function(func, alias, interval, replicas)
        return self

    def add_class(self, cls: Union[type, str], method: str, alias: str = "",
                  interval: float = 1, replicas: int = 1) -> "Task":
        """Adds a class method as a task. Non-static methods run on a new instance each time."""
        self.registry.register_method(cls, method, alias, interval, replicas)
        return self

    #* --- Control surface ---
    def start(self) -> None:
        """
        Starts every registered task and supervises the workers until stopped.
        Does nothing when no task is registered. In a process spawned as a
        fallback worker this runs the assigned task instead and exits.
        """
        config = self.config
        assignment = worker_sub_mode()
        if assignment is not None:
            sys.exit(run_spawned_worker(self.registry, config, assignment))

        if not len(self.registry):
            log.debug("No task registered, nothing to start.")
            return

        self.registry.freeze()
        get_supervisor(self.registry, config).start()

    def status(self) -> str:
        """
        Prints the liveness report of the running supervisor.

        :raises NotRunning: If no supervisor is running under this prefix.
        """
        return get_control_supervisor(self.registry, self.config).status()

    def stop(self, force: bool = False) -> None:
        """
        Stops the running supervisor; blocks until it is gone or the grace period ends.

        :raises NotRunning: If no supervisor is running under this prefix.
        """
        get_control_supervisor(self.registry, self.config).stop(force)

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Dispatches a command line such as ['stop', '--force']."""
        argv = sys.argv[1:] if argv is None else argv
        command, args = (argv[0].lower(), argv[1:]) if argv else ("help", [])
        return execute_command(self, command, args)
