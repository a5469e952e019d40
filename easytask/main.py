"""
Command line for controlling a running supervisor by prefix:

    easytask status [--prefix NAME]
    easytask stop [--force] [--prefix NAME]

Starting needs the program that registers the tasks, which calls Task.start()
or Task.run() itself.
"""
import sys
import logging
from typing import List, Optional

from easytask import settings
from easytask.log import setup_logging
from easytask.task import Task

log = logging.getLogger("console")


def _pop_option(args: List[str], name: str) -> Optional[str]:
    """Removes '--name value' or '--name=value' from args and returns the value."""
    for i, arg in enumerate(args):
        if arg == name and i + 1 < len(args):
            value = args[i + 1]
            del args[i:i + 2]
            return value
        if arg.startswith(name + "="):
            del args[i]
            return arg.split("=", 1)[1]
    return None


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the console application."""
    args = list(sys.argv[1:] if argv is None else argv)

    verbose = "--verbose" in args
    if verbose:
        args.remove("--verbose")
    setup_logging(logging.DEBUG if verbose or settings.VERBOSE_LOGGING else logging.INFO)

    prefix = _pop_option(args, "--prefix")
    runtime_dir = _pop_option(args, "--runtime-dir")

    task = Task()
    if prefix:
        task.set_prefix(prefix)
    if runtime_dir:
        task.set_runtime_dir(runtime_dir)

    if args and args[0].lower() == "start":
        print("'start' must be run by the program that registers the tasks.")
        return 2

    return task.run(args)


if __name__ == "__main__":
    sys.exit(main())
