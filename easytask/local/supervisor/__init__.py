"""
The Supervisor package.
Manages the lifecycle of the worker processes.

This package contains the two supervisor variants (fork/signal and fallback)
and their helper modules, which together handle starting, supervising,
reporting on and stopping the workers of a task registry.
"""
import dataclasses
from typing import TYPE_CHECKING

from easytask.local.runtime import FALLBACK, POSIX, can_async_signal
from . import persistence
from .base import Supervisor, WorkerHandle
from .posix import PosixSupervisor
from .fallback import FallbackSupervisor

if TYPE_CHECKING:
    from easytask.local.registry import TaskRegistry
    from easytask.local.runtime import RuntimeConfig


def get_supervisor(registry: "TaskRegistry", config: "RuntimeConfig") -> Supervisor:
    """Returns the supervisor variant for the probed platform."""
    if config.platform == FALLBACK:
        return FallbackSupervisor(registry, config)
    return PosixSupervisor(registry, config)


def get_control_supervisor(registry: "TaskRegistry", config: "RuntimeConfig") -> Supervisor:
    """
    Returns the supervisor variant that can talk to the recorded master.
    A master started in fallback mode has no signal handlers, so it must be
    controlled the fallback way even from a fork-capable caller.
    """
    record = persistence.read_control_record(config)
    recorded = record.get("platform") if record else None
    if recorded == FALLBACK and config.platform != FALLBACK:
        config = dataclasses.replace(config, platform=FALLBACK, can_async=False)
    elif recorded == POSIX and config.platform != POSIX:
        config = dataclasses.replace(config, platform=POSIX)
    if recorded == POSIX and "can_async" in record:
        config = dataclasses.replace(config, can_async=bool(record["can_async"]) and can_async_signal())
    return get_supervisor(registry, config)


__all__ = ['Supervisor', 'WorkerHandle', 'PosixSupervisor', 'FallbackSupervisor',
           'get_supervisor', 'get_control_supervisor']
