"""
Local package for easytask.

This package holds the task registry, the runtime configuration probe and
the supervisor, worker and console machinery built on them.
"""

from .registry import TaskDescriptor, TaskKind, TaskRegistry
from .runtime import RuntimeConfig, probe_runtime

__all__ = ["TaskDescriptor", "TaskKind", "TaskRegistry", "RuntimeConfig", "probe_runtime"]
