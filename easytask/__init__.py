"""
easytask runs registered units of work periodically in supervised worker processes.

    Task().add_func(heartbeat, "heartbeat", interval=2, replicas=3).start()
"""

from .errors import AccessDenied, EasyTaskError, InvalidArgument, NotFound, NotRunning
from .task import Task

__all__ = ["Task", "EasyTaskError", "InvalidArgument", "NotFound", "AccessDenied", "NotRunning"]
__version__ = "1.0.0"
