"""Exceptions raised by easytask."""


class EasyTaskError(Exception):
    """Base class for all easytask errors."""


class InvalidArgument(EasyTaskError, ValueError):
    """A registration call received a value it cannot use."""


class NotFound(EasyTaskError, LookupError):
    """A class or method named at registration does not exist."""


class AccessDenied(EasyTaskError, PermissionError):
    """A method named at registration is not publicly invocable."""


class NotRunning(EasyTaskError, RuntimeError):
    """No live supervisor is recorded for the requested prefix."""
