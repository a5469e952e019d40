import os
import sys
import signal
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from easytask import settings

log = logging.getLogger(__name__)

POSIX = "posix"
FALLBACK = "fallback"


@dataclass(frozen=True)
class RuntimeConfig:
    """Process-wide options, fixed before start and read only by the supervisor."""
    daemon: bool = False
    umask: bool = False
    chdir: bool = False
    close_in_out: bool = False
    prefix: str = settings.DEFAULT_PREFIX
    platform: str = POSIX
    can_async: bool = True
    runtime_dir: Path = settings.RUNTIME_DIR
    chdir_path: str = settings.CHDIR_PATH
    grace_timeout: float = settings.GRACEFUL_SHUTDOWN_TIMEOUT
    verbose: bool = settings.VERBOSE_LOGGING


def is_windows() -> bool:
    return sys.platform == "win32"


def can_async_signal() -> bool:
    """True when the interpreter can deliver user signals to a handler while blocked."""
    return (
        not is_windows()
        and hasattr(os, "fork")
        and hasattr(signal, "SIGUSR1")
        and hasattr(signal, "SIGKILL")
    )


def detect_platform(override: Optional[str] = None) -> str:
    """Picks the supervisor variant for this host."""
    override = settings.PLATFORM_OVERRIDE if override is None else override
    if override in (POSIX, FALLBACK):
        if override == POSIX and not hasattr(os, "fork"):
            log.warning("POSIX supervisor requested but fork is unavailable. Using fallback.")
            return FALLBACK
        return override
    return FALLBACK if is_windows() or not hasattr(os, "fork") else POSIX


def probe_runtime(daemon: bool = False, umask: bool = False, chdir: bool = False,
                  close_in_out: bool = False, prefix: Optional[str] = None,
                  runtime_dir: Optional[Path] = None,
                  grace_timeout: Optional[float] = None) -> RuntimeConfig:
    """
    Builds the immutable RuntimeConfig. Platform and signal capability are
    probed here once and never re-checked while running.
    """
    platform = detect_platform()
    can_async = can_async_signal() if platform == POSIX else False
    if platform == POSIX and not can_async:
        log.warning("Asynchronous signals are unavailable. Status and stop fall back to polling.")

    return RuntimeConfig(
        daemon=daemon,
        umask=umask,
        chdir=chdir,
        close_in_out=close_in_out,
        prefix=prefix or settings.DEFAULT_PREFIX,
        platform=platform,
        can_async=can_async,
        runtime_dir=Path(runtime_dir or settings.RUNTIME_DIR).resolve(),
        grace_timeout=settings.GRACEFUL_SHUTDOWN_TIMEOUT if grace_timeout is None else grace_timeout,
    )
