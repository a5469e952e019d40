"""
This module contains the default configuration settings for easytask.
It defines runtime paths, supervisor timings and logging options.
Every value can be overridden through the environment or a .env file.
"""

import os
import pathlib
import tempfile
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

#* --- Core Settings ---
DEFAULT_PREFIX = os.getenv("EASYTASK_PREFIX", "EasyTask")

# Directory for control records, signal files and the master log file.
RUNTIME_DIR = pathlib.Path(
    os.getenv("EASYTASK_RUNTIME_DIR", str(pathlib.Path(tempfile.gettempdir()) / "easytask"))
).resolve()

# Forces a supervisor variant ('posix' or 'fallback'); empty means auto-detect.
PLATFORM_OVERRIDE = os.getenv("EASYTASK_PLATFORM", "").lower()

# Where a daemonized master moves to when chdir is requested.
CHDIR_PATH = os.getenv("EASYTASK_CHDIR_PATH", "/")

#* --- Manager/Supervisor Settings ---
SUPERVISOR_SLEEP_INTERVAL = float(os.getenv("SUPERVISOR_SLEEP_INTERVAL", "1"))
GRACEFUL_SHUTDOWN_TIMEOUT = float(os.getenv("GRACEFUL_SHUTDOWN_TIMEOUT", "10"))  # seconds before force-killing
STATUS_REPLY_TIMEOUT = float(os.getenv("STATUS_REPLY_TIMEOUT", "3"))
STOP_WAIT_MARGIN = float(os.getenv("STOP_WAIT_MARGIN", "5"))  # seconds the caller of stop() waits beyond the grace period
WORKER_POLL_INTERVAL = float(os.getenv("WORKER_POLL_INTERVAL", "0.2"))  # sleep slice for workers watching the shutdown file

#* --- Worker sub-mode (fallback platform) ---
WORKER_KEY_ENV = "EASYTASK_WORKER_KEY"
WORKER_ORDINAL_ENV = "EASYTASK_WORKER_ORDINAL"
WORKER_REPLICA_ENV = "EASYTASK_WORKER_REPLICA"
WORKER_PREFIX_ENV = "EASYTASK_PREFIX"
WORKER_MASTER_ENV = "EASYTASK_MASTER_PID"

#* --- Logging ---
VERBOSE_LOGGING = os.getenv("EASYTASK_VERBOSE", "False").lower() in ('true', '1', 't')
LOG_BUFFER_FLUSH_INTERVAL = 10

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")
