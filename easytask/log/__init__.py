"""
Logging module for easytask.
This module provides the logging setup shared by the master and its workers.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
