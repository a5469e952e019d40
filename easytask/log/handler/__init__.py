"""
Logging handlers for easytask.
"""

from .loki import LokiHandler

__all__ = ["LokiHandler"]
