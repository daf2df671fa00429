"""
Logging handlers for forkpool.
"""

from .sql import SQLiteHandler

__all__ = ["SQLiteHandler"]
