"""
This module initializes the local database management system.
It imports the database managers for logs and worker state.
"""

from .log import LogDBManager
from .state import StateDBManager

__all__ = ["LogDBManager", "StateDBManager"]
