"""
The Supervisor package.
Manages the lifecycle of the pool's worker processes.

This package contains the Supervisor and Worker classes and their helper
modules, which together handle forking, polling, respawning and stopping
the workers.
"""
from .worker import Worker
from .supervisor import Supervisor

__all__ = ['Supervisor', 'Worker']
