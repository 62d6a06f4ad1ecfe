"""Concurrent job scheduling"""

from .worker_pool import RunSummary, WorkerPool

__all__ = ['RunSummary', 'WorkerPool']
