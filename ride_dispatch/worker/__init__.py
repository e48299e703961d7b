# ride_dispatch/worker/__init__.py
"""
Фоновые воркеры.
"""

from ride_dispatch.worker.base import BaseWorker

__all__ = ["BaseWorker"]
