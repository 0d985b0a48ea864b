"""Reconciliation building blocks: rate limiting, file sync and reload triggers."""

from configmap_sync.reload.backoff import ExponentialBackoff
from configmap_sync.reload.http import HTTPNotifier
from configmap_sync.reload.limiter import RateLimiter
from configmap_sync.reload.materializer import Materializer
from configmap_sync.reload.process import ProcessSupervisor
from configmap_sync.reload.trigger import ReloadTrigger, Stoppable

__all__ = [
    "ExponentialBackoff",
    "HTTPNotifier",
    "Materializer",
    "ProcessSupervisor",
    "RateLimiter",
    "ReloadTrigger",
    "Stoppable",
]
