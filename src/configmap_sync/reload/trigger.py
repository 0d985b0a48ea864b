"""Reload trigger abstraction.

A ReloadTrigger tells the workload its configuration changed. Triggers that
also own a process lifecycle expose it through ``lifecycle()`` so the
coordinator can resolve the capability once, when it is built.
"""

import asyncio
from abc import ABC, abstractmethod

from configmap_sync.domain import TriggerKind
from configmap_sync.errors import ProcessCrashError


class Stoppable(ABC):
    """Lifecycle of something the sidecar starts and must stop on shutdown."""

    @property
    @abstractmethod
    def crashes(self) -> asyncio.Queue[ProcessCrashError]:
        """Queue receiving an error when the managed process dies on its own."""
        ...

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the managed process. Must be idempotent."""
        ...

    @abstractmethod
    async def wait_stopped(self, timeout: float | None = None) -> int | None:
        """Wait for the managed process to exit and return its exit code."""
        ...


class ReloadTrigger(ABC):
    """Abstract interface for telling the workload to reload."""

    @property
    @abstractmethod
    def kind(self) -> TriggerKind: ...

    @abstractmethod
    async def reload(self) -> None:
        """Signal the workload.

        Raises:
            ReloadTriggerError: If the workload could not be signalled.
        """
        ...

    def lifecycle(self) -> Stoppable | None:
        """Return the process lifecycle this trigger owns, if any."""
        return None
