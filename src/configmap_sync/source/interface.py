"""Configuration source abstraction."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from configmap_sync.domain import ConfigSnapshot


class ConfigSource(ABC):
    """Supplies snapshots of one named configuration resource.

    Implementations deliver updates one at a time. When several updates
    arrive while the consumer is busy, only the newest needs to be yielded
    since every snapshot carries the full content.
    """

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable name of the watched resource (for logs)."""
        ...

    @abstractmethod
    async def get(self) -> ConfigSnapshot:
        """Fetch the current snapshot.

        Raises:
            SourceError: If the resource cannot be read.
        """
        ...

    @abstractmethod
    def subscribe(self) -> AsyncIterator[ConfigSnapshot]:
        """Stream snapshots as the resource changes.

        The iterator raises SourceError if the subscription fails for good.
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the source."""
        return None
