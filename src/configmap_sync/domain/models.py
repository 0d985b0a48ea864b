"""Core domain models for configmap-sync.

A ConfigSnapshot is the complete desired content of the config directory at
one point in time. It is never a diff.
"""

import hashlib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from configmap_sync.domain.enums import ReconcileStatus


def utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable mapping of relative file name to file content.

    Equality only looks at the entries: two deliveries of the same content
    with different resource versions compare equal.
    """

    entries: Mapping[str, bytes] = field(default_factory=dict)
    resource_version: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        frozen = MappingProxyType(
            {name: bytes(content) for name, content in self.entries.items()}
        )
        object.__setattr__(self, "entries", frozen)

    @classmethod
    def from_text(
        cls, data: Mapping[str, str], resource_version: str | None = None
    ) -> "ConfigSnapshot":
        """Build a snapshot from text values, encoding them as UTF-8."""
        return cls(
            {name: value.encode("utf-8") for name, value in data.items()},
            resource_version=resource_version,
        )

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __getitem__(self, name: str) -> bytes:
        return self.entries[name]

    def items(self):
        return self.entries.items()

    def digest(self) -> str:
        """Return a stable SHA-256 of the entries, for logging."""
        sha = hashlib.sha256()
        for name in sorted(self.entries):
            sha.update(name.encode("utf-8"))
            sha.update(b"\0")
            sha.update(self.entries[name])
            sha.update(b"\0")
        return sha.hexdigest()


@dataclass
class ReconcileResult:
    """Result of one reconciliation cycle."""

    status: ReconcileStatus
    digest: str
    files_written: int = 0
    resource_version: str | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return self.status == ReconcileStatus.SUCCESS
