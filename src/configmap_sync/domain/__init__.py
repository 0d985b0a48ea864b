"""Domain models for configmap-sync."""

from configmap_sync.domain.enums import ProcessState, ReconcileStatus, TriggerKind
from configmap_sync.domain.models import ConfigSnapshot, ReconcileResult

__all__ = [
    "ConfigSnapshot",
    "ProcessState",
    "ReconcileResult",
    "ReconcileStatus",
    "TriggerKind",
]
