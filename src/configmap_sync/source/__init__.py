"""Configuration sources."""

from configmap_sync.source.interface import ConfigSource
from configmap_sync.source.kubernetes import (
    KubernetesConfigMapSource,
    load_core_api,
    snapshot_from_config_map,
)

__all__ = [
    "ConfigSource",
    "KubernetesConfigMapSource",
    "load_core_api",
    "snapshot_from_config_map",
]
