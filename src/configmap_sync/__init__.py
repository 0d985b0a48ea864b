"""configmap-sync - keep a workload's config directory in step with a ConfigMap."""

__version__ = "0.1.0"
