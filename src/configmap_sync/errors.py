"""Error taxonomy for configmap-sync.

Only SetupError, ProcessCrashError and SourceError are allowed to end the
process. SyncError and ReloadTriggerError are logged by the coordinator and
the reconciliation cycle is dropped.
"""

from pathlib import Path


class ConfigMapSyncError(Exception):
    """Base class for all configmap-sync errors."""


class SetupError(ConfigMapSyncError):
    """Raised when startup cannot complete (source, root directory, initial sync)."""


class SyncError(ConfigMapSyncError):
    """Raised when the config directory cannot be brought in line with a snapshot."""

    def __init__(self, message: str, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class ReloadTriggerError(ConfigMapSyncError):
    """Raised when the workload could not be told to reload."""


class ProcessCrashError(ConfigMapSyncError):
    """A supervised process exited without being asked to."""

    def __init__(self, returncode: int | None):
        self.returncode = returncode
        if returncode:
            message = f"Child process failed with exit status {returncode}"
        else:
            message = "Child process exited unexpectedly"
        super().__init__(message)


class SourceError(ConfigMapSyncError):
    """The configuration watch subscription failed and will not recover."""


class ShutdownError(ConfigMapSyncError):
    """Raised when stopping encountered an error."""
