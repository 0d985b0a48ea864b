"""Enumerations for domain models."""

from enum import Enum


class ProcessState(str, Enum):
    """Lifecycle states of a supervised child process."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"


class TriggerKind(str, Enum):
    """How the workload is told that its configuration changed."""

    PROCESS = "process"  # SIGHUP to a supervised child
    HTTP = "http"  # request to a reload endpoint


class ReconcileStatus(str, Enum):
    """Outcome of one reconciliation cycle."""

    SUCCESS = "success"
    FAILED_SYNC = "failed_sync"
    FAILED_RELOAD = "failed_reload"
