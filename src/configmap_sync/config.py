"""Sidecar configuration.

Everything the command line decides is collected into one frozen
SidecarConfig which is built once at startup and handed to the wiring code.
"""

from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from configmap_sync.domain import TriggerKind

DEFAULT_NAMESPACE = "default"
DEFAULT_RELOAD_METHOD = "POST"

# One reload every ten seconds, no burst beyond the first.
DEFAULT_RELOAD_RATE = 0.1
DEFAULT_RELOAD_BURST = 1


def parse_qualified_resource_name(value: str) -> tuple[str, str]:
    """Split ``namespace/name`` into its parts.

    A bare name lives in the ``default`` namespace.

    Raises:
        ValueError: If the value has more than one ``/`` or an empty part.
    """
    parts = value.split("/")
    if len(parts) == 1:
        namespace, name = DEFAULT_NAMESPACE, parts[0]
    elif len(parts) == 2:
        namespace, name = parts
    else:
        raise ValueError(f"Expected qualified name, found {value!r}")

    if not namespace or not name:
        raise ValueError(f"Expected qualified name, found {value!r}")
    return namespace, name


class SidecarConfig(BaseModel):
    """Immutable runtime configuration."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    config_root: Path

    # HTTP trigger
    reload_url: str | None = None
    reload_method: str = DEFAULT_RELOAD_METHOD

    # Process trigger
    command: str | None = None
    args: tuple[str, ...] = ()

    reload_rate: float = Field(default=DEFAULT_RELOAD_RATE, gt=0)
    reload_burst: int = Field(default=DEFAULT_RELOAD_BURST, ge=1)

    in_cluster: bool = True
    kubeconfig: Path | None = None

    @field_validator("config_root")
    @classmethod
    def _root_not_empty(cls, value: Path) -> Path:
        if str(value) in ("", "."):
            raise ValueError("Configuration root directory must be set")
        return value

    @field_validator("reload_method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        value = value.strip().upper()
        return value or DEFAULT_RELOAD_METHOD

    @field_validator("reload_url")
    @classmethod
    def _absolute_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Reload URL must be an absolute http(s) URL, got {value!r}")
        return value

    @model_validator(mode="after")
    def _exactly_one_trigger(self) -> "SidecarConfig":
        if self.reload_url and self.command:
            raise ValueError("Specify either a reload URL or an application command, not both")
        if not self.reload_url and not self.command:
            raise ValueError("Either a reload URL or an application command is required")
        return self

    @property
    def trigger_kind(self) -> TriggerKind:
        return TriggerKind.HTTP if self.reload_url else TriggerKind.PROCESS

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}/{self.name}"
