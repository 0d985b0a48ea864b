"""ConfigMap source backed by the Kubernetes API.

The official client is synchronous, so the watch stream runs in a worker
thread and hands snapshots to the event loop through an asyncio.Queue.
The loop lists first, then watches from the listed resourceVersion:

- a watch that ends normally (server timeout) is reopened from the last
  seen resourceVersion;
- ``410 Gone`` (compacted history) forces a fresh list;
- ``401`` / ``403`` are configuration errors and end the subscription;
- anything else is retried with jittered exponential backoff capped at 30s.
"""

import asyncio
import base64
import logging
import random
import threading
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from kubernetes import client as kube_client
from kubernetes import config as kube_config
from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api
from kubernetes.config import ConfigException
from urllib3.exceptions import HTTPError as TransportError

from configmap_sync.domain import ConfigSnapshot
from configmap_sync.errors import SetupError, SourceError
from configmap_sync.source.interface import ConfigSource

logger = logging.getLogger(__name__)

WATCH_TIMEOUT_SECONDS = 30
MAX_BACKOFF_SECONDS = 30


def load_core_api(in_cluster: bool = True, kubeconfig: Path | None = None) -> CoreV1Api:
    """Create a CoreV1Api client from in-cluster credentials or a kubeconfig.

    Raises:
        SetupError: If no usable client configuration was found.
    """
    try:
        if in_cluster:
            kube_config.load_incluster_config()
        else:
            kube_config.load_kube_config(config_file=str(kubeconfig) if kubeconfig else None)
    except ConfigException as e:
        raise SetupError(f"Failed to get client configuration: {e}") from e
    return kube_client.CoreV1Api()


def snapshot_from_config_map(config_map: Any) -> ConfigSnapshot:
    """Convert a V1ConfigMap into a snapshot.

    ``data`` values are encoded as UTF-8, ``binaryData`` values are
    base64-decoded.
    """
    entries: dict[str, bytes] = {}
    for name, value in (getattr(config_map, "data", None) or {}).items():
        entries[name] = ("" if value is None else str(value)).encode("utf-8")
    for name, value in (getattr(config_map, "binary_data", None) or {}).items():
        entries[name] = base64.b64decode(value or "")

    metadata = getattr(config_map, "metadata", None)
    resource_version = getattr(metadata, "resource_version", None)
    return ConfigSnapshot(entries, resource_version=resource_version)


class KubernetesConfigMapSource(ConfigSource):
    """Watches a single ConfigMap by namespace and name."""

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        name: str,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
    ):
        self.core_api = core_api
        self.namespace = namespace
        self.name = name
        self.watch_timeout = watch_timeout
        self._stop = threading.Event()
        self._watcher_lock = threading.Lock()
        self._active_watcher: watch.Watch | None = None

    @property
    def description(self) -> str:
        return f"configmap {self.namespace}/{self.name}"

    @property
    def _field_selector(self) -> str:
        return f"metadata.name={self.name}"

    async def get(self) -> ConfigSnapshot:
        try:
            config_map = await asyncio.to_thread(
                self.core_api.read_namespaced_config_map, self.name, self.namespace
            )
        except ApiException as e:
            raise SourceError(
                f"Unable to get configmap {self.name!r} in namespace {self.namespace!r}: "
                f"{e.status} {e.reason}"
            ) from e
        except TransportError as e:
            raise SourceError(
                f"Unable to reach the API server for configmap {self.name!r} "
                f"in namespace {self.namespace!r}: {e}"
            ) from e
        return snapshot_from_config_map(config_map)

    async def subscribe(self) -> AsyncIterator[ConfigSnapshot]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ConfigSnapshot | BaseException] = asyncio.Queue()
        self._stop.clear()

        def deliver(item: ConfigSnapshot | BaseException) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed during shutdown.
                self._stop.set()

        thread = threading.Thread(
            target=self._watch_forever,
            args=(deliver,),
            name=f"watch-{self.namespace}-{self.name}",
            daemon=True,
        )
        thread.start()

        try:
            while True:
                item = await queue.get()
                # Only the newest pending snapshot matters.
                while not queue.empty() and not isinstance(item, BaseException):
                    item = queue.get_nowait()
                if isinstance(item, BaseException):
                    raise SourceError(f"Watch on {self.description} failed: {item}") from item
                yield item
        finally:
            self._stop_watch()

    async def close(self) -> None:
        self._stop_watch()

    def _stop_watch(self) -> None:
        self._stop.set()
        with self._watcher_lock:
            if self._active_watcher is not None:
                self._active_watcher.stop()

    def _list(self) -> tuple[ConfigSnapshot | None, str | None]:
        listing = self.core_api.list_namespaced_config_map(
            namespace=self.namespace, field_selector=self._field_selector
        )
        resource_version = getattr(getattr(listing, "metadata", None), "resource_version", None)
        items = getattr(listing, "items", None) or []
        snapshot = snapshot_from_config_map(items[0]) if items else None
        return snapshot, resource_version

    def _watch_forever(self, deliver: Callable[[ConfigSnapshot | BaseException], None]) -> None:
        resource_version: str | None = None
        backoff_seconds = 1

        while not self._stop.is_set():
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                if resource_version is None:
                    snapshot, resource_version = self._list()
                    if snapshot is not None:
                        deliver(snapshot)
                    logger.info(
                        f"Starting watch on {self.description} "
                        f"from resourceVersion {resource_version}"
                    )

                stream = watcher.stream(
                    self.core_api.list_namespaced_config_map,
                    namespace=self.namespace,
                    field_selector=self._field_selector,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout,
                )
                for event in stream:
                    if self._stop.is_set():
                        break
                    resource_version = self._handle_event(event, resource_version, deliver)

                backoff_seconds = 1
            except ApiException as e:
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    resource_version = None
                    continue
                if e.status in {401, 403}:
                    logger.error(
                        f"Kubernetes API access denied (status={e.status}). "
                        "Check RBAC and service account permissions."
                    )
                    deliver(e)
                    return
                logger.warning(f"Kubernetes API watch error: {e.status} {e.reason}")
                self._stop.wait(backoff_seconds * (0.5 + random.random()))  # noqa: S311
                backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)
            except Exception as e:
                logger.warning(f"Unexpected watch error: {e}")
                self._stop.wait(backoff_seconds * (0.5 + random.random()))  # noqa: S311
                backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None

    def _handle_event(
        self,
        event: dict,
        resource_version: str | None,
        deliver: Callable[[ConfigSnapshot | BaseException], None],
    ) -> str | None:
        event_type = str(event.get("type", ""))
        obj = event.get("object")
        if obj is None:
            return resource_version

        metadata = getattr(obj, "metadata", None)
        if metadata is not None and getattr(metadata, "resource_version", None):
            resource_version = metadata.resource_version

        if event_type in ("ADDED", "MODIFIED"):
            deliver(snapshot_from_config_map(obj))
        elif event_type == "DELETED":
            logger.warning(f"{self.description} was deleted, keeping current files")
        return resource_version
