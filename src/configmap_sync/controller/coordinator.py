"""Coordinator tying the config source to the reconciliation pipeline.

Responsibilities:
- Initial synchronous reconciliation before anything else runs
- Serialized reconciliation: rate limit, file sync, reload trigger
- Watch subscription and supervised process lifecycle
- Fail-fast on an unexpected child exit or a dead watch
"""

import asyncio
import contextlib
import logging

from configmap_sync import __version__
from configmap_sync.config import SidecarConfig
from configmap_sync.domain import ConfigSnapshot, ReconcileResult, ReconcileStatus
from configmap_sync.errors import (
    ConfigMapSyncError,
    ReloadTriggerError,
    SetupError,
    ShutdownError,
    SourceError,
    SyncError,
)
from configmap_sync.reload import (
    HTTPNotifier,
    Materializer,
    ProcessSupervisor,
    RateLimiter,
    ReloadTrigger,
)
from configmap_sync.source import ConfigSource

logger = logging.getLogger(__name__)

# Seconds to wait for a killed child to be reaped on shutdown.
STOP_TIMEOUT = 5.0


class Coordinator:
    """Keeps the config directory in step with a ConfigSource.

    At most one reconciliation runs at a time; all of them go through the
    same lock, which also guards the rate limiter and the materializer's
    record of written files. Failed reconciliations are logged and dropped:
    the next change to the source is the next chance to converge.
    """

    def __init__(
        self,
        source: ConfigSource,
        materializer: Materializer,
        limiter: RateLimiter,
        trigger: ReloadTrigger,
        history_size: int = 50,
    ):
        self.source = source
        self.materializer = materializer
        self.limiter = limiter
        self.trigger = trigger
        self.history_size = history_size

        self._lifecycle = trigger.lifecycle()
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._stopping = False
        self._last_snapshot: ConfigSnapshot | None = None
        self._watch_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._history: list[ReconcileResult] = []

    @classmethod
    async def create(
        cls,
        source: ConfigSource,
        materializer: Materializer,
        limiter: RateLimiter,
        trigger: ReloadTrigger,
    ) -> "Coordinator":
        """Build a coordinator and run the initial reconciliation.

        Raises:
            SetupError: If the workload cannot be given its initial configuration.
        """
        coordinator = cls(source, materializer, limiter, trigger)
        await coordinator.initialize()
        return coordinator

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def last_snapshot(self) -> ConfigSnapshot | None:
        return self._last_snapshot

    async def initialize(self, snapshot: ConfigSnapshot | None = None) -> None:
        """Populate the config directory from the current snapshot.

        Raises:
            SetupError: If the root directory, the source or the first sync fails.
        """
        try:
            self.materializer.ensure_root()
        except OSError as e:
            raise SetupError(
                f"Unable to create config root directory {self.materializer.root}: {e}"
            ) from e

        if snapshot is None:
            try:
                snapshot = await self.source.get()
            except SourceError as e:
                raise SetupError(str(e)) from e

        self._last_snapshot = snapshot
        try:
            await self._reconcile(snapshot)
        except (SyncError, ReloadTriggerError) as e:
            raise SetupError(f"Unable to populate configuration directory: {e}") from e

        logger.info(
            f"Initial configuration from {self.source.description} written to "
            f"{self.materializer.root} ({len(snapshot)} files)"
        )

    async def on_snapshot_changed(self, snapshot: ConfigSnapshot) -> ReconcileResult | None:
        """Reconcile a newly observed snapshot.

        Returns:
            The ReconcileResult, or None when the snapshot was skipped
            (unchanged content, or shutting down).
        """
        if self._stopping:
            return None

        if snapshot == self._last_snapshot:
            logger.debug(f"Snapshot {snapshot.resource_version} unchanged, ignoring")
            return None
        self._last_snapshot = snapshot

        try:
            return await self._reconcile(snapshot)
        except (SyncError, ReloadTriggerError) as e:
            logger.error(f"Unable to populate configuration directory: {e}")
            return self._history[-1] if self._history else None

    async def _reconcile(self, snapshot: ConfigSnapshot) -> ReconcileResult | None:
        async with self._lock:
            await self.limiter.accept()
            if self._stopping:
                logger.info("Shutdown requested, dropping pending reconciliation")
                return None

            # File sync and reload run to completion even if we get cancelled.
            self._inflight = asyncio.ensure_future(self._apply(snapshot))
            return await asyncio.shield(self._inflight)

    async def _apply(self, snapshot: ConfigSnapshot) -> ReconcileResult:
        digest = snapshot.digest()
        logger.info(
            f"Reconciling {self.source.description} "
            f"(resourceVersion {snapshot.resource_version}, digest {digest[:12]})"
        )

        try:
            self.materializer.sync(snapshot)
        except SyncError as e:
            self._record(ReconcileStatus.FAILED_SYNC, snapshot, digest, error=e)
            raise

        try:
            await self.trigger.reload()
        except ReloadTriggerError as e:
            self._record(ReconcileStatus.FAILED_RELOAD, snapshot, digest, error=e)
            raise ReloadTriggerError(f"Unable to reload: {e}") from e

        return self._record(ReconcileStatus.SUCCESS, snapshot, digest)

    def _record(
        self,
        status: ReconcileStatus,
        snapshot: ConfigSnapshot,
        digest: str,
        error: Exception | None = None,
    ) -> ReconcileResult:
        result = ReconcileResult(
            status=status,
            digest=digest,
            files_written=len(self.materializer.written_files) if error is None else 0,
            resource_version=snapshot.resource_version,
            error_message=str(error) if error else None,
        )
        self._history.append(result)
        del self._history[: -self.history_size]
        return result

    async def _watch_loop(self) -> None:
        async with contextlib.aclosing(self.source.subscribe()) as snapshots:
            async for snapshot in snapshots:
                if self._stopping:
                    break
                await self.on_snapshot_changed(snapshot)

    async def run(self) -> None:
        """Start the child (if any) and the watch, and block until stopped.

        Raises:
            SetupError: If the child process could not be started.
            ProcessCrashError: If the child exited without being told to.
            SourceError: If the watch subscription ended.
        """
        if self._stopping:
            return

        if self._lifecycle is not None:
            try:
                await self._lifecycle.start()
            except SetupError:
                self._stop_after_failure()
                await self.source.close()
                raise

        logger.info(f"Watching {self.source.description} (configmap-sync v{__version__})")
        self._watch_task = asyncio.create_task(self._watch_loop())
        stop_waiter = asyncio.create_task(self._stop_event.wait())
        crash_waiter: asyncio.Task | None = None
        waiters: set[asyncio.Task] = {stop_waiter, self._watch_task}
        if self._lifecycle is not None:
            crash_waiter = asyncio.create_task(self._lifecycle.crashes.get())
            waiters.add(crash_waiter)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

            if crash_waiter is not None and crash_waiter in done:
                error = crash_waiter.result()
                logger.error(f"Exiting due to process failure: {error}")
                self._stop_after_failure()
                raise error

            if self._watch_task in done and not self._stopping:
                cause = self._watch_task.exception()
                self._stop_after_failure()
                if cause is None:
                    raise SourceError(f"Watch on {self.source.description} ended unexpectedly")
                raise SourceError(f"Watch on {self.source.description} failed: {cause}") from cause
        finally:
            for waiter in (stop_waiter, crash_waiter):
                if waiter is not None and not waiter.done():
                    waiter.cancel()
            await self._drain()

    def _stop_after_failure(self) -> None:
        try:
            self.stop()
        except ShutdownError as e:
            logger.error(f"Error during shutdown: {e}")

    async def _drain(self) -> None:
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task

        if self._inflight is not None and not self._inflight.done():
            logger.info("Waiting for in-flight reconciliation to finish")
            with contextlib.suppress(ConfigMapSyncError):
                await self._inflight

        if self._lifecycle is not None:
            await self._lifecycle.wait_stopped(timeout=STOP_TIMEOUT)

        await self.source.close()

    def stop(self) -> None:
        """Begin shutdown. Safe to call more than once.

        Raises:
            ShutdownError: If the supervised process could not be stopped.
        """
        if self._stopping:
            return
        self._stopping = True
        logger.info("Shutting down")

        self._stop_event.set()
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()

        if self._lifecycle is not None:
            self._lifecycle.stop()

    def get_reconcile_history(self, limit: int = 10) -> list[ReconcileResult]:
        """Get the most recent reconciliation results."""
        return self._history[-limit:]

    def get_status(self) -> dict:
        """Get coordinator status."""
        return {
            "source": self.source.description,
            "config_root": str(self.materializer.root),
            "trigger": self.trigger.kind.value,
            "supervises_process": self._lifecycle is not None,
            "stopping": self._stopping,
            "written_files": sorted(str(p) for p in self.materializer.written_files),
            "recent_reconciles": [
                {
                    "status": r.status.value,
                    "digest": r.digest,
                    "resource_version": r.resource_version,
                    "timestamp": r.timestamp.isoformat(),
                    "error": r.error_message,
                }
                for r in self.get_reconcile_history(limit=5)
            ],
        }


def build_trigger(config: SidecarConfig) -> ReloadTrigger:
    """Create the reload trigger selected by the configuration."""
    if config.reload_url:
        return HTTPNotifier(config.reload_url, config.reload_method)
    return ProcessSupervisor(config.command, config.args)


async def create_coordinator(config: SidecarConfig, source: ConfigSource) -> Coordinator:
    """Wire a coordinator from configuration and run the initial reconciliation.

    Raises:
        SetupError: If startup cannot complete.
    """
    return await Coordinator.create(
        source=source,
        materializer=Materializer(config.config_root),
        limiter=RateLimiter(config.reload_rate, config.reload_burst),
        trigger=build_trigger(config),
    )
