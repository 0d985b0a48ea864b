"""Reload trigger that calls an HTTP endpoint."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from configmap_sync.domain import TriggerKind
from configmap_sync.errors import ReloadTriggerError
from configmap_sync.reload.backoff import ExponentialBackoff
from configmap_sync.reload.trigger import ReloadTrigger

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "POST"
REQUEST_TIMEOUT = 5.0


class HTTPNotifier(ReloadTrigger):
    """Reload the workload by calling ``method url`` until it answers 200.

    Connection errors and non-200 answers are retried under exponential
    backoff until the backoff's elapsed budget (10s by default) is used up.
    """

    def __init__(
        self,
        url: str,
        method: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        backoff_factory: Callable[[], ExponentialBackoff] = ExponentialBackoff,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.method = (method or DEFAULT_METHOD).upper()
        self.timeout = timeout
        self._backoff_factory = backoff_factory
        self._transport = transport
        self._sleep = sleep

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.HTTP

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _build_request(self, client: httpx.AsyncClient) -> httpx.Request:
        try:
            return client.build_request(self.method, self.url)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise ReloadTriggerError(f"Unable to create request for {self.url}: {e}") from e

    async def _attempt(self, client: httpx.AsyncClient, request: httpx.Request) -> None:
        logger.info(f"Reloading with {self.method} to {self.url}")
        try:
            response = await client.send(request)
        except httpx.HTTPError as e:
            logger.warning(f"{self.method} request to {self.url} failed: {e}")
            raise ReloadTriggerError(f"{self.method} request to {self.url} failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Unexpected status code {response.status_code} from {self.url}")
            raise ReloadTriggerError(
                f"Unexpected status code {response.status_code} from {self.url}"
            )

    async def reload(self) -> None:
        """Send the reload request, retrying until success or the budget runs out.

        Raises:
            ReloadTriggerError: The last failure once retries are exhausted.
        """
        backoff = self._backoff_factory()
        attempts = 0

        async with self._create_client() as client:
            request = self._build_request(client)
            while True:
                attempts += 1
                try:
                    await self._attempt(client, request)
                except ReloadTriggerError as e:
                    delay = backoff.next_delay()
                    if delay is None:
                        logger.error(
                            f"Giving up on {self.method} {self.url} after {attempts} attempts"
                        )
                        raise
                    logger.debug(f"Retrying {self.url} in {delay:.2f}s ({e})")
                    await self._sleep(delay)
                    continue

                logger.info("Reload request succeeded")
                return
