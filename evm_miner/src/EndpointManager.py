"""EndpointManager: Keeps one live ledger session across redundant endpoints.

Every cycle walks the configured endpoints in order and adopts the first one
that answers the liveness check. Adopting an endpoint rebuilds the signing
Session and kicks off a price sampling pass without waiting for it. If every
endpoint fails, the previous Session stays active until a later cycle
succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Sequence

from .LedgerClient import LedgerClient, LedgerError
from .Session import MinerIdentity, Session

if TYPE_CHECKING:
    from .PriceOracle import PriceOracle
    from .Signer import Signer

logger = logging.getLogger(__name__)


class EndpointManager:
    """Endpoint failover and session refresh loop.

    :ivar endpoints: Endpoint URLs in priority order.
    :ivar identity: Miner identity bound into every Session.
    :ivar refresh_interval: Seconds between cycles.
    :ivar initial_delay: Seconds before the first cycle.
    """

    DEFAULT_REFRESH_INTERVAL = 5.0
    DEFAULT_INITIAL_DELAY = 0.1

    def __init__(
        self,
        endpoints: Sequence[str],
        identity: MinerIdentity,
        signer: Signer,
        oracle: PriceOracle | None = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        client_factory: Callable[[str], LedgerClient] = LedgerClient,
    ) -> None:
        """Initialize the manager.

        :param endpoints: Ledger endpoint URLs, tried in order.
        :param identity: Miner identity.
        :param signer: Signing service shared by all sessions.
        :param oracle: Price oracle sampled after each successful check.
        :param refresh_interval: Seconds between cycles (default: 5).
        :param initial_delay: Seconds before the first cycle (default: 0.1).
        :param client_factory: Builds a LedgerClient for a URL.
        :raises ValueError: If no endpoints are given.
        """
        if not endpoints:
            raise ValueError("At least one ledger endpoint must be specified")
        self.endpoints: tuple[str, ...] = tuple(endpoints)
        self.identity = identity
        self.signer = signer
        self.oracle = oracle
        self.refresh_interval = refresh_interval
        self.initial_delay = initial_delay
        self.client_factory = client_factory

        self._clients: dict[str, LedgerClient] = {}
        self._session: Session | None = None
        self._active_index: int | None = None
        self._sample_tasks: set[asyncio.Task] = set()

    @property
    def session(self) -> Session | None:
        """The active Session, or None before the first successful cycle."""
        return self._session

    @property
    def active_endpoint(self) -> str | None:
        if self._active_index is None:
            return None
        return self.endpoints[self._active_index]

    def _client_for(self, url: str) -> LedgerClient:
        client = self._clients.get(url)
        if client is None:
            client = self.client_factory(url)
            self._clients[url] = client
        return client

    async def refresh(self) -> int | None:
        """Run one refresh cycle.

        :returns: Index of the adopted endpoint, or None if all failed.
        """
        for index, url in enumerate(self.endpoints):
            client = self._client_for(url)
            try:
                info = await client.get_info()
                chain_id = info["chain_id"]
            except (LedgerError, KeyError, TypeError) as e:
                logger.error(f"Error getting chain info from {url}: {e}")
                continue

            self._adopt(index, url, client, chain_id)
            return index

        logger.warning(
            f"All {len(self.endpoints)} endpoints failed, "
            f"keeping session {self._session!r}"
        )
        return None

    def _adopt(self, index: int, url: str, client: LedgerClient, chain_id: str) -> None:
        if index != self._active_index:
            logger.info(f"Setting RPC endpoint to {url}")

        self._session = Session(
            identity=self.identity,
            chain_id=chain_id,
            url=url,
            client=client,
            signer=self.signer,
        )
        self._active_index = index

        if self.oracle is not None:
            task = asyncio.create_task(self.oracle.sample(client))
            self._sample_tasks.add(task)
            task.add_done_callback(self._sample_tasks.discard)

    async def run(self) -> None:
        """Run refresh cycles forever.

        A new cycle starts only after the previous one has fully resolved.
        Failures inside a cycle are logged and never escape the loop.
        """
        logger.info(
            f"Starting endpoint refresh loop over {len(self.endpoints)} endpoints "
            f"every {self.refresh_interval}s"
        )
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Endpoint refresh cycle failed")
            await asyncio.sleep(self.refresh_interval)

    async def close(self) -> None:
        """Cancel pending sampling passes and close ledger clients."""
        for task in list(self._sample_tasks):
            task.cancel()
        if self._sample_tasks:
            await asyncio.gather(*self._sample_tasks, return_exceptions=True)
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
