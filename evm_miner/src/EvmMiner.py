"""EvmMiner: Wires configuration into the running miner.

Architecture:
    - EndpointManager keeps one live Session and triggers price sampling
    - PriceOracle publishes immutable pricing snapshots
    - TransactionRelay turns raw EVM transactions into signed ``pushtx`` actions
    - Gateway serves the Ethereum JSON-RPC methods over HTTP
"""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from .EndpointManager import EndpointManager
from .FeeStrategy import get_fee_strategy
from .Gateway import Gateway
from .MinerConfig import MinerConfig
from .PriceOracle import PriceOracle
from .SafetyWindow import SafetyWindow
from .Session import MinerIdentity
from .Signer import Signer, WalletSigner
from .TransactionRelay import TransactionRelay

logger = logging.getLogger(__name__)


class EvmMiner:
    """Main orchestrator.

    :ivar config: Validated miner configuration.
    :ivar oracle: Price oracle.
    :ivar endpoint_manager: Endpoint failover manager.
    :ivar relay: Transaction relay.
    :ivar gateway: JSON-RPC facade.
    """

    def __init__(self, config: MinerConfig, signer: Signer | None = None) -> None:
        """Build all components from the configuration.

        :param config: Miner configuration.
        :param signer: Optional signer override (default: wallet daemon).
        :raises ValueError: If the configuration is invalid.
        """
        config.validate()
        self.config = config
        self.signer = signer or WalletSigner(config.wallet_url)

        identity = MinerIdentity(
            account=config.miner_account,
            permission=config.miner_permission,
            signing_key=config.signing_key,
        )

        self.oracle = PriceOracle(
            fee_strategy=get_fee_strategy(config.miner_fee_mode, config),
            evm_account=config.evm_account,
            evm_scope=config.evm_scope,
            priority_fee_window=SafetyWindow(
                window_ms=int(config.priority_fee_window * 1000),
                aggregate=config.priority_fee_aggregate,
            ),
        )
        self.endpoint_manager = EndpointManager(
            endpoints=config.rpc_endpoints,
            identity=identity,
            signer=self.signer,
            oracle=self.oracle,
            refresh_interval=config.refresh_interval,
        )
        self.relay = TransactionRelay(
            identity=identity,
            oracle=self.oracle,
            session_provider=lambda: self.endpoint_manager.session,
            evm_account=config.evm_account,
            expire_sec=config.expire_sec,
            retry_tx=config.retry_tx,
            retry_tx_num_blocks=config.retry_tx_num_blocks,
        )
        self.gateway = Gateway(self.oracle, self.relay, self.endpoint_manager)

        logger.info(
            f"EvmMiner initialized: account={identity!r}, "
            f"endpoints={list(config.rpc_endpoints)}, "
            f"fee_strategy={self.oracle.fee_strategy!r}"
        )

    async def run(self) -> None:
        """Serve JSON-RPC and run the refresh loop until the server stops."""
        server = uvicorn.Server(
            uvicorn.Config(
                self.gateway.create_app(),
                host=self.config.host,
                port=self.config.port,
                log_level="warning",
            )
        )
        refresh_task = asyncio.create_task(self.endpoint_manager.run())
        try:
            await server.serve()
        finally:
            refresh_task.cancel()
            await asyncio.gather(refresh_task, return_exceptions=True)
            await self.endpoint_manager.close()
            await self.signer.close()
