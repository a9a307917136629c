"""MinerConfig: Validated runtime configuration for the EVM miner."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


def parse_endpoints(value: str | None) -> tuple[str, ...]:
    """Split an endpoint list on ``|`` or ``,``.

    :param value: Raw endpoint list, e.g. ``"https://a|https://b"``.
    :returns: Tuple of endpoint URLs in configured order.
    """
    if not value:
        return ()
    return tuple(
        url.strip() for url in value.replace(",", "|").split("|") if url.strip()
    )


def parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class MinerConfig:
    """Miner configuration.

    :ivar signing_key: Public key of the miner's signing key in the wallet.
    :ivar miner_account: Account authorizing relayed actions.
    :ivar miner_permission: Permission level of the miner account.
    :ivar rpc_endpoints: Ledger endpoints tried in order.
    :ivar wallet_url: Wallet daemon URL or socket path ("" = default socket).
    :ivar host: Address the JSON-RPC server binds to.
    :ivar port: Port the JSON-RPC server binds to.
    :ivar evm_account: EVM contract account.
    :ivar evm_scope: Scope of the EVM contract tables.
    :ivar expire_sec: Transaction validity window in seconds.
    :ivar retry_tx: Ask the ledger to retry submission internally.
    :ivar retry_tx_num_blocks: Blocks the ledger waits before reporting a retried transaction.
    :ivar miner_fee_mode: Priority fee strategy name.
    :ivar fixed_miner_fee: Fee for the ``fixed`` strategy.
    :ivar proportional_fee_rate: Fraction of base price for ``proportional``.
    :ivar gas_per_us: Gas executed per CPU microsecond for ``cpu``.
    :ivar miner_markup_percentage: Markup applied by the ``cpu`` strategy.
    :ivar gas_token_exchange_rate: Ledger token to gas token exchange rate.
    :ivar priority_fee_window: Safety window for quoted priority fees (s).
    :ivar priority_fee_aggregate: ``min`` or ``max`` over the window.
    :ivar refresh_interval: Seconds between endpoint refresh cycles.
    """

    signing_key: str
    miner_account: str
    rpc_endpoints: tuple[str, ...]
    miner_permission: str = "active"
    wallet_url: str = ""
    host: str = "0.0.0.0"
    port: int = 50305
    evm_account: str = "eosio.evm"
    evm_scope: str = "eosio.evm"
    expire_sec: int = 60
    retry_tx: bool = True
    retry_tx_num_blocks: int = 1
    miner_fee_mode: str = "fixed"
    fixed_miner_fee: Decimal = field(default=Decimal(0))
    proportional_fee_rate: Decimal = field(default=Decimal(0))
    gas_per_us: Decimal = field(default=Decimal(74))
    miner_markup_percentage: Decimal = field(default=Decimal(0))
    gas_token_exchange_rate: Decimal = field(default=Decimal(1))
    priority_fee_window: float = 60.0
    priority_fee_aggregate: str = "min"
    refresh_interval: float = 5.0

    def validate(self) -> None:
        """Check the configuration.

        :raises ValueError: On the first invalid option found.
        """
        if not self.signing_key:
            raise ValueError("Missing SIGNING_KEY")
        if not self.miner_account:
            raise ValueError("Missing MINER_ACCOUNT")
        if not self.rpc_endpoints:
            raise ValueError("Missing RPC_ENDPOINTS")
        if self.expire_sec < 1:
            raise ValueError("expire_sec must be at least 1")
        if self.retry_tx_num_blocks < 0:
            raise ValueError("retry_tx_num_blocks must not be negative")
        if self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        if self.priority_fee_window < 0:
            raise ValueError("priority_fee_window must not be negative")
        if self.priority_fee_aggregate not in ("min", "max"):
            raise ValueError(
                f"priority_fee_aggregate must be min or max, got {self.priority_fee_aggregate}"
            )
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port {self.port}")
