"""PriceOracle: Derives quoted gas prices from ledger-side fee state.

Each sampling pass reads, from the currently active endpoint:
    - the EVM contract config row (base gas price and contract version)
    - queued base price changes (only when dynamic fees are active)
    - the CPU rental market (only when the fee strategy needs it)

and publishes a new immutable :class:`PricingSnapshot`. A failed pass leaves
the previous snapshot in place; stale prices are the accepted degradation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .FeeStrategy import FeeStrategy, ZeroFeeStrategy
from .LedgerClient import LedgerError
from .PriceState import PriceState, PricingSnapshot
from .SafetyWindow import SafetyWindow

if TYPE_CHECKING:
    from .LedgerClient import LedgerClient

logger = logging.getLogger(__name__)

# Quoted until the first successful sample (150 gwei).
DEFAULT_GAS_PRICE = 150_000_000_000


def parse_feature_version(value: Any) -> int:
    """Read the contract version from the config row's ``evm_version`` field.

    The field is absent on legacy contracts, a plain integer on some
    versions, and a ``{"cached_version": n, "pending_version": ...}`` object
    on others. Only the cached (active) version is used.

    :param value: Raw ``evm_version`` field.
    :returns: Active contract version.
    """
    if value is None:
        return 0
    if isinstance(value, dict):
        return int(value.get("cached_version") or 0)
    return int(value)


class PriceOracle:
    """Samples ledger fee state and publishes pricing snapshots.

    :ivar fee_strategy: Strategy computing the priority fee.
    :ivar evm_account: EVM contract account.
    :ivar evm_scope: Scope of the EVM contract tables.
    :ivar priority_fee_window: Safety window over computed priority fees.
    """

    def __init__(
        self,
        fee_strategy: FeeStrategy | None = None,
        evm_account: str = "eosio.evm",
        evm_scope: str = "eosio.evm",
        priority_fee_window: SafetyWindow | None = None,
        default_gas_price: int = DEFAULT_GAS_PRICE,
    ) -> None:
        """Initialize the oracle.

        :param fee_strategy: Priority fee strategy (default: zero fee).
        :param evm_account: EVM contract account.
        :param evm_scope: Scope of the EVM contract tables.
        :param priority_fee_window: Safety window (default: 60s min).
        :param default_gas_price: Price quoted before the first sample.
        """
        self.fee_strategy = fee_strategy or ZeroFeeStrategy()
        self.evm_account = evm_account
        self.evm_scope = evm_scope
        self.priority_fee_window = priority_fee_window or SafetyWindow()
        self._snapshot = PricingSnapshot(PriceState(base_price=default_gas_price))
        # Sequence numbers of the last started and the last published pass.
        self._started_seq = 0
        self._published_seq = 0

    @property
    def snapshot(self) -> PricingSnapshot:
        return self._snapshot

    def gas_price(self) -> int:
        return self._snapshot.gas_price

    def max_priority_fee(self) -> int:
        return self._snapshot.max_priority_fee

    def min_inclusion_price(self) -> int | None:
        return self._snapshot.min_inclusion_price

    async def read_price_state(self, client: LedgerClient) -> PriceState:
        """Read a complete PriceState from one endpoint.

        :param client: Ledger client of the active endpoint.
        :returns: Freshly sampled PriceState.
        :raises LedgerError: On query failure.
        :raises KeyError, ValueError, TypeError: On malformed rows.
        """
        row = await client.query_fee_config(self.evm_account, self.evm_scope)
        base_price = int(row["gas_price"])
        feature_version = parse_feature_version(row.get("evm_version"))

        max_queued = 0
        if feature_version >= 1:
            queued = await client.query_price_queue(self.evm_account, self.evm_scope)
            max_queued = max((int(r["price"]) for r in queued), default=0)

        cpu_cost = 0
        if self.fee_strategy.needs_resource_market:
            cpu_cost = await client.query_resource_market()

        return PriceState(
            base_price=base_price,
            max_queued_base_price=max_queued,
            feature_version=feature_version,
            cpu_cost_per_unit=cpu_cost,
        )

    async def sample(self, client: LedgerClient) -> bool:
        """Run one sampling pass and publish a new snapshot.

        Passes may overlap. A pass that finishes after a later-started pass
        has already published is discarded, so neither the snapshot nor the
        priority fee window ever moves back to older ledger state.

        :param client: Ledger client of the active endpoint.
        :returns: True if a new snapshot was published.
        """
        self._started_seq += 1
        seq = self._started_seq
        try:
            state = await self.read_price_state(client)
        except (LedgerError, KeyError, IndexError, ValueError, TypeError) as e:
            logger.error(f"Error sampling gas price from {client.url}: {e}")
            return False

        if seq < self._published_seq:
            logger.debug(
                f"Discarding gas price sample #{seq} from {client.url}, "
                f"#{self._published_seq} already published"
            )
            return False

        if state.dynamic_fee_enabled:
            priority_fee = self.fee_strategy.compute(state)
            safe_priority_fee = self.priority_fee_window.push(priority_fee)
        else:
            priority_fee = 0
            safe_priority_fee = 0

        snapshot = PricingSnapshot(
            state=state,
            priority_fee=priority_fee,
            safe_priority_fee=safe_priority_fee,
        )
        previous = self._snapshot
        self._snapshot = snapshot
        self._published_seq = seq

        if snapshot != previous:
            logger.info(
                f"Gas price: {hex(snapshot.gas_price)} "
                f"(base={state.base_price}, queued={state.max_queued_base_price}, "
                f"version={state.feature_version}, priority_fee={priority_fee}, "
                f"min_inclusion={snapshot.min_inclusion_price})"
            )
        else:
            logger.debug(f"Gas price unchanged: {hex(snapshot.gas_price)}")
        return True
