"""PriceState: Immutable pricing values published by the oracle.

Readers take a single :class:`PricingSnapshot` reference and derive every
quoted value from it, so a quote never mixes two refresh cycles.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PriceState:
    """Ledger-side fee state sampled in one refresh cycle.

    :ivar base_price: Base gas price stored in the EVM contract config.
    :ivar max_queued_base_price: Highest pending base price change, or 0.
    :ivar feature_version: EVM contract version (0 = legacy).
    :ivar cpu_cost_per_unit: CPU cost per microsecond (cpu strategy only).
    """

    base_price: int
    max_queued_base_price: int = 0
    feature_version: int = 0
    cpu_cost_per_unit: int = 0

    @property
    def dynamic_fee_enabled(self) -> bool:
        return self.feature_version >= 1

    @property
    def safe_base_price(self) -> int:
        """Base price that stays sufficient across any queued increase."""
        return max(self.base_price, self.max_queued_base_price)


@dataclass(frozen=True)
class PricingSnapshot:
    """Price state plus the priority fee derived from it.

    :ivar state: Sampled price state.
    :ivar priority_fee: Priority fee computed from this state.
    :ivar safe_priority_fee: Windowed aggregate of recent priority fees.
    """

    state: PriceState
    priority_fee: int = 0
    safe_priority_fee: int = 0

    @property
    def gas_price(self) -> int:
        if not self.state.dynamic_fee_enabled:
            return self.state.base_price
        return self.state.safe_base_price + self.priority_fee

    @property
    def max_priority_fee(self) -> int:
        if not self.state.dynamic_fee_enabled:
            return 0
        return self.priority_fee

    @property
    def min_inclusion_price(self) -> int | None:
        if not self.state.dynamic_fee_enabled:
            return None
        return self.safe_priority_fee
