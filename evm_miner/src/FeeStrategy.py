"""FeeStrategy: Priority fee strategies chosen once at startup.

Strategies register themselves by name. An unknown or empty name resolves to
:class:`ZeroFeeStrategy` so a misconfiguration degrades to a zero fee
instead of stopping the miner.

.. code-block:: python

    @register_fee_strategy
    class MyStrategy(FeeStrategy):
        name = "mine"

        @classmethod
        def from_config(cls, config):
            return cls()

        def compute(self, state):
            return 1
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import ROUND_CEILING, Decimal
from typing import ClassVar

from .MinerConfig import MinerConfig
from .PriceState import PriceState

logger = logging.getLogger(__name__)


def ceil_fee(value: Decimal) -> int:
    """Round a fee up to the next integer, never below zero."""
    if value <= 0:
        return 0
    return int(value.to_integral_value(rounding=ROUND_CEILING))


class FeeStrategy(ABC):
    """Base class for priority fee strategies.

    :cvar name: Configured name selecting this strategy.
    :cvar needs_resource_market: Whether the oracle must sample CPU prices.
    """

    name: ClassVar[str] = ""
    needs_resource_market: ClassVar[bool] = False

    @classmethod
    @abstractmethod
    def from_config(cls, config: MinerConfig) -> FeeStrategy:
        pass

    @abstractmethod
    def compute(self, state: PriceState) -> int:
        """Compute the priority fee for a sampled state.

        :param state: Sampled price state.
        :returns: Non-negative integer fee.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


FEE_STRATEGY_REGISTRY: dict[str, type[FeeStrategy]] = {}


def register_fee_strategy(cls: type[FeeStrategy]) -> type[FeeStrategy]:
    """Decorator to register a strategy class in the global registry.

    :raises ValueError: If the strategy has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Strategy {cls.__name__} must define a 'name' class variable")
    FEE_STRATEGY_REGISTRY[cls.name] = cls
    return cls


class ZeroFeeStrategy(FeeStrategy):
    """Fallback for unknown strategy names."""

    @classmethod
    def from_config(cls, config: MinerConfig) -> ZeroFeeStrategy:
        return cls()

    def compute(self, state: PriceState) -> int:
        return 0


@register_fee_strategy
class FixedFeeStrategy(FeeStrategy):
    name = "fixed"

    def __init__(self, fee: Decimal | int = 0) -> None:
        self.fee = Decimal(fee)

    @classmethod
    def from_config(cls, config: MinerConfig) -> FixedFeeStrategy:
        return cls(config.fixed_miner_fee)

    def compute(self, state: PriceState) -> int:
        return ceil_fee(self.fee)

    def __repr__(self) -> str:
        return f"FixedFeeStrategy(fee={self.fee})"


@register_fee_strategy
class ProportionalFeeStrategy(FeeStrategy):
    """Fee as a fraction of the current base price."""

    name = "proportional"

    def __init__(self, rate: Decimal | int = 0) -> None:
        self.rate = Decimal(rate)

    @classmethod
    def from_config(cls, config: MinerConfig) -> ProportionalFeeStrategy:
        return cls(config.proportional_fee_rate)

    def compute(self, state: PriceState) -> int:
        return ceil_fee(self.rate * state.base_price)

    def __repr__(self) -> str:
        return f"ProportionalFeeStrategy(rate={self.rate})"


@register_fee_strategy
class CpuFeeStrategy(FeeStrategy):
    """Fee covering the miner's CPU cost for executing one unit of gas.

    ``fee = cpu_cost_per_unit / gas_per_us * (1 + markup%) * exchange_rate``
    """

    name = "cpu"
    needs_resource_market = True

    DEFAULT_GAS_PER_US = Decimal(74)

    def __init__(
        self,
        gas_per_us: Decimal | int = DEFAULT_GAS_PER_US,
        markup_percentage: Decimal | int = 0,
        exchange_rate: Decimal | int = 1,
    ) -> None:
        """Initialize the strategy.

        :param gas_per_us: Gas executed per CPU microsecond. Zero is treated
            as one.
        :param markup_percentage: Markup added on top of the raw CPU cost.
        :param exchange_rate: Ledger token to gas token exchange rate.
        """
        self.gas_per_us = Decimal(gas_per_us) or Decimal(1)
        self.markup_percentage = Decimal(markup_percentage)
        self.exchange_rate = Decimal(exchange_rate)

    @classmethod
    def from_config(cls, config: MinerConfig) -> CpuFeeStrategy:
        return cls(
            gas_per_us=config.gas_per_us,
            markup_percentage=config.miner_markup_percentage,
            exchange_rate=config.gas_token_exchange_rate,
        )

    def compute(self, state: PriceState) -> int:
        fee = (
            Decimal(state.cpu_cost_per_unit)
            / self.gas_per_us
            * (1 + self.markup_percentage / 100)
            * self.exchange_rate
        )
        return ceil_fee(fee)

    def __repr__(self) -> str:
        return (
            f"CpuFeeStrategy(gas_per_us={self.gas_per_us}, "
            f"markup={self.markup_percentage}%, rate={self.exchange_rate})"
        )


def get_fee_strategy(name: str | None, config: MinerConfig) -> FeeStrategy:
    """Build the strategy selected by name.

    :param name: Strategy name (e.g. "fixed", "proportional", "cpu").
    :param config: Miner configuration with strategy parameters.
    :returns: Strategy instance, or ZeroFeeStrategy for unknown names.
    """
    key = (name or "").strip().lower()
    if key not in FEE_STRATEGY_REGISTRY:
        available = ", ".join(get_available_fee_strategies())
        logger.error(
            f"Unknown miner fee mode '{name}', using zero fee. Available: {available}"
        )
        return ZeroFeeStrategy()
    return FEE_STRATEGY_REGISTRY[key].from_config(config)


def get_available_fee_strategies() -> list[str]:
    return sorted(FEE_STRATEGY_REGISTRY.keys())
