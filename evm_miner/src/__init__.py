"""
EVM Miner - Ethereum JSON-RPC to ledger action relay

This module provides:
- EndpointManager: Ledger endpoint failover and session refresh
- PriceOracle: Gas price and priority fee derivation from ledger fee state
- SafetyWindow: Windowed min/max over recently quoted values
- TransactionRelay: Raw EVM transaction packaging, signing and submission
- Gateway: JSON-RPC facade (eth_sendRawTransaction, eth_gasPrice,
  eth_maxPriorityFeePerGas)
"""

from .EndpointManager import EndpointManager
from .EvmMiner import EvmMiner
from .FeeStrategy import FeeStrategy, get_available_fee_strategies, get_fee_strategy
from .Gateway import Gateway
from .LedgerClient import LedgerClient, LedgerError, LedgerHTTPError
from .MinerConfig import MinerConfig
from .PriceOracle import DEFAULT_GAS_PRICE, PriceOracle
from .PriceState import PriceState, PricingSnapshot
from .SafetyWindow import SafetyWindow
from .Session import MinerIdentity, Session
from .Signer import Signer, SignerError, WalletSigner
from .TransactionRelay import (
    NoActiveSessionError,
    RelayError,
    SubmissionError,
    TransactionRelay,
)

__all__ = [
    "DEFAULT_GAS_PRICE",
    "EndpointManager",
    "EvmMiner",
    "FeeStrategy",
    "Gateway",
    "LedgerClient",
    "LedgerError",
    "LedgerHTTPError",
    "MinerConfig",
    "MinerIdentity",
    "NoActiveSessionError",
    "PriceOracle",
    "PriceState",
    "PricingSnapshot",
    "RelayError",
    "SafetyWindow",
    "Session",
    "Signer",
    "SignerError",
    "SubmissionError",
    "TransactionRelay",
    "WalletSigner",
    "get_available_fee_strategies",
    "get_fee_strategy",
]
