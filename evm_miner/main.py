#!/usr/bin/env python3
"""EVM Miner.

Accepts Ethereum JSON-RPC calls, relays raw EVM transactions to the ledger as
signed ``pushtx`` actions and quotes gas prices derived from the EVM
contract's fee configuration.

Configure with env vars or CLI arguments. Run with ``python -m evm_miner.main``.
"""

import argparse
import asyncio
import logging
import os
import sys
from decimal import Decimal, InvalidOperation

from .src.EvmMiner import EvmMiner
from .src.FeeStrategy import get_available_fee_strategies
from .src.MinerConfig import MinerConfig, parse_bool, parse_endpoints

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser. Environment variables provide the defaults."""
    env = os.environ.get
    parser = argparse.ArgumentParser(
        description="EVM Miner: Ethereum JSON-RPC relay and gas price oracle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available fee modes:
  {', '.join(get_available_fee_strategies())}

Examples:
  # Relay through two endpoints, zero priority fee
  python -m evm_miner.main --miner-account evmminer1111 \\
      --signing-key PUB_K1_... \\
      --rpc-endpoints "https://a.example.com|https://b.example.com"

  # Cover CPU rental costs with a 10% markup
  python -m evm_miner.main --miner-fee-mode cpu --miner-markup-percentage 10

Environment variables (CLI args take precedence):
  SIGNING_KEY, MINER_ACCOUNT, MINER_PERMISSION, RPC_ENDPOINTS, WALLET_URL,
  HOST, PORT, EVM_ACCOUNT, EVM_SCOPE, EXPIRE_SEC, RETRY_TX,
  RETRY_TX_NUM_BLOCKS, MINER_FEE_MODE,
  FIXED_MINER_FEE, PROPORTIONAL_FEE_RATE, GAS_PER_US, MINER_MARKUP_PERCENTAGE,
  GAS_TOKEN_EXCHANGE_RATE, PRIORITY_FEE_WINDOW, PRIORITY_FEE_AGGREGATE,
  REFRESH_INTERVAL
""",
    )

    parser.add_argument(
        "--signing-key",
        dest="signing_key",
        help="Public key of the miner key held by the wallet daemon",
        default=env("SIGNING_KEY"),
    )
    parser.add_argument(
        "--miner-account",
        dest="miner_account",
        help="Ledger account authorizing relayed transactions",
        default=env("MINER_ACCOUNT"),
    )
    parser.add_argument(
        "--miner-permission",
        dest="miner_permission",
        help="Permission of the miner account (default: active)",
        default=env("MINER_PERMISSION") or "active",
    )
    parser.add_argument(
        "--rpc-endpoints",
        dest="rpc_endpoints",
        help="Ledger endpoints separated by '|', tried in order",
        default=env("RPC_ENDPOINTS"),
    )
    parser.add_argument(
        "--wallet-url",
        dest="wallet_url",
        help="Wallet daemon URL or socket path (default: keosd socket)",
        default=env("WALLET_URL") or "",
    )
    parser.add_argument(
        "--host",
        help="Address to listen on (default: 0.0.0.0)",
        default=env("HOST") or "0.0.0.0",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (default: 50305)",
        default=env("PORT") or "50305",
    )
    parser.add_argument(
        "--evm-account",
        dest="evm_account",
        help="EVM contract account (default: eosio.evm)",
        default=env("EVM_ACCOUNT") or "eosio.evm",
    )
    parser.add_argument(
        "--evm-scope",
        dest="evm_scope",
        help="EVM contract table scope (default: eosio.evm)",
        default=env("EVM_SCOPE") or "eosio.evm",
    )
    parser.add_argument(
        "--expire-sec",
        dest="expire_sec",
        type=int,
        help="Seconds a relayed transaction stays valid (default: 60)",
        default=env("EXPIRE_SEC") or "60",
    )
    parser.add_argument(
        "--retry-tx",
        dest="retry_tx",
        type=parse_bool,
        help="Ask the ledger to retry transactions (default: true)",
        default=env("RETRY_TX") or "true",
    )
    parser.add_argument(
        "--retry-tx-num-blocks",
        dest="retry_tx_num_blocks",
        type=int,
        help="Blocks the ledger waits for a retried transaction, 0 waits for irreversibility (default: 1)",
        default=env("RETRY_TX_NUM_BLOCKS") or "1",
    )
    parser.add_argument(
        "--miner-fee-mode",
        dest="miner_fee_mode",
        help="Priority fee mode: fixed, proportional or cpu (default: fixed)",
        default=env("MINER_FEE_MODE") or "fixed",
    )
    parser.add_argument(
        "--fixed-miner-fee",
        dest="fixed_miner_fee",
        type=decimal_arg,
        help="Priority fee for fixed mode (default: 0)",
        default=env("FIXED_MINER_FEE") or "0",
    )
    parser.add_argument(
        "--proportional-fee-rate",
        dest="proportional_fee_rate",
        type=decimal_arg,
        help="Fraction of the base price for proportional mode (default: 0)",
        default=env("PROPORTIONAL_FEE_RATE") or "0",
    )
    parser.add_argument(
        "--gas-per-us",
        dest="gas_per_us",
        type=decimal_arg,
        help="Gas executed per CPU microsecond for cpu mode (default: 74)",
        default=env("GAS_PER_US") or "74",
    )
    parser.add_argument(
        "--miner-markup-percentage",
        dest="miner_markup_percentage",
        type=decimal_arg,
        help="Markup on CPU cost for cpu mode (default: 0)",
        default=env("MINER_MARKUP_PERCENTAGE") or "0",
    )
    parser.add_argument(
        "--gas-token-exchange-rate",
        dest="gas_token_exchange_rate",
        type=decimal_arg,
        help="Ledger token to gas token exchange rate (default: 1)",
        default=env("GAS_TOKEN_EXCHANGE_RATE") or "1",
    )
    parser.add_argument(
        "--priority-fee-window",
        dest="priority_fee_window",
        type=float,
        help="Seconds a quoted priority fee stays honored (default: 60)",
        default=env("PRIORITY_FEE_WINDOW") or "60",
    )
    parser.add_argument(
        "--priority-fee-aggregate",
        dest="priority_fee_aggregate",
        choices=["min", "max"],
        help="Aggregate over the priority fee window (default: min)",
        default=env("PRIORITY_FEE_AGGREGATE") or "min",
    )
    parser.add_argument(
        "--refresh-interval",
        dest="refresh_interval",
        type=float,
        help="Seconds between endpoint refresh cycles (default: 5)",
        default=env("REFRESH_INTERVAL") or "5",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> MinerConfig:
    return MinerConfig(
        signing_key=args.signing_key or "",
        miner_account=args.miner_account or "",
        miner_permission=args.miner_permission,
        rpc_endpoints=parse_endpoints(args.rpc_endpoints),
        wallet_url=args.wallet_url,
        host=args.host,
        port=args.port,
        evm_account=args.evm_account,
        evm_scope=args.evm_scope,
        expire_sec=args.expire_sec,
        retry_tx=args.retry_tx,
        retry_tx_num_blocks=args.retry_tx_num_blocks,
        miner_fee_mode=args.miner_fee_mode,
        fixed_miner_fee=args.fixed_miner_fee,
        proportional_fee_rate=args.proportional_fee_rate,
        gas_per_us=args.gas_per_us,
        miner_markup_percentage=args.miner_markup_percentage,
        gas_token_exchange_rate=args.gas_token_exchange_rate,
        priority_fee_window=args.priority_fee_window,
        priority_fee_aggregate=args.priority_fee_aggregate,
        refresh_interval=args.refresh_interval,
    )


def main() -> None:
    """Main entry point for the EVM Miner CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = config_from_args(args)
    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        parser.error(str(e))

    # Log configuration
    logger.info("=" * 60)
    logger.info("EVM Miner")
    logger.info("=" * 60)
    logger.info(f"Listening:         http://{config.host}:{config.port}")
    logger.info(f"Miner Account:     {config.miner_account}@{config.miner_permission}")
    logger.info(f"EVM Contract:      {config.evm_account} (scope {config.evm_scope})")
    logger.info(f"RPC Endpoints:     {', '.join(config.rpc_endpoints)}")
    logger.info(f"Fee Mode:          {config.miner_fee_mode}")
    logger.info(
        f"Fee Window:        {config.priority_fee_window}s "
        f"({config.priority_fee_aggregate})"
    )
    logger.info(f"Expire:            {config.expire_sec}s")
    logger.info(f"Retry Tx:          {config.retry_tx} ({config.retry_tx_num_blocks} blocks)")
    logger.info("=" * 60)

    try:
        miner = EvmMiner(config)
        asyncio.run(miner.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
