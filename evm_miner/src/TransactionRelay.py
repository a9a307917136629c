"""TransactionRelay: Wraps raw EVM transactions into signed ledger actions.

The EVM transaction hash returned to the caller is the Keccak-256 digest of
the raw payload. It depends only on the payload, so it is computed (and
logged) before any network call and is the same whether or not submission
succeeds.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from web3 import Web3

from .AntelopeCodec import Action, Transaction, TransactionHeader, pack_pushtx_data
from .LedgerClient import LedgerHTTPError, describe_ledger_error

if TYPE_CHECKING:
    from .PriceOracle import PriceOracle
    from .Session import MinerIdentity, Session

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Base exception for relay failures."""

    pass


class SubmissionError(RelayError):
    """Raised when a transaction could not be submitted to the ledger."""

    pass


class NoActiveSessionError(SubmissionError):
    """Raised when no endpoint has been adopted yet."""

    pass


def strip_hex_prefix(raw_tx_hex: str) -> str:
    if raw_tx_hex[:2] in ("0x", "0X"):
        return raw_tx_hex[2:]
    return raw_tx_hex


def decode_raw_transaction(raw_tx_hex: str) -> bytes:
    """Decode a ``0x``-prefixed hex payload.

    :param raw_tx_hex: Hex-encoded raw transaction.
    :returns: Payload bytes.
    :raises ValueError: If the payload is not valid hex.
    """
    if not isinstance(raw_tx_hex, str):
        raise ValueError(f"Raw transaction must be a hex string, got {type(raw_tx_hex).__name__}")
    try:
        return bytes.fromhex(strip_hex_prefix(raw_tx_hex))
    except ValueError as e:
        raise ValueError(f"Invalid raw transaction hex: {e}") from e


def content_hash(raw_tx_hex: str) -> str:
    """Compute the EVM transaction hash of a raw payload.

    :param raw_tx_hex: Hex-encoded raw transaction.
    :returns: ``0x``-prefixed Keccak-256 hex digest.
    """
    return Web3.to_hex(Web3.keccak(decode_raw_transaction(raw_tx_hex)))


class TransactionRelay:
    """Relays raw EVM transactions as ``pushtx`` actions.

    :ivar identity: Miner identity authorizing each action.
    :ivar evm_account: EVM contract account receiving ``pushtx``.
    :ivar expire_sec: Transaction validity window in seconds.
    :ivar retry_tx: Ask the ledger to retry submission internally.
    :ivar retry_tx_num_blocks: Blocks the ledger waits before reporting a retried transaction.
    :ivar push_count: Per-process submission counter for log correlation.
    """

    ACTION_NAME = "pushtx"

    def __init__(
        self,
        identity: MinerIdentity,
        oracle: PriceOracle,
        session_provider: Callable[[], Session | None],
        evm_account: str = "eosio.evm",
        expire_sec: int = 60,
        retry_tx: bool = True,
        retry_tx_num_blocks: int = 1,
    ) -> None:
        """Initialize the relay.

        :param identity: Miner identity.
        :param oracle: Price oracle providing the current snapshot.
        :param session_provider: Returns the active Session or None.
        :param evm_account: EVM contract account.
        :param expire_sec: Transaction validity window (default: 60).
        :param retry_tx: Ledger-side retry flag (default: True).
        :param retry_tx_num_blocks: Blocks to wait for a retried transaction (default: 1).
        """
        self.identity = identity
        self.oracle = oracle
        self.session_provider = session_provider
        self.evm_account = evm_account
        self.expire_sec = expire_sec
        self.retry_tx = retry_tx
        self.retry_tx_num_blocks = retry_tx_num_blocks
        self.push_count = 0

    def build_action(self, rlptx: bytes, min_inclusion_price: int | None) -> Action:
        """Build the ``pushtx`` action for a raw transaction.

        :param rlptx: Raw EVM transaction bytes.
        :param min_inclusion_price: Attached only when dynamic fees are active.
        :returns: Action ready to be packed.
        """
        return Action(
            account=self.evm_account,
            name=self.ACTION_NAME,
            authorization=((self.identity.account, self.identity.permission),),
            data=pack_pushtx_data(self.identity.account, rlptx, min_inclusion_price),
        )

    async def _push(self, rlptx: bytes) -> dict:
        session = self.session_provider()
        if session is None:
            raise NoActiveSessionError("no active ledger session")

        snapshot = self.oracle.snapshot
        action = self.build_action(rlptx, snapshot.min_inclusion_price)

        info = await session.client.get_info()
        header = TransactionHeader.from_chain_info(info, self.expire_sec)
        packed_trx = Transaction(header=header, actions=(action,)).pack()

        signatures = await session.sign(packed_trx)
        return await session.client.send_transaction(
            signatures,
            packed_trx,
            retry_trx=self.retry_tx,
            retry_trx_num_blocks=self.retry_tx_num_blocks,
        )

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        """Relay a raw EVM transaction.

        :param raw_tx_hex: ``0x``-prefixed hex payload.
        :returns: EVM transaction hash.
        :raises ValueError: If the payload is not valid hex.
        :raises SubmissionError: If signing or submission failed.
        """
        started = time.monotonic()
        trx_count = self.push_count
        self.push_count += 1

        rlptx = decode_raw_transaction(raw_tx_hex)
        evm_trx = content_hash(raw_tx_hex)
        logger.info(f"Pushing tx #{trx_count}, evm_trx {evm_trx}")

        try:
            result = await self._push(rlptx)
        except NoActiveSessionError as e:
            logger.error(f"Error pushing #{trx_count} {evm_trx}: {e}")
            raise NoActiveSessionError(
                f"error pushing #{trx_count} evm_trx {evm_trx} from EVM miner: {e}"
            ) from e
        except Exception as e:
            detail = describe_ledger_error(e.body) if isinstance(e, LedgerHTTPError) else str(e)
            logger.error(f"Error pushing #{trx_count} {evm_trx}: {detail}")
            raise SubmissionError(
                f"error pushing #{trx_count} evm_trx {evm_trx} from EVM miner: {detail}"
            ) from e
        finally:
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.info(f"Tx #{trx_count} latency {latency_ms}ms")

        logger.info(f"Pushed tx #{trx_count} ({result.get('transaction_id')})")
        return evm_trx
