"""Unit tests for TransactionRelay."""

import asyncio
import json
import struct
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from evm_miner.src.AntelopeCodec import Transaction, TransactionHeader, name_to_int
from evm_miner.src.FeeStrategy import FixedFeeStrategy
from evm_miner.src.LedgerClient import LedgerClient, LedgerError, LedgerHTTPError
from evm_miner.src.PriceOracle import PriceOracle
from evm_miner.src.PriceState import PriceState, PricingSnapshot
from evm_miner.src.Session import MinerIdentity, Session
from evm_miner.src.TransactionRelay import (
    NoActiveSessionError,
    SubmissionError,
    TransactionRelay,
    content_hash,
)

IDENTITY = MinerIdentity(account="evmminer1111", permission="active", signing_key="PUB_K1_test")
EMPTY_KECCAK = "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
# Keccak-256 of b"\x60\x01"
PAYLOAD_KECCAK = "0x309c67890bde4c575dc23d2cc3b5c3a3d599e312e980e9b61b5bc8f3cd87c8bb"
CHAIN_INFO = {
    "chain_id": "aa" * 32,
    "head_block_time": "2024-01-01T00:00:00.000",
    "last_irreversible_block_id": "0000000a" + "00" * 28,
}


def make_session(send_result=None, send_error=None) -> Session:
    client = MagicMock()
    client.get_info = AsyncMock(return_value=CHAIN_INFO)
    client.send_transaction = AsyncMock(
        return_value=send_result or {"transaction_id": "ff" * 32},
        side_effect=send_error,
    )
    signer = MagicMock()
    signer.sign_digest = AsyncMock(return_value="SIG_K1_test")
    return Session(IDENTITY, CHAIN_INFO["chain_id"], "http://a", client, signer)


def make_relay(session=None, oracle=None, **kwargs) -> TransactionRelay:
    return TransactionRelay(
        identity=IDENTITY,
        oracle=oracle or PriceOracle(),
        session_provider=lambda: session,
        **kwargs,
    )


def dynamic_oracle(priority_fee: int, safe_priority_fee: int) -> PriceOracle:
    oracle = PriceOracle(fee_strategy=FixedFeeStrategy(priority_fee))
    oracle._snapshot = PricingSnapshot(
        PriceState(base_price=100, feature_version=1),
        priority_fee=priority_fee,
        safe_priority_fee=safe_priority_fee,
    )
    return oracle


class TestContentHash:
    """The returned hash depends only on the payload."""

    def test_empty_payload_reference(self) -> None:
        assert content_hash("0x") == EMPTY_KECCAK

    def test_payload_reference(self) -> None:
        assert content_hash("0x6001") == PAYLOAD_KECCAK

    def test_prefix_optional(self) -> None:
        assert content_hash("6001") == content_hash("0x6001")

    def test_invalid_hex(self) -> None:
        with pytest.raises(ValueError, match="Invalid raw transaction hex"):
            content_hash("0xzz")


class TestSendRawTransaction:
    """Test the relay pipeline."""

    def test_success_returns_hash(self) -> None:
        session = make_session()
        relay = make_relay(session)

        tx_hash = asyncio.run(relay.send_raw_transaction("0x6001"))

        assert tx_hash == content_hash("0x6001")
        session.signer.sign_digest.assert_awaited_once()
        session.client.send_transaction.assert_awaited_once()

    def test_same_hash_regardless_of_outcome(self) -> None:
        ok = asyncio.run(make_relay(make_session()).send_raw_transaction("0x6001"))
        relay = make_relay(make_session(send_error=LedgerError("rejected")))
        with pytest.raises(SubmissionError) as exc_info:
            asyncio.run(relay.send_raw_transaction("0x6001"))
        assert ok in str(exc_info.value)
        assert ok == asyncio.run(make_relay(make_session()).send_raw_transaction("0x6001"))

    def test_no_session_fails_fast(self) -> None:
        oracle = MagicMock()
        relay = make_relay(None, oracle=oracle)

        with pytest.raises(NoActiveSessionError, match="no active ledger session"):
            asyncio.run(relay.send_raw_transaction("0x6001"))

    def test_no_session_is_submission_failure(self) -> None:
        assert issubclass(NoActiveSessionError, SubmissionError)

    def test_counter_increments_on_every_call(self) -> None:
        relay = make_relay(None)
        for _ in range(3):
            with pytest.raises(NoActiveSessionError):
                asyncio.run(relay.send_raw_transaction("0x01"))
        assert relay.push_count == 3

    def test_structured_ledger_error_normalized(self) -> None:
        body = {"error": {"what": "x", "details": [{"message": "assertion failure with message: bad nonce"}]}}
        relay = make_relay(make_session(send_error=LedgerHTTPError(500, body)))

        with pytest.raises(SubmissionError, match="bad nonce") as exc_info:
            asyncio.run(relay.send_raw_transaction("0x6001"))
        assert "#0" in str(exc_info.value)

    def test_unstructured_ledger_error_serialized(self) -> None:
        relay = make_relay(make_session(send_error=LedgerHTTPError(502, {"code": 502})))
        with pytest.raises(SubmissionError, match='"code": 502'):
            asyncio.run(relay.send_raw_transaction("0x6001"))

    def test_submission_options(self) -> None:
        session = make_session()
        relay = make_relay(session, retry_tx=False, expire_sec=30)
        asyncio.run(relay.send_raw_transaction("0x6001"))

        args, kwargs = session.client.send_transaction.call_args
        signatures, packed_trx = args
        assert signatures == ["SIG_K1_test"]
        assert kwargs["retry_trx"] is False

        header = TransactionHeader.from_chain_info(CHAIN_INFO, 30)
        assert packed_trx.startswith(header.pack())


class TestActionPayload:
    """Test the pushtx action built for each submission."""

    def packed_action_data(self, oracle: PriceOracle) -> bytes:
        session = make_session()
        relay = make_relay(session, oracle=oracle)
        asyncio.run(relay.send_raw_transaction("0x6001"))
        packed_trx = session.client.send_transaction.call_args[0][1]
        action = relay.build_action(b"\x60\x01", oracle.min_inclusion_price())
        header = TransactionHeader.from_chain_info(CHAIN_INFO, relay.expire_sec)
        assert packed_trx == Transaction(header=header, actions=(action,)).pack()
        return action.data

    def test_authorization(self) -> None:
        relay = make_relay()
        action = relay.build_action(b"\x01", None)
        assert action.account == "eosio.evm"
        assert action.name == "pushtx"
        assert action.authorization == (("evmminer1111", "active"),)

    def test_legacy_has_no_inclusion_price(self) -> None:
        data = self.packed_action_data(PriceOracle())
        assert data == struct.pack("<Q", name_to_int("evmminer1111")) + b"\x02\x60\x01"

    def test_dynamic_attaches_safe_priority_fee(self) -> None:
        data = self.packed_action_data(dynamic_oracle(priority_fee=9, safe_priority_fee=4))
        assert data.endswith(b"\x01" + struct.pack("<Q", 4))


class TestLedgerSubmission:
    """Test the request the relay sends to the ledger."""

    def submitted_payload(self, **relay_kwargs) -> dict:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/chain/get_info":
                return httpx.Response(200, json=CHAIN_INFO)
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"transaction_id": "ff" * 32, "processed": {}})

        async def run():
            client = LedgerClient("http://ledger.test", transport=httpx.MockTransport(handler))
            signer = MagicMock()
            signer.sign_digest = AsyncMock(return_value="SIG_K1_test")
            session = Session(IDENTITY, CHAIN_INFO["chain_id"], "http://ledger.test", client, signer)
            try:
                await make_relay(session, **relay_kwargs).send_raw_transaction("0x6001")
            finally:
                await client.close()

        asyncio.run(run())
        return seen

    def test_default_waits_for_one_block(self) -> None:
        payload = self.submitted_payload()
        assert payload["retry_trx"] is True
        assert payload["retry_trx_num_blocks"] == 1

    def test_num_blocks_configurable(self) -> None:
        payload = self.submitted_payload(retry_tx_num_blocks=3)
        assert payload["retry_trx_num_blocks"] == 3
