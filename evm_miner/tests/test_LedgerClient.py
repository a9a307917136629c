"""Unit tests for LedgerClient."""

import asyncio
import json

import httpx
import pytest

from evm_miner.src.LedgerClient import (
    LedgerClient,
    LedgerError,
    LedgerHTTPError,
    describe_ledger_error,
    parse_asset_amount,
)

ERROR_BODY = {
    "code": 500,
    "message": "Internal Service Error",
    "error": {
        "code": 3050003,
        "name": "eosio_assert_message_exception",
        "what": "eosio_assert_message assertion failure",
        "details": [
            {"message": "assertion failure with message: invalid nonce", "file": "", "line_number": 0, "method": ""}
        ],
    },
}


def make_client(handler, **kwargs) -> LedgerClient:
    return LedgerClient("http://ledger.test", transport=httpx.MockTransport(handler), **kwargs)


class TestDescribeLedgerError:
    """Test normalization of ledger error bodies."""

    def test_prefers_first_detail(self) -> None:
        assert describe_ledger_error(ERROR_BODY) == "assertion failure with message: invalid nonce"

    def test_falls_back_to_what(self) -> None:
        body = {"error": {"what": "tx expired", "details": []}}
        assert describe_ledger_error(body) == "tx expired"

    def test_top_level_details(self) -> None:
        body = {"details": [{"message": "bad signature"}]}
        assert describe_ledger_error(body) == "bad signature"

    def test_raw_serialization(self) -> None:
        body = {"code": 500, "message": "boom"}
        assert describe_ledger_error(body) == json.dumps(body, sort_keys=True)

    def test_text_body(self) -> None:
        assert describe_ledger_error("gateway timeout") == "gateway timeout"


class TestParseAsset:
    def test_parse(self) -> None:
        assert parse_asset_amount("1.2345 EOS") == (12345, 4)
        assert parse_asset_amount("100 TOK") == (100, 0)


class TestQueries:
    """Test chain API requests and response handling."""

    def test_get_info(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/chain/get_info"
            return httpx.Response(200, json={"chain_id": "aa" * 32})

        async def run():
            client = make_client(handler)
            try:
                return await client.get_info()
            finally:
                await client.close()

        assert asyncio.run(run())["chain_id"] == "aa" * 32

    def test_query_fee_config_request(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"rows": [{"gas_price": "150000000000"}], "more": False})

        async def run():
            client = make_client(handler)
            try:
                return await client.query_fee_config("eosio.evm", "eosio.evm")
            finally:
                await client.close()

        row = asyncio.run(run())
        assert row == {"gas_price": "150000000000"}
        assert seen["code"] == "eosio.evm"
        assert seen["table"] == "config"
        assert seen["json"] is True

    def test_empty_config_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"rows": []})

        async def run():
            client = make_client(handler)
            try:
                await client.query_fee_config("eosio.evm", "eosio.evm")
            finally:
                await client.close()

        with pytest.raises(LedgerError, match="No config row"):
            asyncio.run(run())

    def test_http_error_carries_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json=ERROR_BODY)

        async def run():
            client = make_client(handler)
            try:
                await client.get_info()
            finally:
                await client.close()

        with pytest.raises(LedgerHTTPError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == ERROR_BODY
        assert str(exc_info.value) == "assertion failure with message: invalid nonce"

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def run():
            client = make_client(handler)
            try:
                await client.get_info()
            finally:
                await client.close()

        with pytest.raises(LedgerError, match="Request failed"):
            asyncio.run(run())


class TestResourceMarket:
    """Test CPU pricing from the rental market state."""

    @staticmethod
    def market_row(min_price: str, max_price: str, exponent: str = "2.0") -> dict:
        return {
            "cpu": {
                "weight": "1000000000",
                "exponent": exponent,
                "min_price": min_price,
                "max_price": max_price,
                "utilization": "0",
                "adjusted_utilization": "0",
            }
        }

    def run_query(self, row: dict, cpu_us_per_day: int) -> int:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["code"] == "eosio"
            assert body["table"] == "powup.state"
            return httpx.Response(200, json={"rows": [row]})

        async def run():
            client = make_client(handler, cpu_us_per_day=cpu_us_per_day)
            try:
                return await client.query_resource_market()
            finally:
                await client.close()

        return asyncio.run(run())

    def test_linear_price_when_flat_curve(self) -> None:
        # min == max: cost of one microsecond is min_price / cpu_us_per_day
        cost = self.run_query(self.market_row("1.0000 EOS", "1.0000 EOS"), cpu_us_per_day=1000)
        # 10000 raw units / 1000 us = 10 raw units = 10 * 10**14 wei
        assert cost == 10 * 10**14

    def test_cost_grows_with_max_price(self) -> None:
        cheap = self.run_query(self.market_row("1.0000 EOS", "1.0000 EOS"), cpu_us_per_day=1000)
        dear = self.run_query(self.market_row("1.0000 EOS", "500.0000 EOS"), cpu_us_per_day=1000)
        assert dear > cheap

    def test_missing_state(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"rows": []})

        async def run():
            client = make_client(handler)
            try:
                await client.query_resource_market()
            finally:
                await client.close()

        with pytest.raises(LedgerError, match="powup.state"):
            asyncio.run(run())


class TestSendTransaction:
    def test_payload(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/chain/send_transaction2"
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"transaction_id": "ff" * 32, "processed": {"except": None}})

        async def run():
            client = make_client(handler)
            try:
                return await client.send_transaction(["SIG_K1_x"], b"\x01\x02", retry_trx=True)
            finally:
                await client.close()

        result = asyncio.run(run())
        assert result["transaction_id"] == "ff" * 32
        assert seen["retry_trx"] is True
        assert seen["retry_trx_num_blocks"] == 1
        assert seen["transaction"]["packed_trx"] == "0102"
        assert seen["transaction"]["signatures"] == ["SIG_K1_x"]

    def test_processed_exception_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"processed": {"except": {"what": "deadline exceeded", "details": []}}},
            )

        async def run():
            client = make_client(handler)
            try:
                await client.send_transaction([], b"")
            finally:
                await client.close()

        with pytest.raises(LedgerHTTPError, match="deadline exceeded"):
            asyncio.run(run())
