"""LedgerClient: Async client for the ledger's HTTP chain API.

Wraps the handful of nodeos endpoints the miner needs: chain info (used as the
liveness check and for TAPoS), table reads for fee configuration and resource
market state, and transaction submission.

.. code-block:: python

    client = LedgerClient("https://eos.example.com")
    info = await client.get_info()
    row = await client.query_fee_config("eosio.evm", "eosio.evm")
    await client.close()
"""

import json
import logging
import math
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Precision of the EVM-side gas token amounts.
EVM_DECIMALS = 18


class LedgerError(Exception):
    """Base exception for ledger communication errors."""

    pass


class LedgerHTTPError(LedgerError):
    """Raised when the ledger answers with a non-2xx response.

    :ivar status_code: HTTP status code.
    :ivar body: Parsed JSON error body, or raw text if not JSON.
    """

    def __init__(self, status_code: int, body: Any):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param body: Parsed error body.
        """
        self.status_code = status_code
        self.body = body
        super().__init__(describe_ledger_error(body))


def describe_ledger_error(body: Any) -> str:
    """Reduce a ledger error body to a single descriptive message.

    Prefers the first structured detail message, then the error's ``what``
    summary, and falls back to a JSON dump of the whole body.

    :param body: Parsed error body (usually a dict) or raw text.
    :returns: Human-readable message.
    """
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            details = error.get("details")
            if details and isinstance(details[0], dict) and details[0].get("message"):
                return details[0]["message"]
            if error.get("what"):
                return error["what"]
        details = body.get("details")
        if details and isinstance(details[0], dict) and details[0].get("message"):
            return details[0]["message"]
        return json.dumps(body, sort_keys=True)
    if isinstance(body, str):
        return body
    return json.dumps(body, default=str)


def parse_asset_amount(asset: str) -> tuple[int, int]:
    """Parse an asset string like ``"0.0100 EOS"``.

    :param asset: Asset string.
    :returns: Tuple of (raw integer amount, precision).
    """
    amount = asset.split()[0]
    precision = len(amount.split(".", 1)[1]) if "." in amount else 0
    return int(amount.replace(".", "")), precision


class LedgerClient:
    """Client for one ledger HTTP endpoint.

    :cvar DEFAULT_TIMEOUT: Default request timeout in seconds.
    :cvar DEFAULT_CPU_US_PER_DAY: CPU microseconds the whole network offers
        over one resource-rental window (200ms blocks, 2 blocks/s, 24h).
    :ivar url: Base URL of the endpoint.
    """

    DEFAULT_TIMEOUT = 10.0
    DEFAULT_CPU_US_PER_DAY = 200_000 * 2 * 86_400

    def __init__(
        self,
        url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cpu_us_per_day: int = DEFAULT_CPU_US_PER_DAY,
    ) -> None:
        """Initialize the client.

        :param url: Base URL of the ledger endpoint.
        :param timeout: Request timeout in seconds (default: 10).
        :param transport: Optional httpx transport override.
        :param cpu_us_per_day: Network CPU capacity per rental window.
        """
        self.url = url.rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.cpu_us_per_day = cpu_us_per_day
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=transport,
        )

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    async def _post(self, path: str, payload: Any = None) -> Any:
        """POST to a chain API path and decode the JSON response.

        :param path: API path, e.g. ``/v1/chain/get_info``.
        :param payload: Optional JSON body.
        :returns: Decoded JSON response.
        :raises LedgerHTTPError: On non-2xx response.
        :raises LedgerError: On network/timeout errors or invalid JSON.
        """
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise LedgerError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise LedgerError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "POST %s%s failed with status %s: %s",
                self.url,
                path,
                response.status_code,
                response.text[:200],
            )
            try:
                body = response.json()
            except ValueError:
                body = response.text[:200]
            raise LedgerHTTPError(response.status_code, body)

        try:
            return response.json()
        except ValueError as e:
            raise LedgerError(f"Invalid JSON from {self.url}{path}: {e}") from e

    async def get_info(self) -> dict[str, Any]:
        """Fetch chain info. Used as the liveness check.

        :returns: Chain info dict including ``chain_id``.
        """
        return await self._post("/v1/chain/get_info")

    async def get_table_rows(
        self,
        code: str,
        scope: str,
        table: str,
        limit: int = 1,
        reverse: bool = False,
    ) -> list[dict[str, Any]]:
        """Read rows from a contract table.

        :param code: Contract account owning the table.
        :param scope: Table scope.
        :param table: Table name.
        :param limit: Maximum number of rows.
        :param reverse: Read in reverse primary-key order.
        :returns: List of decoded rows.
        """
        result = await self._post(
            "/v1/chain/get_table_rows",
            {
                "json": True,
                "code": code,
                "scope": scope,
                "table": table,
                "limit": limit,
                "reverse": reverse,
                "show_payer": False,
            },
        )
        return result["rows"]

    async def query_fee_config(self, evm_account: str, evm_scope: str) -> dict[str, Any]:
        """Read the EVM contract's configuration row.

        :returns: Config row with ``gas_price`` and (when present) ``evm_version``.
        :raises LedgerError: If the table is empty.
        """
        rows = await self.get_table_rows(evm_account, evm_scope, "config")
        if not rows:
            raise LedgerError(f"No config row in {evm_account}")
        return rows[0]

    async def query_price_queue(self, evm_account: str, evm_scope: str) -> list[dict[str, Any]]:
        """Read pending (queued) base price changes.

        :returns: Rows with ``time`` and ``price`` fields.
        """
        return await self.get_table_rows(evm_account, evm_scope, "pricequeue", limit=50)

    async def query_resource_market(self) -> int:
        """Price one microsecond of CPU on the resource rental market.

        Reads ``eosio::powup.state`` and integrates the rental price curve
        from the current utilization over the weight that one microsecond of
        daily CPU corresponds to.

        :returns: Cost per CPU microsecond in 18-decimal gas token units.
        :raises LedgerError: If the market state is missing.
        """
        rows = await self.get_table_rows("eosio", "", "powup.state")
        if not rows:
            raise LedgerError("No powup.state row")
        cpu = rows[0]["cpu"]

        weight = float(cpu["weight"])
        exponent = float(cpu["exponent"])
        min_price, precision = parse_asset_amount(cpu["min_price"])
        max_price, _ = parse_asset_amount(cpu["max_price"])
        utilization = max(float(cpu["utilization"]), float(cpu["adjusted_utilization"]))

        amount = weight / self.cpu_us_per_day
        start_u = utilization / weight
        end_u = (utilization + amount) / weight
        coefficient = (max_price - min_price) / exponent
        fee = (
            min_price * end_u
            - min_price * start_u
            + coefficient * math.pow(end_u, exponent)
            - coefficient * math.pow(start_u, exponent)
        )
        return math.ceil(fee * 10 ** (EVM_DECIMALS - precision))

    async def send_transaction(
        self,
        signatures: list[str],
        packed_trx: bytes,
        retry_trx: bool = False,
        retry_trx_num_blocks: int = 1,
    ) -> dict[str, Any]:
        """Submit a signed transaction via ``send_transaction2``.

        :param signatures: Signatures over the transaction digest.
        :param packed_trx: Serialized transaction.
        :param retry_trx: Ask the node to retry the transaction internally.
        :param retry_trx_num_blocks: Blocks to wait before reporting (0 waits for LIB).
        :returns: Submission result.
        :raises LedgerError: If the ledger rejected the transaction.
        """
        result = await self._post(
            "/v1/chain/send_transaction2",
            {
                "return_failure_trace": False,
                "retry_trx": retry_trx,
                "retry_trx_num_blocks": retry_trx_num_blocks,
                "transaction": {
                    "signatures": signatures,
                    "compression": "none",
                    "packed_context_free_data": "",
                    "packed_trx": packed_trx.hex(),
                },
            },
        )
        processed = result.get("processed") or {}
        if processed.get("except"):
            raise LedgerHTTPError(500, {"error": processed["except"]})
        return result
