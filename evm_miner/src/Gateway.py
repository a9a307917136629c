"""Gateway: Ethereum JSON-RPC facade over the relay and oracle.

Serves JSON-RPC 2.0 (single and batch requests) over HTTP with FastAPI.
Method failures are reported with code -32000 and the error message.

.. code-block:: python

    gateway = Gateway(oracle, relay, endpoint_manager)
    app = gateway.create_app()
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from .EndpointManager import EndpointManager
    from .PriceOracle import PriceOracle
    from .TransactionRelay import TransactionRelay

logger = logging.getLogger(__name__)

SERVER_ERROR = -32000
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


class JsonRpcError(Exception):
    """Error carrying a JSON-RPC error code.

    :ivar code: JSON-RPC error code.
    :ivar message: Error message.
    """

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def error_response(req_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


class Gateway:
    """JSON-RPC method table and HTTP app factory.

    :ivar oracle: Price oracle serving gas price queries.
    :ivar relay: Transaction relay serving raw transaction submission.
    :ivar endpoint_manager: Optional manager, used for health reporting.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        relay: TransactionRelay,
        endpoint_manager: EndpointManager | None = None,
    ) -> None:
        self.oracle = oracle
        self.relay = relay
        self.endpoint_manager = endpoint_manager
        self.methods: dict[str, Callable[[list], Awaitable[Any]]] = {
            "eth_sendRawTransaction": self.eth_sendRawTransaction,
            "eth_gasPrice": self.eth_gasPrice,
            "eth_maxPriorityFeePerGas": self.eth_maxPriorityFeePerGas,
        }

    async def eth_sendRawTransaction(self, params: list) -> str:
        if not params:
            raise JsonRpcError(INVALID_PARAMS, "missing raw transaction")
        return await self.relay.send_raw_transaction(params[0])

    async def eth_gasPrice(self, params: list) -> str:
        return hex(self.oracle.gas_price())

    async def eth_maxPriorityFeePerGas(self, params: list) -> str:
        return hex(self.oracle.max_priority_fee())

    async def handle_one(self, request: Any) -> dict[str, Any]:
        """Dispatch a single JSON-RPC request object.

        :param request: Decoded request.
        :returns: JSON-RPC response object.
        """
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            return error_response(None, INVALID_REQUEST, "Invalid Request")

        req_id = request.get("id")
        method = self.methods.get(request["method"])
        if method is None:
            return error_response(req_id, METHOD_NOT_FOUND, "Method not found")

        params = request.get("params") or []
        if not isinstance(params, list):
            return error_response(req_id, INVALID_PARAMS, "params must be an array")

        try:
            result = await method(params)
        except JsonRpcError as e:
            return error_response(req_id, e.code, e.message)
        except Exception as e:
            logger.debug(f"{request['method']} failed: {e}")
            return error_response(req_id, SERVER_ERROR, str(e))

        return {"jsonrpc": "2.0", "id": req_id, "result": result}

    async def handle(self, payload: Any) -> Any:
        """Dispatch a single or batch payload."""
        if isinstance(payload, list):
            if not payload:
                return error_response(None, INVALID_REQUEST, "Invalid Request")
            return [await self.handle_one(item) for item in payload]
        return await self.handle_one(payload)

    def health(self) -> dict[str, Any]:
        snapshot = self.oracle.snapshot
        manager = self.endpoint_manager
        return {
            "ok": manager is None or manager.session is not None,
            "endpoint": manager.active_endpoint if manager else None,
            "gasPrice": hex(snapshot.gas_price),
            "maxPriorityFeePerGas": hex(snapshot.max_priority_fee),
            "evmVersion": snapshot.state.feature_version,
        }

    def create_app(self) -> FastAPI:
        """Build the FastAPI application serving this gateway."""
        app = FastAPI(title="EVM Miner", docs_url=None, redoc_url=None)

        async def rpc(request: Request) -> JSONResponse:
            body = await request.body()
            try:
                payload = json.loads(body)
            except ValueError:
                return JSONResponse(error_response(None, PARSE_ERROR, "Parse error"))
            return JSONResponse(await self.handle(payload))

        async def healthz() -> JSONResponse:
            return JSONResponse(self.health())

        app.add_api_route("/", rpc, methods=["POST"])
        app.add_api_route("/rpc", rpc, methods=["POST"])
        app.add_api_route("/healthz", healthz, methods=["GET"])
        return app
