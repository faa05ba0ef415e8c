from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from linkreader import mcp_tools
from linkreader.orchestrator import Orchestrator
from linkreader.schema_models import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    RpcError,
    RpcRequest,
    ToolResponse,
    error_envelope,
    success_envelope,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {"name": "linkreader", "version": "1.0.0"}
SERVER_CAPABILITIES = {"tools": {}, "resources": {}, "logging": {}}

HTTP_STATUS_BY_CODE = {PARSE_ERROR: 400, INVALID_REQUEST: 400, INTERNAL_ERROR: 500}


@dataclass(frozen=True)
class RpcReply:
    status_code: int
    body: dict[str, Any]


class RpcDispatcher:
    """Turns one inbound body into exactly one outbound envelope."""

    def __init__(self, orchestrator: Orchestrator, response_deadline: float = 180.0):
        self.orchestrator = orchestrator
        self.response_deadline = response_deadline
        self._methods = {
            "initialize": self._initialize,
            "notifications/initialized": self._initialized,
            "ping": self._ping,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    def _error_reply(self, request_id: Any, error: RpcError) -> RpcReply:
        status_code = HTTP_STATUS_BY_CODE.get(error.code, 200)
        log = logger.error if status_code >= 500 else logger.warning
        log("RPC error %s for id=%r: %s", error.code, request_id, error.message)
        return RpcReply(status_code=status_code, body=error_envelope(request_id, error))

    async def handle_body(self, raw_body: bytes) -> RpcReply:
        try:
            payload = json.loads(raw_body.decode("utf-8") if raw_body else "")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            return self._error_reply(None, RpcError(PARSE_ERROR, "Parse error", str(exc)))

        if not isinstance(payload, dict):
            return self._error_reply(None, RpcError(INVALID_REQUEST, "Invalid Request", "Expected a JSON object."))

        request_id = payload.get("id")
        try:
            rpc_request = RpcRequest.model_validate(payload)
        except ValidationError as exc:
            return self._error_reply(request_id, RpcError(INVALID_REQUEST, "Invalid Request", exc.errors(include_url=False, include_context=False)))

        try:
            result = await self.dispatch(rpc_request)
        except RpcError as exc:
            return self._error_reply(request_id, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error while handling %s", rpc_request.method)
            return self._error_reply(request_id, RpcError(INTERNAL_ERROR, "Internal error", str(exc)))

        return RpcReply(status_code=200, body=success_envelope(request_id, result))

    async def dispatch(self, rpc_request: RpcRequest) -> dict[str, Any]:
        handler = self._methods.get(rpc_request.method)
        if handler is None:
            raise RpcError(METHOD_NOT_FOUND, f"Method not found: {rpc_request.method}", {"method": rpc_request.method})

        if rpc_request.method == "ping":
            logger.debug("RPC ping id=%r", rpc_request.id)
        else:
            logger.info("RPC %s id=%r", rpc_request.method, rpc_request.id)
        return await handler(rpc_request.params or {})

    async def _initialize(self, params: dict) -> dict:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": SERVER_CAPABILITIES,
            "serverInfo": SERVER_INFO,
        }

    async def _initialized(self, params: dict) -> dict:
        return {}

    async def _ping(self, params: dict) -> dict:
        return {}

    async def _resources_list(self, params: dict) -> dict:
        return mcp_tools.resources_list()

    async def _resources_read(self, params: dict) -> dict:
        return mcp_tools.resource_read(params.get("uri"))

    async def _tools_list(self, params: dict) -> dict:
        return mcp_tools.tools_list()

    async def _tools_call(self, params: dict) -> dict:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise RpcError(INVALID_PARAMS, "tools/call requires a tool 'name'.")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise RpcError(INVALID_PARAMS, "tools/call 'arguments' must be an object.")

        try:
            response = await asyncio.wait_for(
                mcp_tools.tools_call(self.orchestrator, name, arguments),
                timeout=self.response_deadline,
            )
        except asyncio.TimeoutError:
            logger.warning("tools/call %s exceeded the %.0fs response deadline", name, self.response_deadline)
            response = ToolResponse.from_text(
                f"Request timed out after {self.response_deadline:.0f}s before any provider answered.",
                is_error=True,
            )
        return response.to_result()
