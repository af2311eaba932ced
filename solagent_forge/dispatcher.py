"""
JSON-RPC message dispatcher.

Routes ``initialize``, ``tools/list``, ``tools/call`` and ``ping`` to the
registry and wraps the outcome in a JSON-RPC 2.0 envelope. Notifications
(``notifications/*``) never get a response.
"""

import json
from typing import Any, Dict, List, Mapping, Optional

import mcp.types as types
from mcp.server.fastmcp.utilities.logging import get_logger

from . import config
from .errors import InvalidParams, MethodNotFound, ProtocolError, UnknownTool
from .registry import ToolRegistry, build_registry

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"
NOTIFICATION_PREFIX = "notifications/"


def success_envelope(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_envelope(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def parse_error_envelope() -> Dict[str, Any]:
    """Envelope for input that could not be decoded as a JSON object."""
    return error_envelope(None, types.PARSE_ERROR, "Parse error")


class Dispatcher:
    """Stateless protocol front-end over an immutable tool registry."""

    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry if registry is not None else build_registry()

    def list_tools(self) -> List[Dict[str, Any]]:
        return self.registry.descriptors()

    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        tool = self.registry.get(name)
        if tool is None:
            raise UnknownTool(name)
        if arguments is not None and not isinstance(arguments, Mapping):
            raise InvalidParams("tools/call arguments must be an object")
        logger.debug(f"Calling tool {name}")
        return await tool.invoke(arguments)

    def initialize_result(self) -> Dict[str, Any]:
        result = types.InitializeResult(
            protocolVersion=config.PROTOCOL_VERSION,
            capabilities=types.ServerCapabilities(tools=types.ToolsCapability(listChanged=False)),
            serverInfo=types.Implementation(name=config.SERVER_NAME, version=config.SERVER_VERSION),
        )
        return result.model_dump(by_alias=True, exclude_none=True)

    async def _dispatch(self, method: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            return self.initialize_result()
        if method == "tools/list":
            return {"tools": self.list_tools()}
        if method == "tools/call":
            name = params.get("name")
            if not name or not isinstance(name, str):
                raise InvalidParams("tools/call requires params.name")
            result = await self.call_tool(name, params.get("arguments"))
            content = types.TextContent(type="text", text=json.dumps(result, indent=2))
            return {"content": [content.model_dump(by_alias=True, exclude_none=True)]}
        if method == "ping":
            return {}
        raise MethodNotFound(method)

    async def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        """Handles one decoded JSON-RPC message.

        Returns the response envelope, or ``None`` for notifications.
        Every failure is reported inside the envelope.
        """
        if not isinstance(message, Mapping):
            return error_envelope(None, types.INTERNAL_ERROR, "Invalid request: expected a JSON object")

        request_id = message.get("id")
        method = message.get("method")
        if isinstance(method, str) and method.startswith(NOTIFICATION_PREFIX):
            logger.debug(f"Received notification {method}")
            return None
        if not isinstance(method, str) or not method:
            return error_envelope(request_id, types.INTERNAL_ERROR, "Invalid request: missing method")

        params = message.get("params")
        if params is None:
            params = {}
        try:
            if not isinstance(params, Mapping):
                raise InvalidParams("params must be an object")
            result = await self._dispatch(method, params)
        except ProtocolError as e:
            logger.info(f"{method} rejected: {e}")
            return error_envelope(request_id, types.INTERNAL_ERROR, str(e))
        except Exception:
            logger.exception(f"Unexpected error handling {method}")
            return error_envelope(request_id, types.INTERNAL_ERROR, "Internal error")
        return success_envelope(request_id, result)
