"""
HTTP adapter over the dispatcher.

Lets plain HTTP clients use the tools without speaking the stdio protocol:

* ``GET /`` and ``GET /health`` describe the service
* ``GET /tools`` lists tool descriptors
* ``POST /tools/{tool_name}`` takes the raw arguments object and returns the raw tool result
* ``POST /mcp`` accepts a full JSON-RPC envelope
"""

import datetime
import json
from typing import Any, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from mcp.server.fastmcp.utilities.logging import get_logger

from . import config
from .dispatcher import Dispatcher, parse_error_envelope

logger = get_logger(__name__)


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body.strip():
        return None
    return json.loads(body)


def create_app(dispatcher: Optional[Dispatcher] = None) -> Starlette:
    dispatcher = dispatcher or Dispatcher()

    async def info(request: Request) -> JSONResponse:
        return JSONResponse({
            "service": config.SERVER_NAME,
            "version": config.SERVER_VERSION,
            "endpoints": {
                "GET": {"/": "This info", "/health": "Health check", "/tools": "List tools"},
                "POST": {
                    "/tools/{toolName}": "Call a tool with a raw arguments object",
                    "/mcp": "MCP protocol endpoint (JSON-RPC 2.0 messages)",
                },
            },
            "tools": list(dispatcher.registry),
        })

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "service": config.SERVER_NAME,
            "version": config.SERVER_VERSION,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "tools": len(dispatcher.registry),
        })

    async def list_tools(request: Request) -> JSONResponse:
        return JSONResponse({"tools": dispatcher.list_tools()})

    async def call_tool(request: Request) -> JSONResponse:
        name = request.path_params["tool_name"]
        if name not in dispatcher.registry:
            return JSONResponse({"success": False, "error": f"Unknown tool: {name}"}, status_code=404)
        try:
            arguments = await _read_json(request)
        except json.JSONDecodeError as e:
            return JSONResponse({"success": False, "error": f"Invalid JSON body: {e}"}, status_code=400)
        if arguments is not None and not isinstance(arguments, dict):
            return JSONResponse({"success": False, "error": "Request body must be a JSON object"}, status_code=400)
        try:
            result = await dispatcher.call_tool(name, arguments)
        except Exception:
            logger.exception(f"Unexpected error calling {name}")
            return JSONResponse({"success": False, "error": "Internal error"}, status_code=500)
        return JSONResponse(result)

    async def mcp_endpoint(request: Request) -> Response:
        try:
            message = await _read_json(request)
        except json.JSONDecodeError:
            return JSONResponse(parse_error_envelope(), status_code=400)
        response = await dispatcher.handle_message(message)
        if response is None:
            return Response(status_code=204)
        return JSONResponse(response)

    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            {
                "error": "Not Found",
                "path": request.url.path,
                "availableEndpoints": ["GET /", "GET /health", "GET /tools", "POST /tools/{toolName}", "POST /mcp"],
            },
            status_code=404,
        )

    routes = [
        Route("/", info, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
        Route("/tools", list_tools, methods=["GET"]),
        Route("/tools/{tool_name}", call_tool, methods=["POST"]),
        Route("/mcp", mcp_endpoint, methods=["POST"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )
    ]
    return Starlette(routes=routes, middleware=middleware, exception_handlers={404: not_found})


def run_http(host: str = config.HOST, port: int = config.PORT, log_level: str = config.LOG_LEVEL) -> None:
    logger.info(f"HTTP server listening on http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level.lower())
