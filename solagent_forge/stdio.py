"""
Line-delimited JSON transport.

Each input line is one JSON-RPC message. Messages are handled in their own
tasks so a slow upstream call does not hold up the next line; each
response is written as a single line.
"""

import json
import sys
from io import TextIOWrapper
from typing import Any, Dict, Optional

import anyio
from anyio.abc import TaskGroup

from mcp.server.fastmcp.utilities.logging import get_logger

from .dispatcher import Dispatcher, parse_error_envelope

logger = get_logger(__name__)


def wrap_binary(stream):
    """Async UTF-8 text view of a binary stream.

    Undecodable bytes become U+FFFD, so a bad line fails JSON decoding
    instead of ending the read loop.
    """
    return anyio.wrap_file(TextIOWrapper(stream, encoding="utf-8", errors="replace"))


class StdioTransport:
    def __init__(self, dispatcher: Dispatcher, stdin=None, stdout=None):
        self.dispatcher = dispatcher
        self.stdin = stdin or wrap_binary(sys.stdin.buffer)
        self.stdout = stdout or wrap_binary(sys.stdout.buffer)
        self._write_lock = anyio.Lock()

    async def send(self, envelope: Dict[str, Any]) -> None:
        async with self._write_lock:
            await self.stdout.write(json.dumps(envelope) + "\n")
            await self.stdout.flush()

    async def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding undecodable line: {e}")
            response = parse_error_envelope()
        else:
            response = await self.dispatcher.handle_message(message)
        if response is not None:
            await self.send(response)
        return response

    async def serve(self) -> None:
        """Reads until EOF, then waits for in-flight messages to finish."""
        logger.info("Waiting for MCP protocol messages on stdin")
        async with anyio.create_task_group() as tg:
            await self._read_lines(tg)
        logger.info("End of input stream, shutting down")

    async def _read_lines(self, tg: TaskGroup) -> None:
        async for line in self.stdin:
            line = line.strip()
            if line:
                tg.start_soon(self.handle_line, line)


async def serve_stdio(dispatcher: Optional[Dispatcher] = None, stdin=None, stdout=None) -> None:
    await StdioTransport(dispatcher or Dispatcher(), stdin, stdout).serve()
