"""
MCP (Model Context Protocol) client integration for the agent
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Optional

from lmnr import observe
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client

from orchestrator.config import MCPServerConfig
from orchestrator.core.errors import ServerConnectionError, ToolInvocationError
from orchestrator.core.tools import ToolRegistry, ToolSpec, first_block_text

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0


class ServerSession:
    """
    One connected MCP server.

    The transport and the ClientSession live inside a dedicated task so they
    are entered and exited by the same task, which anyio requires. The task
    holds the connection open until ``close`` is requested.
    """

    def __init__(self, config: MCPServerConfig):
        self.config = config
        self.tools: list[ToolSpec] = []
        self._client: Optional[ClientSession] = None
        self._ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def connected(self) -> bool:
        return self._client is not None

    def __repr__(self) -> str:
        return f"ServerSession({self.name!r}, tools={len(self.tools)})"

    def _open_transport(self):
        if self.config.transport == "sse":
            return sse_client(self.config.url)
        server_params = StdioServerParameters(
            command=self.config.command,
            args=self.config.args,
            env=self.config.build_env(),
        )
        return stdio_client(server_params)

    async def _run(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(self._open_transport())
                client = await stack.enter_async_context(ClientSession(read, write))
                await client.initialize()

                response = await client.list_tools()
                self.tools = [
                    ToolSpec(
                        name=tool.name,
                        description=tool.description or "",
                        parameters=tool.inputSchema,
                    )
                    for tool in response.tools
                ]
                self._client = client
                self._ready.set_result(None)

                await self._closing.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            elif self._closing.is_set():
                logger.debug(f"Error while closing MCP server {self.name}: {e}")
            else:
                logger.warning(f"MCP server {self.name} transport failed: {e}")
        finally:
            self._client = None

    async def start(self, timeout: float) -> None:
        self._task = asyncio.create_task(self._run(), name=f"mcp-{self.name}")
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except BaseException:
            await self.close()
            raise

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]):
        if self._client is None:
            raise RuntimeError(f"MCP server {self.name} is not connected")
        return await self._client.call_tool(tool_name, arguments)

    async def close(self) -> None:
        self._closing.set()
        if self._task is None:
            return
        if not self._ready.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        if self._ready.done() and not self._ready.cancelled():
            # Mark any startup exception as retrieved
            self._ready.exception()


class SessionManager:
    """
    Owns the connections to MCP servers; performs discovery and invocation
    """

    def __init__(self, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.sessions: dict[str, ServerSession] = {}
        self.connect_timeout = connect_timeout

    async def connect(self, server_config: MCPServerConfig) -> ServerSession:
        """
        Connect to an MCP server, run the handshake and list its tools

        Raises:
            ServerConnectionError: if the server cannot be started, the
                handshake fails or tool discovery fails
        """
        session = ServerSession(server_config)
        try:
            await session.start(self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise ServerConnectionError(
                server_config.name, f"timed out after {self.connect_timeout}s"
            ) from e
        except Exception as e:
            raise ServerConnectionError(server_config.name, str(e) or repr(e)) from e

        self.sessions[server_config.name] = session
        logger.info(
            f"Connected to MCP server: {session.name} ({len(session.tools)} tools)"
        )
        return session

    async def connect_all(
        self,
        server_configs: list[MCPServerConfig],
        registry: ToolRegistry,
        fail_fast: bool = False,
    ) -> list[tuple[str, ServerConnectionError]]:
        """
        Connect to every server in parallel and register their tools.

        Tools are registered in the order of ``server_configs`` regardless of
        which connection finishes first. Returns the failed servers; with
        ``fail_fast`` the first failure is raised after closing the sessions
        that did connect.
        """
        results = await asyncio.gather(
            *(self.connect(server_config) for server_config in server_configs),
            return_exceptions=True,
        )

        failures: list[tuple[str, ServerConnectionError]] = []
        connected: list[ServerSession] = []
        for server_config, result in zip(server_configs, results):
            if isinstance(result, ServerConnectionError):
                logger.warning(str(result))
                failures.append((server_config.name, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                connected.append(result)

        if fail_fast and failures:
            for session in connected:
                await self.disconnect(session)
            raise failures[0][1]

        for session in connected:
            registry.register_session(session)
        return failures

    @observe(name="call_tool")
    async def invoke(
        self, session: ServerSession, tool_name: str, arguments: dict[str, Any]
    ) -> str:
        """
        Call a tool on its server and return the text of the first content block

        Raises:
            ToolInvocationError: if the call fails or the server reports an error
        """
        if not session.connected:
            await self.disconnect(session)
            raise ToolInvocationError(tool_name, f"server {session.name} is not connected")

        try:
            result = await session.call_tool(tool_name, arguments)
        except Exception as e:
            if not session.connected:
                await self.disconnect(session)
            raise ToolInvocationError(tool_name, str(e) or repr(e)) from e

        output = first_block_text(result.content)
        if result.isError:
            raise ToolInvocationError(tool_name, output or "tool reported an error")
        return output

    async def disconnect(self, session: ServerSession) -> None:
        if self.sessions.get(session.name) is session:
            del self.sessions[session.name]
        await session.close()
        logger.info(f"Disconnected from MCP server: {session.name}")

    async def close_all(self) -> None:
        """Clean up all MCP connections"""
        for session in list(self.sessions.values()):
            await self.disconnect(session)

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
