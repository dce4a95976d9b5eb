#!/usr/bin/env python3
"""Metalmail MCP Server

Exposes the tool registry (email, contact and memory tools, intelligentChat) over the
stdio MCP transport. Logs go to stderr; stdout carries the protocol.
"""

import asyncio
import logging
import sys
from typing import List, Optional

import mcp.server.stdio
import mcp.types as types
from dotenv import load_dotenv
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.shared.exceptions import McpError

from . import __version__
from .config import Settings, setup_logging
from .deps import Services, build_services
from .errors import MetalmailError, ToolNotFound, ValidationError
from .routes.mcp import map_call_arguments
from .tools.registry import ToolDescriptor

logger = logging.getLogger("metalmail.mcp")


def to_mcp_tool(descriptor: ToolDescriptor) -> types.Tool:
    hints = descriptor.annotations
    return types.Tool(
        name=descriptor.name,
        title=descriptor.title,
        description=descriptor.description,
        inputSchema=descriptor.parameter_schema,
        annotations=types.ToolAnnotations(
            title=descriptor.title,
            readOnlyHint=hints.read_only,
            idempotentHint=hints.idempotent,
            destructiveHint=hints.destructive,
            openWorldHint=hints.open_world,
        ),
    )


class MetalmailMCPServer:
    def __init__(self, services: Services):
        self.services = services
        self.server = Server("metalmail")
        self._setup_handlers()

    def _setup_handlers(self):
        @self.server.list_tools()
        async def handle_list_tools() -> List[types.Tool]:
            return [to_mcp_tool(d) for d in self.services.registry.descriptors()]

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Optional[dict] = None) -> List[types.TextContent]:
            return await self.call_tool(name, arguments)

    async def call_tool(self, name: str, arguments: Optional[dict] = None) -> List[types.TextContent]:
        """
        Unknown tools and bad arguments are protocol errors (McpError); a tool that fails
        while running answers with an "Error:" text block.
        """
        try:
            envelope = await self.services.registry.invoke(name, map_call_arguments(name, arguments or {}))
        except ToolNotFound as e:
            raise McpError(types.ErrorData(code=types.METHOD_NOT_FOUND, message=str(e))) from e
        except ValidationError as e:
            raise McpError(
                types.ErrorData(code=types.INVALID_PARAMS, message=str(e), data={"fields": e.fields})
            ) from e
        except MetalmailError as e:
            logger.error(f"Error calling tool {name}: {e}")
            return [types.TextContent(type="text", text=f"Error: {e}")]

        blocks = [types.TextContent(type="text", text=block.text) for block in envelope.content]
        if envelope.should_perform_action is not None:
            # Action directive / suggestions travel as a trailing JSON block
            blocks.append(types.TextContent(type="text", text=envelope.to_text()))
        return blocks

    async def run(self):
        """Run the MCP server."""
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="metalmail",
                    server_version=__version__,
                    capabilities=self.server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )


async def serve(settings: Settings) -> None:
    services = build_services(settings)
    try:
        await MetalmailMCPServer(services).run()
    finally:
        await services.aclose()


def main() -> None:
    load_dotenv(override=False)
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    try:
        logger.info("Metalmail MCP Server starting...")
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
