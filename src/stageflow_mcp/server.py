"""StageFlow MCP Server - Expose the task workflow to AI assistants."""
import os
import sys
import asyncio
import logging
import traceback
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from . import tools
from . import handlers


# Configure logging to stderr (stdout carries the MCP protocol)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr,
    force=True
)
logger = logging.getLogger("stageflow-mcp")

# API Configuration
API_BASE_URL = os.getenv("STAGEFLOW_API_BASE_URL", "http://localhost:8000/api/v1")
ACTOR_ID = os.getenv("STAGEFLOW_ACTOR_ID")  # Sent as X-Actor-Id on every call

logger.info(f"MCP Server starting with API_BASE_URL: {API_BASE_URL}")


# MCP Server instance
app = Server("stageflow-mcp")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools for the task workflow."""
    return tools.get_tools()


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle MCP tool calls by delegating to the handlers."""
    logger.info(f"Tool call: {name} with arguments: {arguments}")

    handler = handlers.HANDLERS.get(name)
    if not handler:
        logger.warning(f"Unknown tool requested: {name}")
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    headers = {}
    if ACTOR_ID:
        headers["X-Actor-Id"] = ACTOR_ID

    async with httpx.AsyncClient(base_url=API_BASE_URL, timeout=30.0, headers=headers) as client:
        try:
            content = await handler(arguments or {}, client)
            return content

        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error during {name} call:")
            logger.error(f"  Status: {e.response.status_code}")
            logger.error(f"  URL: {e.request.url}")
            try:
                detail = e.response.json().get("detail", str(e))
                if isinstance(detail, dict):
                    detail = detail.get("message", detail)
            except ValueError:
                detail = e.response.text or str(e)
            return [TextContent(type="text", text=f"Error ({e.response.status_code}): {detail}")]

        except httpx.RequestError as e:
            logger.error(f"Request error during {name} call: {type(e).__name__}: {e}")
            return [TextContent(type="text", text=f"Error: Connection failed - {str(e)}")]

        except KeyError as e:
            logger.error(f"Missing argument for {name}: {e}\n{traceback.format_exc()}")
            return [TextContent(type="text", text=f"Error: missing required argument {e}")]


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
