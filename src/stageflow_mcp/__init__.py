"""StageFlow MCP Server - Model Context Protocol integration.

This package exposes the task workflow (stages, completion, review decisions,
suggestion promotion) to AI assistants through MCP tools.

Modules:
- server: stdio MCP server implementation
- formatters: Response formatting utilities
- tools: MCP tool definitions
- handlers: Tool implementation handlers
"""

__version__ = "1.0.0"

from . import formatters
from . import tools
from . import handlers

__all__ = ["formatters", "tools", "handlers", "__version__"]
