"""Core server module with FastMCP instance and decorators"""

from .server import create_server_factory, get_mcp_server, handle_tool_errors, mcp

__all__ = ["create_server_factory", "get_mcp_server", "handle_tool_errors", "mcp"]
