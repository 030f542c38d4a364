"""HTTP transport for the Descope Store MCP server"""

from .streamable_http import StreamableHTTPTransport, normalise_tool_result

__all__ = ["StreamableHTTPTransport", "normalise_tool_result"]
