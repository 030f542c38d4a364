#!/usr/bin/env python3
"""
Descope Store MCP Server
Product catalog tools for AI assistants, protected by OAuth 2.1 with Descope social login

CRITICAL: In stdio mode this server uses stdin/stdout for MCP protocol communication.
- stdout is reserved for MCP JSON-RPC messages
- All logging/debug output must go to stderr
"""

import logging
import os
import sys

# Configure logging to stderr only - NEVER stdout in MCP servers
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

from .core.server import get_mcp_server  # noqa: E402

__all__ = ["create_app", "create_server", "main", "streamable_http_main"]


def create_server():
    """Create and return the MCP server instance.

    Returns:
        The configured MCP server instance with all tools registered.
    """
    return get_mcp_server()


def create_app(settings=None):
    """Build the HTTP application (MCP endpoint, OAuth server, bearer gate).

    Args:
        settings: ServerConfig to use (global config by default)
    """
    from .auth import create_auth_server
    from .config import config
    from .core.server import create_server_factory
    from .transport import StreamableHTTPTransport

    settings = settings or config
    auth_server = create_auth_server(settings) if settings.auth_enabled else None
    if auth_server is None:
        logger.warning("MCP_AUTH_ENABLED is false: /mcp is served without authentication")

    transport = StreamableHTTPTransport(
        mcp_server_factory=create_server_factory(),
        host=settings.host,
        port=settings.port,
        auth_server=auth_server,
        settings=settings,
    )
    return transport.create_app()


def main() -> None:
    """Run the MCP server with stdio transport (default)"""
    from .config import config

    logger.info("Starting Descope Store MCP server (stdio)")
    logger.info(f"Using store API: {config.store_url}")

    try:
        server = create_server()
        server.run()
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


def streamable_http_main(host: str = None, port: int = None) -> None:  # type: ignore[assignment]
    """Run the MCP server with Streamable HTTP transport and OAuth 2.1.

    Args:
        host: Host to bind to (default: MCP_HTTP_HOST or 127.0.0.1)
        port: Port to bind to (default: MCP_HTTP_PORT or 3001)
    """
    import uvicorn

    from .config import config

    host = host or config.host
    port = port or config.port
    logger.info(f"Starting Descope Store MCP server (Streamable HTTP) on {host}:{port}")

    try:
        app = create_app()

        # Run with uvicorn
        uvicorn_config = uvicorn.Config(
            app=app,
            host=host,
            port=port,
            log_level="warning",  # Reduce uvicorn logging, let our logger handle it
            access_log=False,
        )

        server = uvicorn.Server(uvicorn_config)
        logger.info(f"Streamable HTTP transport ready on http://{host}:{port}/mcp")
        server.run()

    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception:
        logger.exception("Server error")
        raise
