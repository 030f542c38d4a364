"""
CLI entry point for Descope Store MCP server
"""

import os

if __name__ == "__main__":
    from . import main, streamable_http_main

    # Check if HTTP mode requested
    transport = os.environ.get("MCP_TRANSPORT", "stdio")

    if transport in ("http", "streamable_http"):
        streamable_http_main()
    else:
        main()
