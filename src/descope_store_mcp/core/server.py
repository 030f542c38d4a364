#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2025 Descope Store MCP Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
MCP Server setup and core decorators for Descope Store MCP
"""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from mcp.server.fastmcp import FastMCP

from ..exceptions import ProductNotFoundError, UpstreamError
from ..security import CredentialSanitizer

logger = logging.getLogger(__name__)

# Type variable for decorators
T = TypeVar("T")

# Create FastMCP instance
mcp = FastMCP("descope-store")


def handle_tool_errors(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator to handle standard error patterns for MCP tools.

    Validation and lookup failures are reported to the caller; upstream
    failures are logged (sanitized) and reported generically.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        tool_name = func.__name__
        try:
            return await func(*args, **kwargs)  # type: ignore[misc, return-value]
        except ProductNotFoundError as e:
            logger.info(f"{tool_name}: {e}")
            return f"❌ **Not found**: {e}"
        except ValueError as e:
            logger.warning(f"Validation error in {tool_name}: {e}")
            return f"❌ **Invalid input**: {str(e)}"
        except UpstreamError as e:
            logger.error(f"Upstream error in {tool_name}: {CredentialSanitizer.sanitize_error(e)}")
            return "❌ **Store unavailable**: The store API could not be reached. Please try again later."
        except Exception as e:
            logger.exception(f"Unexpected error in {tool_name}: {CredentialSanitizer.sanitize_error(e)}")
            return f"❌ **Unexpected error in {tool_name}**: {type(e).__name__}"

    return wrapper  # type: ignore[misc, return-value]


def get_mcp_server() -> FastMCP:
    """Return the shared FastMCP instance with all tools and resources registered."""
    # Tools register with the mcp instance via decorators when imported
    from .. import tools  # noqa: F401

    return mcp


def create_server_factory() -> Callable[[], FastMCP]:
    """Factory for the HTTP transport, which asks for a server per request."""

    def factory() -> FastMCP:
        return get_mcp_server()

    return factory
