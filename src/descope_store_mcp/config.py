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
Configuration module for Descope Store MCP Server
Centralizes all configuration values and environment variables
"""

import os
from dataclasses import dataclass, field
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class ServerConfig:
    """Configuration for the MCP server"""

    server_name: str = "descope-store-mcp"
    server_version: str = "1.0.0"
    mcp_protocol_version: str = "2025-03-26"

    # Upstream store API
    store_url: str = field(
        default_factory=lambda: os.getenv("DESCOPE_STORE_URL", "http://localhost:3000").rstrip("/")
    )

    # Public URL of this server, used as OAuth issuer
    server_url: str = field(
        default_factory=lambda: os.getenv("MCP_SERVER_URL", "http://localhost:3001").rstrip("/")
    )
    host: str = field(default_factory=lambda: os.getenv("MCP_HTTP_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("MCP_HTTP_PORT", "3001")))
    cors_origins: list[str] = field(default_factory=lambda: _env_list("MCP_CORS_ORIGINS", "*"))

    # Authentication
    auth_enabled: bool = field(default_factory=lambda: _env_bool("MCP_AUTH_ENABLED", "true"))
    descope_project_id: str = field(default_factory=lambda: os.getenv("DESCOPE_PROJECT_ID", ""))
    descope_base_url: str = field(
        default_factory=lambda: os.getenv("DESCOPE_BASE_URL", "https://api.descope.com").rstrip(
            "/"
        )
    )
    default_provider: str = field(
        default_factory=lambda: os.getenv("DESCOPE_DEFAULT_PROVIDER", "google").lower()
    )
    jwks_cache_ttl: int = field(
        default_factory=lambda: int(os.getenv("DESCOPE_JWKS_CACHE_TTL", "3600"))
    )

    # Token lifetimes (seconds)
    auth_code_ttl: int = field(default_factory=lambda: int(os.getenv("AUTH_CODE_TTL", "600")))
    access_token_ttl: int = field(
        default_factory=lambda: int(os.getenv("ACCESS_TOKEN_TTL", "3600"))
    )
    refresh_token_ttl: int = field(
        default_factory=lambda: int(os.getenv("REFRESH_TOKEN_TTL", str(30 * 24 * 3600)))
    )
    oauth_state_ttl: int = field(default_factory=lambda: int(os.getenv("OAUTH_STATE_TTL", "600")))

    # Scopes
    scopes_supported: list[str] = field(
        default_factory=lambda: ["mcp:tools", "mcp:resources", "store:read", "store:write"]
    )
    default_authorize_scope: str = "mcp:tools"
    default_client_scope: str = "mcp:tools mcp:resources store:read"
    client_credentials_scope: str = "mcp:tools mcp:resources store:read"

    # Outbound request timeout (seconds)
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "10"))
    )

    # Tool limits
    min_compare_products: int = 2
    max_compare_products: int = 4
    description_preview_length: int = 200

    # Paths that bypass the bearer gate (prefix match)
    public_paths: tuple[str, ...] = (
        "/health",
        "/mcp/info",
        "/login",
        "/oauth/",
        "/.well-known/",
    )

    def endpoint(self, path: str) -> str:
        """Absolute URL of a path on this server"""
        return f"{self.server_url}{path}"

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary"""
        return {
            "server_name": self.server_name,
            "server_version": self.server_version,
            "store_url": self.store_url,
            "server_url": self.server_url,
            "auth_enabled": self.auth_enabled,
            "descope_project_id": self.descope_project_id,
            "default_provider": self.default_provider,
            "access_token_ttl": self.access_token_ttl,
            "scopes_supported": list(self.scopes_supported),
            "request_timeout": self.request_timeout,
        }


# Global configuration instance
config = ServerConfig()
