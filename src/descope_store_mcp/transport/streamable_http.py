"""
Streamable HTTP transport for the Descope Store MCP server.

Stateless HTTP JSON transport: every JSON-RPC request is answered directly
with a JSON body. The same Starlette app carries the OAuth 2.1 authorization
server, the bearer gate and a small REST surface for tools.
"""

import base64
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Optional

from mcp.server.fastmcp.exceptions import ToolError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..auth import AuthorizationServer, BearerAuthMiddleware, OAuthRoutes
from ..clients.catalog import close_catalog_client
from ..config import ServerConfig, config
from ..security import CredentialSanitizer

logger = logging.getLogger(__name__)


def _dump(model: Any) -> Any:
    """JSON-ready dict for an MCP SDK model."""
    if hasattr(model, "model_dump"):
        return model.model_dump(mode="json", by_alias=True, exclude_none=True)
    return model


def normalise_tool_result(result: Any) -> dict[str, Any]:
    """Convert FastMCP.call_tool output into an MCP CallToolResult body.

    FastMCP returns content blocks, a ``(content, structured)`` pair, or a
    bare structured dict depending on the SDK version and the tool signature.
    """
    structured: Optional[dict[str, Any]] = None
    if isinstance(result, tuple) and len(result) == 2:
        content, structured = result
    elif isinstance(result, dict):
        structured = result
        content = [{"type": "text", "text": json.dumps(result, indent=2)}]
    else:
        content = result

    body: dict[str, Any] = {"content": [_dump(block) for block in content], "isError": False}
    if structured is not None:
        body["structuredContent"] = structured
    return body


def _tool_text(result: dict[str, Any]) -> str:
    return "\n".join(
        block.get("text", "") for block in result.get("content", []) if block.get("type") == "text"
    )


def _jsonrpc_error(request_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


class StreamableHTTPTransport:
    """
    Stateless HTTP JSON transport implementation.

    Asks the factory for a server on each request; FastMCP servers are
    shared, so this costs nothing and keeps requests isolated from each other.
    """

    def __init__(
        self,
        mcp_server_factory: Callable[[], Any],
        host: str = "127.0.0.1",
        port: int = 3001,
        auth_server: Optional[AuthorizationServer] = None,
        settings: Optional[ServerConfig] = None,
    ):
        """
        Initialize streamable HTTP transport.

        Args:
            mcp_server_factory: Factory function returning the MCP server
            host: Host to bind to
            port: Port to bind to
            auth_server: OAuth authorization server; None serves without OAuth
            settings: Server configuration (global config by default)
        """
        self.mcp_server_factory = mcp_server_factory
        self.host = host
        self.port = port
        self.auth_server = auth_server
        self.settings = settings or config

        # Reported by /health
        self.metrics = {"requests_handled": 0, "errors": 0}

    def create_app(self) -> Starlette:
        """Create Starlette application with MCP, REST and OAuth routes."""
        routes = [
            Route("/mcp", self.handle_mcp_request, methods=["POST"]),
            Route("/mcp", self.handle_mcp_get, methods=["GET"]),
            Route("/mcp/tools", self.handle_list_tools, methods=["GET"]),
            Route("/mcp/tools/{tool_name}", self.handle_call_tool, methods=["POST"]),
            Route("/mcp/info", self.handle_info, methods=["GET"]),
            Route("/health", self.handle_health, methods=["GET"]),
        ]

        middleware = [
            Middleware(
                CORSMiddleware,
                allow_origins=self.settings.cors_origins,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Authorization", "Content-Type", "Mcp-Session-Id", "Mcp-Protocol-Version"],
                expose_headers=["WWW-Authenticate"],
            )
        ]

        if self.auth_server is not None:
            routes.extend(OAuthRoutes(self.auth_server).routes())
            if self.settings.auth_enabled:
                middleware.append(
                    Middleware(
                        BearerAuthMiddleware,
                        auth_server=self.auth_server,
                        public_paths=self.settings.public_paths,
                    )
                )

        return Starlette(routes=routes, middleware=middleware, lifespan=self.lifespan)

    @contextlib.asynccontextmanager
    async def lifespan(self, app: Starlette) -> AsyncIterator[None]:
        logger.info(f"Streamable HTTP transport initialized on {self.host}:{self.port}")
        try:
            yield
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Close outbound HTTP clients."""
        await close_catalog_client()
        identity = getattr(self.auth_server, "identity", None)
        if identity is not None and hasattr(identity, "aclose"):
            await identity.aclose()
        logger.info("Streamable HTTP transport cleanup complete")

    async def handle_health(self, request: Request) -> JSONResponse:
        """Health check endpoint for load balancers."""
        return JSONResponse(
            {
                "status": "healthy",
                "service": self.settings.server_name,
                "version": self.settings.server_version,
                "transport": "streamable-http",
                "auth_enabled": self.settings.auth_enabled and self.auth_server is not None,
                "metrics": dict(self.metrics),
            }
        )

    async def handle_info(self, request: Request) -> JSONResponse:
        """Server description and authentication discovery."""
        info: dict[str, Any] = {
            "name": self.settings.server_name,
            "version": self.settings.server_version,
            "protocol_version": self.settings.mcp_protocol_version,
            "description": "Descope Store MCP Server with OAuth 2.1 Authentication",
            "capabilities": {"tools": True, "resources": True},
            "config": self.settings.to_dict(),
        }
        if self.auth_server is not None:
            metadata = self.auth_server.metadata()
            info["capabilities"]["authentication"] = "OAuth 2.1 Bearer Token"
            info["auth_info"] = {
                "provider": "Descope + OAuth 2.1",
                "authorization_endpoint": metadata["authorization_endpoint"],
                "token_endpoint": metadata["token_endpoint"],
                "registration_endpoint": metadata["registration_endpoint"],
                "supported_scopes": metadata["scopes_supported"],
                "grant_types": metadata["grant_types_supported"],
                "pkce_required": True,
            }
        return JSONResponse(info)

    async def handle_mcp_get(self, request: Request) -> Response:
        """
        Handle GET requests to /mcp endpoint.

        Serves welcome page for browsers or returns 405 for API clients.
        """
        user_agent = request.headers.get("user-agent", "").lower()
        is_browser = any(
            browser in user_agent for browser in ["mozilla", "chrome", "safari", "edge", "firefox", "opera"]
        )
        accepts_html = "text/html" in request.headers.get("accept", "")

        if not (is_browser and accepts_html):
            return JSONResponse(
                {
                    "jsonrpc": "2.0",
                    "error": {
                        "code": -32601,
                        "message": "Method not allowed. Use POST for stateless JSON-RPC requests.",
                        "data": {
                            "allowed_methods": ["POST"],
                            "endpoint": "/mcp",
                            "content_type": "application/json",
                        },
                    },
                },
                status_code=405,
                headers={"Allow": "POST"},
            )

        return Response(self._generate_welcome_page(), media_type="text/html")

    async def handle_list_tools(self, request: Request) -> JSONResponse:
        """REST listing of the available tools."""
        server = self.mcp_server_factory()
        tools = [_dump(tool) for tool in await server.list_tools()]
        return JSONResponse({"tools": tools})

    async def handle_call_tool(self, request: Request) -> JSONResponse:
        """REST tool invocation: body ``{"arguments": {...}}`` → ``{"result": ...}``."""
        tool_name = request.path_params["tool_name"]
        server = self.mcp_server_factory()

        if tool_name not in {tool.name for tool in await server.list_tools()}:
            return JSONResponse({"error": "Tool not found"}, status_code=404)

        try:
            body = await request.json() if await request.body() else {}
        except ValueError:
            return JSONResponse({"error": "Invalid JSON in request body"}, status_code=400)
        arguments = body.get("arguments", {}) if isinstance(body, dict) else None
        if not isinstance(arguments, dict):
            return JSONResponse({"error": "arguments must be an object"}, status_code=400)

        try:
            result = normalise_tool_result(await server.call_tool(tool_name, arguments))
        except ToolError as e:
            logger.warning(f"Tool {tool_name} failed: {CredentialSanitizer.sanitize_error(e)}")
            return JSONResponse({"error": f"Failed to execute {tool_name}"}, status_code=500)

        return JSONResponse({"result": _tool_text(result)})

    async def handle_mcp_request(self, request: Request) -> Response:
        """
        Handle POST requests to /mcp endpoint.

        Notifications are acknowledged with 202; requests get a JSON-RPC response.
        """
        self.metrics["requests_handled"] += 1

        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(
                _jsonrpc_error(None, -32700, "Parse error", "Invalid JSON in request body"),
                status_code=400,
            )

        if not self._is_valid_jsonrpc(body):
            return JSONResponse(
                _jsonrpc_error(
                    body.get("id") if isinstance(body, dict) else None,
                    -32600,
                    "Invalid Request",
                    "Missing or invalid JSON-RPC 2.0 structure",
                ),
                status_code=400,
            )

        # Notifications (no 'id') need no response body
        if "id" not in body:
            logger.debug(f"Handling notification: {body.get('method')}")
            return Response(status_code=202)

        handler = _StreamableRequestHandler(self.mcp_server_factory(), self.settings)
        try:
            return JSONResponse(await handler.handle_request(body))
        except Exception as e:
            self.metrics["errors"] += 1
            logger.exception(f"Error handling MCP request: {CredentialSanitizer.sanitize_error(e)}")
            return JSONResponse(
                _jsonrpc_error(body.get("id"), -32603, "Internal error"),
                status_code=500,
            )

    def _is_valid_jsonrpc(self, body: Any) -> bool:
        """Check if request body is valid JSON-RPC 2.0."""
        if not isinstance(body, dict):
            return False
        if body.get("jsonrpc") != "2.0":
            return False
        return isinstance(body.get("method"), str)

    def _generate_welcome_page(self) -> str:
        """Generate HTML welcome page for browsers."""
        login = (
            '<p>Get a bearer token by signing in at <a href="/login">/login</a>, '
            "or use the OAuth endpoints advertised at "
            "<code>/.well-known/oauth-authorization-server</code>.</p>"
            if self.auth_server is not None
            else ""
        )
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Descope Store MCP Server</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 800px;
            margin: 0 auto;
            padding: 2rem;
            line-height: 1.6;
            background: #f8f9fa;
        }}
        .container {{
            background: white;
            padding: 2rem;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }}
        h1 {{
            color: #2c3e50;
            border-bottom: 3px solid #3498db;
            padding-bottom: 0.5rem;
        }}
        .endpoint {{
            background: #f5f5f5;
            border: 1px solid #ddd;
            padding: 1rem;
            border-radius: 4px;
            font-family: 'Monaco', 'Menlo', monospace;
            margin: 1rem 0;
        }}
    </style>
</head>
<body>
    <div class="container">
        <h1>🛍️ Descope Store MCP Server</h1>
        <p>✅ Server is running. Send JSON-RPC 2.0 requests with a bearer token:</p>
        <div class="endpoint">POST /mcp<br>Content-Type: application/json<br>Authorization: Bearer &lt;token&gt;</div>
        {login}
        <h3>Available Tools</h3>
        <ul>
            <li><strong>search_products</strong> - Search the catalog by text and category</li>
            <li><strong>get_product</strong> - Full details for one product</li>
            <li><strong>compare_products</strong> - Compare 2 to 4 products</li>
            <li><strong>browse_catalog</strong> - Whole catalog with a summary</li>
            <li><strong>create_order</strong> - Place an order</li>
        </ul>
    </div>
</body>
</html>
"""

class _StreamableRequestHandler:
    """
    JSON-RPC dispatcher for one request.

    Provides similar functionality to the MCP SDK's StreamableHTTPServerTransport
    but answers with plain JSON, working directly against a FastMCP server.
    """

    def __init__(self, server: Any, settings: ServerConfig):
        self.server = server
        self.settings = settings

    async def handle_request(self, body: dict[str, Any]) -> dict[str, Any]:
        """Route a JSON-RPC request to its handler and return the response body."""
        method = body["method"]
        params = body.get("params") or {}
        request_id = body.get("id")

        handlers = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "resources/list": self._handle_resources_list,
            "resources/templates/list": self._handle_resource_templates_list,
            "resources/read": self._handle_resources_read,
            "prompts/list": self._handle_prompts_list,
        }
        handler = handlers.get(method)
        if handler is None:
            return _jsonrpc_error(request_id, -32601, "Method not found", f"Method '{method}' not supported")
        if not isinstance(params, dict):
            return _jsonrpc_error(request_id, -32602, "Invalid params", "params must be an object")

        result = await handler(params, request_id)
        if "error" in result:
            return result
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def _handle_initialize(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        return {
            "protocolVersion": self.settings.mcp_protocol_version,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
                "prompts": {"listChanged": False},
            },
            "serverInfo": {
                "name": self.settings.server_name,
                "version": self.settings.server_version,
            },
        }

    async def _handle_ping(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        return {}

    async def _handle_tools_list(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        tools = await self.server.list_tools()
        return {"tools": [_dump(tool) for tool in tools]}

    async def _handle_tools_call(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        tool_name = params.get("name")
        arguments = params.get("arguments") or {}

        if not tool_name:
            return _jsonrpc_error(request_id, -32602, "Invalid params", "Missing 'name' parameter")
        if not isinstance(arguments, dict):
            return _jsonrpc_error(request_id, -32602, "Invalid params", "'arguments' must be an object")

        try:
            return normalise_tool_result(await self.server.call_tool(tool_name, arguments))
        except ToolError as e:
            # Reported in the result so the model can see it (MCP tool error convention)
            logger.warning(f"Tool {tool_name} failed: {CredentialSanitizer.sanitize_error(e)}")
            return {
                "content": [{"type": "text", "text": CredentialSanitizer.sanitize_string(str(e))}],
                "isError": True,
            }

    async def _handle_resources_list(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        resources = await self.server.list_resources()
        return {"resources": [_dump(resource) for resource in resources]}

    async def _handle_resource_templates_list(
        self, params: dict[str, Any], request_id: Any
    ) -> dict[str, Any]:
        templates = await self.server.list_resource_templates()
        return {"resourceTemplates": [_dump(template) for template in templates]}

    async def _handle_resources_read(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        uri = params.get("uri")
        if not uri:
            return _jsonrpc_error(request_id, -32602, "Invalid params", "Missing 'uri' parameter")

        try:
            contents = await self.server.read_resource(uri)
        except Exception as e:
            logger.warning(f"Resource {uri} failed: {CredentialSanitizer.sanitize_error(e)}")
            return _jsonrpc_error(request_id, -32002, "Resource not found", f"Resource '{uri}' could not be read")

        items = []
        for item in contents:
            entry: dict[str, Any] = {"uri": uri, "mimeType": item.mime_type or "text/plain"}
            if isinstance(item.content, bytes):
                entry["blob"] = base64.b64encode(item.content).decode("ascii")
            else:
                entry["text"] = item.content
            items.append(entry)
        return {"contents": items}

    async def _handle_prompts_list(self, params: dict[str, Any], request_id: Any) -> dict[str, Any]:
        prompts = await self.server.list_prompts()
        return {"prompts": [_dump(prompt) for prompt in prompts]}
