"""
Starlette routes for the OAuth 2.1 authorization server and social login.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from ..exceptions import INVALID_REQUEST, SERVER_ERROR, OAuthError, OAuthRedirectError
from ..security import CredentialSanitizer
from .pages import render_login_page, render_success_page
from .server import AuthorizationServer

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

Handler = Callable[..., Awaitable[Response]]


def oauth_error_response(error: OAuthError, headers: dict[str, str] | None = None) -> Response:
    """Render an OAuthError as JSON, or as a redirect to the client."""
    if isinstance(error, OAuthRedirectError):
        return RedirectResponse(error.location, status_code=302)
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def handle_oauth_errors(func: Handler) -> Handler:
    """Convert OAuthError and unexpected failures into RFC 6749 error responses."""

    @wraps(func)
    async def wrapper(self: Any, request: Request) -> Response:
        try:
            return await func(self, request)
        except OAuthError as e:
            if e.status_code >= 500:
                logger.error(f"{request.url.path}: {e.error}: {e.description}")
            else:
                logger.info(f"{request.url.path}: {e.error}: {e.description}")
            return oauth_error_response(e)
        except Exception as e:
            logger.error(f"Unexpected error on {request.url.path}: {CredentialSanitizer.sanitize_error(e)}")
            return JSONResponse(
                {"error": SERVER_ERROR, "error_description": "Internal server error"},
                status_code=500,
            )

    return wrapper


async def read_params(request: Request, list_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    """Read a JSON or form-encoded body into a dict.

    Form fields named in ``list_fields`` keep every submitted value.

    Raises:
        OAuthError: invalid_request if the body cannot be parsed
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise OAuthError(INVALID_REQUEST, "Request body is not valid JSON") from None
        if not isinstance(body, dict):
            raise OAuthError(INVALID_REQUEST, "Request body must be a JSON object")
        return body

    form = await request.form()
    params: dict[str, Any] = {}
    for key in form.keys():
        if key in list_fields:
            params[key] = [str(value) for value in form.getlist(key)]
        else:
            params[key] = str(form.get(key))
    return params


class OAuthRoutes:
    """HTTP surface of the authorization server.

    Args:
        auth_server: AuthorizationServer the handlers delegate to
    """

    def __init__(self, auth_server: AuthorizationServer) -> None:
        self.auth_server = auth_server

    def routes(self) -> list[Route]:
        return [
            Route(
                "/.well-known/oauth-authorization-server",
                self.handle_metadata,
                methods=["GET"],
            ),
            Route(
                "/.well-known/oauth-protected-resource",
                self.handle_resource_metadata,
                methods=["GET"],
            ),
            Route("/oauth/register", self.handle_register, methods=["POST"]),
            Route("/oauth/authorize", self.handle_authorize, methods=["GET"]),
            Route("/oauth/callback", self.handle_callback, methods=["GET"]),
            Route("/oauth/callback/{provider}", self.handle_callback, methods=["GET"]),
            Route("/oauth/token", self.handle_token, methods=["POST"]),
            Route("/login", self.handle_login_page, methods=["GET"]),
            Route("/login/{provider}", self.handle_login, methods=["GET"]),
        ]

    async def handle_metadata(self, request: Request) -> JSONResponse:
        """OAuth 2.0 Authorization Server Metadata endpoint (RFC 8414)."""
        return JSONResponse(self.auth_server.metadata())

    async def handle_resource_metadata(self, request: Request) -> JSONResponse:
        """OAuth 2.0 Protected Resource Metadata endpoint (RFC 9728)."""
        return JSONResponse(self.auth_server.protected_resource_metadata())

    @handle_oauth_errors
    async def handle_register(self, request: Request) -> Response:
        """Dynamic Client Registration (RFC 7591)."""
        params = await read_params(request, list_fields=("redirect_uris", "grant_types", "response_types"))
        logger.debug(f"Client registration request: {CredentialSanitizer.sanitize_dict(params)}")
        client = self.auth_server.register_client(params)
        return JSONResponse(client.to_registration_response(), status_code=201, headers=NO_STORE_HEADERS)

    @handle_oauth_errors
    async def handle_authorize(self, request: Request) -> Response:
        login_url = await self.auth_server.authorize(request.query_params)
        return RedirectResponse(login_url, status_code=302)

    @handle_oauth_errors
    async def handle_callback(self, request: Request) -> Response:
        outcome = await self.auth_server.handle_callback(
            code=request.query_params.get("code"),
            state=request.query_params.get("state"),
            provider=request.path_params.get("provider"),
        )
        if outcome.redirect_url:
            return RedirectResponse(outcome.redirect_url, status_code=302)
        if outcome.access_token is None:
            raise OAuthError(SERVER_ERROR, "Login completed without a token", status_code=500)

        html = render_success_page(
            outcome.access_token.token,
            outcome.provider,
            self.auth_server.tokens.access_token_ttl,
            outcome.user,
        )
        return HTMLResponse(html, headers=NO_STORE_HEADERS)

    @handle_oauth_errors
    async def handle_token(self, request: Request) -> Response:
        params = await read_params(request)
        logger.debug(f"Token request: {CredentialSanitizer.sanitize_dict(params)}")
        body = self.auth_server.exchange_token(params)
        return JSONResponse(body, headers=NO_STORE_HEADERS)

    async def handle_login_page(self, request: Request) -> HTMLResponse:
        return HTMLResponse(render_login_page())

    @handle_oauth_errors
    async def handle_login(self, request: Request) -> Response:
        login_url = await self.auth_server.start_social_login(request.path_params["provider"])
        return RedirectResponse(login_url, status_code=302)
