"""
Bearer token authentication middleware.

Guards every non-public HTTP path with an access token issued by the
built-in authorization server.

Key Features:
- Public discovery, login and OAuth paths bypass the gate
- 401 responses carry discovery hints and a WWW-Authenticate header
- Request state injection (token + user_context) for downstream handlers
- Logs to stderr only (no stdout pollution)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..exceptions import INVALID_TOKEN, OAuthError

if TYPE_CHECKING:
    from starlette.requests import Request

    from .server import AuthorizationServer

logger = logging.getLogger(__name__)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests to protected paths without a valid bearer token.

    Attributes:
        auth_server: Authorization server that issued the tokens
        public_paths: Path prefixes served without authentication
    """

    def __init__(  # type: ignore[no-untyped-def]
        self,
        app,
        auth_server: AuthorizationServer,
        public_paths: tuple[str, ...] = (),
    ) -> None:
        super().__init__(app)
        self.auth_server = auth_server
        self.public_paths = public_paths

        logger.info(f"BearerAuthMiddleware initialized: public_paths={list(public_paths)}")

    def is_public(self, request: Request) -> bool:
        if request.method == "OPTIONS":
            return True
        path = request.url.path
        for prefix in self.public_paths:
            base = prefix.rstrip("/")
            # Whole segments only: /login covers /login/google, not /loginfoo
            if path == base or path.startswith(base + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        """Authenticate the request, then pass it downstream.

        Flow:
        1. Public paths and CORS preflights pass straight through
        2. Resolve the Authorization header to an access token
        3. On failure → 401 (or 500 if the session could not be checked)
        4. Inject token and user_context into request.state
        """
        if self.is_public(request):
            return await call_next(request)

        try:
            token, user_context = await self.auth_server.authenticate(
                request.headers.get("authorization")
            )
        except OAuthError as e:
            return self._error_response(request, e)

        request.state.token = token
        request.state.user_context = user_context

        logger.info(
            f"Authenticated request: user={user_context.user_id}, "
            f"client={user_context.client_id}, path={request.url.path}"
        )
        return await call_next(request)

    def _error_response(self, request: Request, error: OAuthError) -> JSONResponse:
        client_host = request.client.host if request.client else "unknown"
        if error.status_code >= 500:
            logger.error(f"Authentication unavailable: path={request.url.path}, client={client_host}")
            return JSONResponse(error.to_dict(), status_code=error.status_code)

        logger.warning(
            f"Unauthorized request: path={request.url.path}, client={client_host}, "
            f"reason={error.description}"
        )
        body = {**error.to_dict(), **self.auth_server.auth_hints()}
        headers = {
            "WWW-Authenticate": self.auth_server.www_authenticate_header(
                INVALID_TOKEN, error.description
            )
        }
        return JSONResponse(body, status_code=401, headers=headers)
