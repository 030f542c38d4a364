"""
Tests for the OAuth 2.1 authorization server operations.
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from descope_store_mcp.auth.models import AuthorizationCode
from descope_store_mcp.auth.pkce import compute_code_challenge
from descope_store_mcp.auth.server import LOGIN_CLIENT_ID, AuthorizationServer
from descope_store_mcp.config import ServerConfig
from descope_store_mcp.exceptions import OAuthError, OAuthRedirectError, append_query

REDIRECT_URI = "https://app.example.com/callback"
VERIFIER = "verifier-0123456789-abcdefghijklmnopqrstuvwxyz"


def _register(auth_server, **overrides):
    body = {"client_name": "Test Client", "redirect_uris": [REDIRECT_URI]}
    body.update(overrides)
    return auth_server.register_client(body)


def _authorize_params(client, **overrides):
    params = {
        "client_id": client.client_id,
        "redirect_uri": REDIRECT_URI,
        "response_type": "code",
        "scope": "mcp:tools mcp:resources",
        "state": "client-state",
        "code_challenge": compute_code_challenge(VERIFIER),
        "code_challenge_method": "S256",
    }
    params.update(overrides)
    return {key: value for key, value in params.items() if value is not None}


def _code_grant(client, code, **overrides):
    params = {
        "grant_type": "authorization_code",
        "code": code,
        "code_verifier": VERIFIER,
        "client_id": client.client_id,
        "redirect_uri": REDIRECT_URI,
    }
    params.update(overrides)
    return {key: value for key, value in params.items() if value is not None}


def _query(url):
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


async def _complete_authorization(auth_server, identity, client):
    await auth_server.authorize(_authorize_params(client))
    outcome = await auth_server.handle_callback("descope-code", identity.last_state())
    return _query(outcome.redirect_url)["code"]


class TestMetadata:
    def test_authorization_server_metadata(self, auth_server):
        metadata = auth_server.metadata()
        assert metadata["issuer"] == "http://testserver"
        assert metadata["authorization_endpoint"] == "http://testserver/oauth/authorize"
        assert metadata["token_endpoint"] == "http://testserver/oauth/token"
        assert metadata["registration_endpoint"] == "http://testserver/oauth/register"
        assert metadata["response_types_supported"] == ["code"]
        assert metadata["code_challenge_methods_supported"] == ["S256"]
        assert "authorization_code" in metadata["grant_types_supported"]
        assert "client_credentials" in metadata["grant_types_supported"]
        assert "store:write" in metadata["scopes_supported"]

    def test_protected_resource_metadata(self, auth_server):
        metadata = auth_server.protected_resource_metadata()
        assert metadata["resource"] == "http://testserver/mcp"
        assert metadata["authorization_servers"] == ["http://testserver"]
        assert metadata["bearer_methods_supported"] == ["header"]

    def test_www_authenticate_header(self, auth_server):
        header = auth_server.www_authenticate_header("invalid_token", "Invalid access token")
        assert header.startswith('Bearer resource_metadata="http://testserver/.well-known/oauth-protected-resource"')
        assert 'error="invalid_token"' in header


class TestRegistration:
    def test_defaults(self, identity):
        settings = ServerConfig(server_url="http://localhost:3001", auth_enabled=True)
        client = AuthorizationServer(settings, identity).register_client({})
        assert client.client_name == "MCP Client"
        assert client.redirect_uris == ("http://localhost:3001/oauth/callback",)
        assert client.grant_types == ("authorization_code",)
        assert client.response_types == ("code",)
        assert client.scope == "mcp:tools mcp:resources store:read"
        assert client.client_secret.startswith("mcp_sk_")

    def test_string_grant_types_are_split(self, auth_server):
        client = _register(auth_server, grant_types="authorization_code refresh_token")
        assert client.grant_types == ("authorization_code", "refresh_token")

    @pytest.mark.parametrize(
        "body",
        [
            ["not", "an", "object"],
            {"redirect_uris": [1, 2]},
            {"grant_types": ["password"]},
            {"token_endpoint_auth_method": "private_key_jwt"},
            {"scope": 7},
        ],
    )
    def test_malformed_metadata(self, auth_server, body):
        with pytest.raises(OAuthError) as exc_info:
            auth_server.register_client(body)
        assert exc_info.value.error == "invalid_request"

    def test_no_acceptable_redirect_uri(self, auth_server):
        with pytest.raises(OAuthError) as exc_info:
            _register(auth_server, redirect_uris=["http://example.com/cb"])
        assert exc_info.value.error == "invalid_redirect_uri"


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_redirects_to_identity_provider(self, auth_server, identity):
        client = _register(auth_server)
        login_url = await auth_server.authorize(_authorize_params(client))

        assert login_url == "https://descope.example/oauth/google"
        provider, callback = identity.started[0]
        assert provider.value == "google"
        assert callback.startswith("http://testserver/oauth/callback?state=")

    @pytest.mark.asyncio
    async def test_provider_parameter_selects_provider(self, auth_server, identity):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client, provider="GitHub"))
        assert identity.started[0][0].value == "github"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["client_id", "redirect_uri", "code_challenge"])
    async def test_missing_required_parameter(self, auth_server, missing):
        client = _register(auth_server)
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authorize(_authorize_params(client, **{missing: None}))
        assert exc_info.value.error == "invalid_request"
        assert exc_info.value.status_code == 400
        assert not isinstance(exc_info.value, OAuthRedirectError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["plain", None])
    async def test_challenge_method_must_be_s256(self, auth_server, method):
        client = _register(auth_server)
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authorize(_authorize_params(client, code_challenge_method=method))
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_response_type_must_be_code(self, auth_server):
        client = _register(auth_server)
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authorize(_authorize_params(client, response_type="token"))
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_unknown_client(self, auth_server):
        client = _register(auth_server)
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authorize(_authorize_params(client, client_id="mcp_client_unknown"))
        assert exc_info.value.error == "invalid_client"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unregistered_redirect_uri(self, auth_server):
        client = _register(auth_server)
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authorize(
                _authorize_params(client, redirect_uri="https://attacker.example.com/cb")
            )
        assert exc_info.value.error == "invalid_request"
        assert not isinstance(exc_info.value, OAuthRedirectError)

    @pytest.mark.asyncio
    async def test_unsupported_provider_is_redirected(self, auth_server, token_backend):
        client = _register(auth_server)
        with pytest.raises(OAuthRedirectError) as exc_info:
            await auth_server.authorize(_authorize_params(client, provider="myspace"))

        query = _query(exc_info.value.location)
        assert exc_info.value.location.startswith(REDIRECT_URI)
        assert query["error"] == "invalid_request"
        assert len(token_backend) == 0

    @pytest.mark.asyncio
    async def test_identity_provider_down_is_redirected(self, auth_server, identity, token_backend):
        client = _register(auth_server)
        identity.unavailable = True

        with pytest.raises(OAuthRedirectError) as exc_info:
            await auth_server.authorize(_authorize_params(client))

        assert _query(exc_info.value.location)["error"] == "server_error"
        # Minted code and state are discarded
        assert len(token_backend) == 0


class TestCallback:
    @pytest.mark.asyncio
    async def test_redirects_back_with_code(self, auth_server, identity):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))

        outcome = await auth_server.handle_callback("descope-code", identity.last_state())

        assert outcome.redirect_url.startswith(REDIRECT_URI + "?")
        query = _query(outcome.redirect_url)
        assert query["state"] == "authorized"
        assert query["code"]
        assert outcome.provider == "google"

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, auth_server, identity):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))
        state = identity.last_state()
        await auth_server.handle_callback("descope-code", state)

        with pytest.raises(OAuthError) as exc_info:
            await auth_server.handle_callback("descope-code", state)
        assert exc_info.value.error == "invalid_request"
        assert not isinstance(exc_info.value, OAuthRedirectError)

    @pytest.mark.asyncio
    async def test_missing_or_unknown_state(self, auth_server):
        for state in (None, "", "unknown-state"):
            with pytest.raises(OAuthError) as exc_info:
                await auth_server.handle_callback("descope-code", state)
            assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_expired_state(self, auth_server, identity, clock):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))
        clock.advance(601)

        with pytest.raises(OAuthError) as exc_info:
            await auth_server.handle_callback("descope-code", identity.last_state())
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_provider_mismatch(self, auth_server, identity, token_backend):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))

        with pytest.raises(OAuthError) as exc_info:
            await auth_server.handle_callback("descope-code", identity.last_state(), provider="github")

        assert exc_info.value.error == "invalid_request"
        assert not isinstance(exc_info.value, OAuthRedirectError)
        assert len(token_backend) == 0

    @pytest.mark.asyncio
    async def test_matching_provider_in_path(self, auth_server, identity):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))
        outcome = await auth_server.handle_callback("descope-code", identity.last_state(), provider="Google")
        assert outcome.redirect_url

    @pytest.mark.asyncio
    async def test_missing_descope_code_is_redirected(self, auth_server, identity):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))

        with pytest.raises(OAuthRedirectError) as exc_info:
            await auth_server.handle_callback(None, identity.last_state())
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_invalid_session_is_redirected(self, auth_server, identity, token_backend):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))
        identity.sessions.clear()

        with pytest.raises(OAuthRedirectError) as exc_info:
            await auth_server.handle_callback("descope-code", identity.last_state())
        assert exc_info.value.error == "invalid_grant"
        assert len(token_backend) == 0

    @pytest.mark.asyncio
    async def test_descope_exchange_failure_is_redirected(self, auth_server, identity):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))

        with pytest.raises(OAuthRedirectError) as exc_info:
            await auth_server.handle_callback("not-a-descope-code", identity.last_state())
        assert exc_info.value.error == "server_error"

    @pytest.mark.asyncio
    async def test_pending_code_gone(self, auth_server, identity, token_backend):
        client = _register(auth_server)
        await auth_server.authorize(_authorize_params(client))
        state = identity.last_state()
        pending = token_backend.get(f"oauth_state:{state}")
        auth_server.tokens.discard_auth_code(pending.auth_code)

        with pytest.raises(OAuthRedirectError) as exc_info:
            await auth_server.handle_callback("descope-code", state)
        assert exc_info.value.error == "invalid_grant"


class TestSocialLogin:
    @pytest.mark.asyncio
    async def test_issues_linked_token(self, auth_server, identity):
        login_url = await auth_server.start_social_login("github")
        assert login_url == "https://descope.example/oauth/github"

        outcome = await auth_server.handle_callback("descope-code", identity.last_state())

        token = outcome.access_token
        assert outcome.redirect_url is None
        assert token.token.startswith("mcp_at_")
        assert token.client_id == LOGIN_CLIENT_ID
        assert token.linked_session == "session-jwt-1"
        assert token.subject == "U123"
        assert token.provider == "github"
        assert outcome.user["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, auth_server):
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.start_social_login("myspace")
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_identity_provider_down(self, auth_server, identity, token_backend):
        identity.unavailable = True
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.start_social_login("google")
        assert exc_info.value.error == "server_error"
        assert exc_info.value.status_code == 500
        assert len(token_backend) == 0

    @pytest.mark.asyncio
    async def test_invalid_session_is_json_error(self, auth_server, identity):
        await auth_server.start_social_login("google")
        identity.sessions.clear()
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.handle_callback("descope-code", identity.last_state())
        assert exc_info.value.error == "invalid_grant"
        assert not isinstance(exc_info.value, OAuthRedirectError)


class TestTokenEndpoint:
    @pytest.mark.asyncio
    async def test_authorization_code_grant(self, auth_server, identity):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)

        body = auth_server.exchange_token(_code_grant(client, code))

        assert body["access_token"].startswith("mcp_at_")
        assert body["refresh_token"].startswith("mcp_rt_")
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 3600
        assert body["scope"] == "mcp:tools mcp:resources"

        token = auth_server.tokens.get_access_token(body["access_token"])
        assert token.linked_session == "session-jwt-1"
        assert token.subject == "U123"

    @pytest.mark.asyncio
    async def test_code_cannot_be_redeemed_twice(self, auth_server, identity):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)
        params = _code_grant(client, code)

        auth_server.exchange_token(params)
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(params)
        assert exc_info.value.error == "invalid_grant"

    def test_expired_code_with_valid_verifier(self, auth_server, clock):
        auth_server.tokens.put_auth_code(
            AuthorizationCode(
                code="code-1",
                client_id="mcp_client_x",
                redirect_uri=REDIRECT_URI,
                scope="mcp:tools",
                code_challenge=compute_code_challenge(VERIFIER),
            )
        )
        clock.advance(601)

        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(
                {
                    "grant_type": "authorization_code",
                    "code": "code-1",
                    "code_verifier": VERIFIER,
                    "client_id": "mcp_client_x",
                    "redirect_uri": REDIRECT_URI,
                }
            )
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["code_verifier", "client_id", "redirect_uri"])
    async def test_missing_field_burns_code(self, auth_server, identity, field):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)

        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(_code_grant(client, code, **{field: None}))
        assert exc_info.value.error == "invalid_request"
        assert exc_info.value.status_code == 400
        assert field in exc_info.value.description

        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(_code_grant(client, code))
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.asyncio
    async def test_binding_fields_cannot_both_be_omitted(self, auth_server, identity, token_backend):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(_code_grant(client, code, client_id=None, redirect_uri=None))
        assert exc_info.value.error == "invalid_request"
        # Nothing issued, code consumed
        assert len(token_backend) == 0

    @pytest.mark.asyncio
    async def test_wrong_verifier(self, auth_server, identity):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(_code_grant(client, code, code_verifier=VERIFIER + "x"))
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,value",
        [("client_id", "mcp_client_other"), ("redirect_uri", "https://app.example.com/other")],
    )
    async def test_mismatched_binding(self, auth_server, identity, field, value):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(_code_grant(client, code, **{field: value}))
        assert exc_info.value.error == "invalid_grant"

    def test_missing_code(self, auth_server):
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token({"grant_type": "authorization_code", "code_verifier": VERIFIER})
        assert exc_info.value.error == "invalid_request"

    def test_client_credentials_grant(self, auth_server):
        client = _register(auth_server, grant_types=["client_credentials"])
        body = auth_server.exchange_token(
            {
                "grant_type": "client_credentials",
                "client_id": client.client_id,
                "client_secret": client.client_secret,
            }
        )
        assert body["access_token"].startswith("mcp_at_")
        assert body["scope"] == "mcp:tools mcp:resources store:read"
        assert "refresh_token" not in body

    @pytest.mark.parametrize(
        "client_id,secret",
        [
            (None, None),
            ("known", None),
            ("known", "mcp_sk_wrong"),
            ("mcp_client_unknown", "mcp_sk_whatever"),
        ],
    )
    def test_client_credentials_rejected(self, auth_server, client_id, secret):
        client = _register(auth_server, grant_types=["client_credentials"])
        params = {"grant_type": "client_credentials"}
        if client_id:
            params["client_id"] = client.client_id if client_id == "known" else client_id
        if secret:
            params["client_secret"] = secret

        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(params)
        assert exc_info.value.error == "invalid_client"
        assert exc_info.value.status_code == 401

    def test_public_client_cannot_use_client_credentials(self, auth_server):
        client = _register(auth_server, token_endpoint_auth_method="none")
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(
                {"grant_type": "client_credentials", "client_id": client.client_id, "client_secret": ""}
            )
        assert exc_info.value.error == "invalid_client"

    @pytest.mark.asyncio
    async def test_refresh_token_grant(self, auth_server, identity):
        client = _register(auth_server)
        code = await _complete_authorization(auth_server, identity, client)
        first = auth_server.exchange_token(_code_grant(client, code))

        refreshed = auth_server.exchange_token(
            {"grant_type": "refresh_token", "refresh_token": first["refresh_token"]}
        )
        assert refreshed["access_token"] != first["access_token"]
        assert refreshed["scope"] == first["scope"]
        assert "refresh_token" not in refreshed

        # Not rotated: still usable
        again = auth_server.exchange_token(
            {"grant_type": "refresh_token", "refresh_token": first["refresh_token"]}
        )
        assert again["access_token"]

    def test_refresh_token_errors(self, auth_server):
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token({"grant_type": "refresh_token"})
        assert exc_info.value.error == "invalid_request"

        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token({"grant_type": "refresh_token", "refresh_token": "mcp_rt_unknown"})
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.parametrize("grant_type", ["password", "implicit", None])
    def test_unsupported_grant_type(self, auth_server, grant_type):
        params = {"grant_type": grant_type} if grant_type else {}
        with pytest.raises(OAuthError) as exc_info:
            auth_server.exchange_token(params)
        assert exc_info.value.error == "unsupported_grant_type"
        assert exc_info.value.status_code == 400


class TestAuthenticate:
    def _machine_token(self, auth_server):
        client = _register(auth_server, grant_types=["client_credentials"])
        body = auth_server.exchange_token(
            {"grant_type": "client_credentials", "client_id": client.client_id, "client_secret": client.client_secret}
        )
        return client, body["access_token"]

    @pytest.mark.asyncio
    async def test_valid_machine_token(self, auth_server):
        client, token = self._machine_token(auth_server)
        record, user = await auth_server.authenticate(f"Bearer {token}")
        assert record.token == token
        assert user.user_id == client.client_id
        assert user.client_id == client.client_id
        assert "store:read" in user.scopes
        assert user.token_expires_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc", "mcp_at_token"])
    async def test_missing_or_malformed_header(self, auth_server, header):
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authenticate(header)
        assert exc_info.value.error == "invalid_token"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_token(self, auth_server):
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authenticate("Bearer mcp_at_unknown")
        assert exc_info.value.error == "invalid_token"

    @pytest.mark.asyncio
    async def test_expired_token(self, auth_server, clock):
        _, token = self._machine_token(auth_server)
        clock.advance(3601)
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authenticate(f"Bearer {token}")
        assert exc_info.value.error == "invalid_token"

    @pytest.mark.asyncio
    async def test_linked_session_populates_user(self, auth_server, identity):
        await auth_server.start_social_login("google")
        outcome = await auth_server.handle_callback("descope-code", identity.last_state())

        _, user = await auth_server.authenticate(f"Bearer {outcome.access_token.token}")
        assert user.user_id == "U123"
        assert user.email == "ada@example.com"
        assert user.provider == "google"

    @pytest.mark.asyncio
    async def test_invalid_session_evicts_token(self, auth_server, identity):
        await auth_server.start_social_login("google")
        outcome = await auth_server.handle_callback("descope-code", identity.last_state())
        token = outcome.access_token.token

        identity.sessions.clear()
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authenticate(f"Bearer {token}")
        assert exc_info.value.error == "invalid_token"

        # Gone even if the session became valid again
        identity.sessions["session-jwt-1"] = {"sub": "U123"}
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authenticate(f"Bearer {token}")
        assert exc_info.value.description == "Invalid access token"

    @pytest.mark.asyncio
    async def test_session_check_unavailable(self, auth_server, identity):
        await auth_server.start_social_login("google")
        outcome = await auth_server.handle_callback("descope-code", identity.last_state())

        identity.unavailable = True
        with pytest.raises(OAuthError) as exc_info:
            await auth_server.authenticate(f"Bearer {outcome.access_token.token}")
        assert exc_info.value.error == "server_error"
        assert exc_info.value.status_code == 500

        # Token kept
        identity.unavailable = False
        await auth_server.authenticate(f"Bearer {outcome.access_token.token}")


def test_append_query_keeps_existing_parameters():
    assert append_query("https://a.example.com/cb?x=1", {"code": "c"}) == "https://a.example.com/cb?x=1&code=c"
    assert append_query("https://a.example.com/cb", {"code": "c"}) == "https://a.example.com/cb?code=c"


def test_redirect_error_location_keeps_existing_parameters():
    error = OAuthRedirectError("https://a.example.com/cb?x=1", "server_error", "Descope down")
    assert error.location == "https://a.example.com/cb?x=1&error=server_error&error_description=Descope+down"
