"""Tests for the OAuth2 terraform login flow.

Covers service discovery, /oauth/authorize, /oauth/token, the motd endpoint
and PKCE verification.
"""

import base64
import hashlib
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.exc import OperationalError

from tfgate.api.routers.oauth import DISCOVERY_PAYLOAD, _verify_pkce
from tfgate.auth.code_codec import AuthorizationCodePayload, derive_fernet_key

REDIRECT_URI = "http://localhost:10000/login"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


def _challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


CHALLENGE = _challenge(VERIFIER)


def _authorize_params(**overrides: str) -> dict[str, str]:
    params = {
        "response_type": "code",
        "client_id": "terraform",
        "redirect_uri": REDIRECT_URI,
        "state": "xyz",
        "code_challenge": CHALLENGE,
        "code_challenge_method": "S256",
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


def _redirect_query(response) -> dict[str, str]:
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(REDIRECT_URI)
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


class TestVerifyPKCE:
    def test_valid_s256_challenge(self):
        assert _verify_pkce(VERIFIER, CHALLENGE) is True

    def test_single_byte_mutation_fails(self):
        mutated = VERIFIER[:-1] + ("A" if VERIFIER[-1] != "A" else "B")
        assert _verify_pkce(mutated, CHALLENGE) is False

    def test_challenge_of_different_length_fails(self):
        assert _verify_pkce(VERIFIER, CHALLENGE[:-1]) is False

    def test_plain_challenge_is_not_accepted(self):
        assert _verify_pkce(VERIFIER, VERIFIER) is False


class TestTerraformServiceDiscovery:
    async def test_well_known_terraform_json(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get("/.well-known/terraform.json")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.content == DISCOVERY_PAYLOAD

        data = response.json()
        assert data["login.v1"] == {
            "authz": "/oauth/authorize",
            "token": "/oauth/token",
            "client": "terraform",
            "ports": [10000, 10010],
        }
        assert data["motd.v1"] == "/api/terraform/motd"
        assert data["modules.v1"] == "/api/registry/v1/modules/"
        for key in ("state.v2", "tfe.v2", "tfe.v2.1", "tfe.v2.2"):
            assert data[key] == "/api/v2/"

    async def test_discovery_is_byte_identical_across_requests(self, make_app, client_for):
        async with client_for(make_app()) as client:
            first = await client.get("/.well-known/terraform.json")
            second = await client.get("/.well-known/terraform.json")

        assert first.content == second.content


class TestMotd:
    async def test_returns_configured_message(self, make_app, client_for):
        with patch("tfgate.api.routers.oauth.settings") as mock_settings:
            mock_settings.motd = "Welcome to tfgate"
            async with client_for(make_app()) as client:
                response = await client.get("/api/terraform/motd")

        assert response.status_code == 200
        assert response.json() == {"msg": "Welcome to tfgate"}


class TestOAuthAuthorize:
    @pytest.mark.parametrize(
        "redirect_uri", ["", "not a url", "/relative/path", "localhost:10000", "http://[::1/cb"]
    )
    async def test_invalid_redirect_uri_is_direct_400(self, make_app, client_for, redirect_uri):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize", params=_authorize_params(redirect_uri=redirect_uri)
            )

        assert response.status_code == 400
        assert response.json()["detail"] == "invalid redirect_uri"

    async def test_wrong_client_id_is_direct_400(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize", params=_authorize_params(client_id="terraform-cli")
            )

        assert response.status_code == 400
        assert response.json()["detail"] == "invalid_client"

    async def test_non_code_response_type_redirects(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize", params=_authorize_params(response_type="token")
            )

        query = _redirect_query(response)
        assert query["error"] == "unsupported_response_type"
        assert query["state"] == "xyz"
        assert query["error_description"] == "unsupported response type"

    async def test_plain_challenge_method_redirects(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize", params=_authorize_params(code_challenge_method="plain")
            )

        query = _redirect_query(response)
        assert query["error"] == "invalid_request"
        assert query["state"] == "xyz"

    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_missing_code_challenge_redirects(self, make_app, client_for, alice, method):
        params = {**_authorize_params(code_challenge=None), "consented": "true"}

        async with client_for(make_app(alice)) as client:
            if method == "GET":
                response = await client.get("/oauth/authorize", params=params)
            else:
                response = await client.post("/oauth/authorize", data=params)

        query = _redirect_query(response)
        assert query["error"] == "invalid_request"
        assert query["error_description"] == "missing code challenge"
        assert "code" not in query

    async def test_error_redirect_omits_absent_state(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize", params=_authorize_params(response_type="token", state=None)
            )

        assert "state" not in _redirect_query(response)

    async def test_error_redirect_keeps_existing_query(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize",
                params=_authorize_params(
                    response_type="token", redirect_uri=REDIRECT_URI + "?port=10001"
                ),
            )

        query = _redirect_query(response)
        assert query["port"] == "10001"
        assert query["error"] == "unsupported_response_type"

    async def test_get_renders_consent_form(self, make_app, client_for, alice):
        async with client_for(make_app(alice)) as client:
            response = await client.get("/oauth/authorize", params=_authorize_params())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        body = response.text
        assert 'method="post"' in body
        assert 'action="/oauth/authorize"' in body
        assert 'name="consented" value="true"' in body
        assert f'name="code_challenge" value="{CHALLENGE}"' in body
        assert "alice" in body

    async def test_consent_form_escapes_parameters(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.get(
                "/oauth/authorize", params=_authorize_params(state='"><script>x</script>')
            )

        assert "<script>x</script>" not in response.text
        assert "&lt;script&gt;" in response.text

    async def test_post_without_consent_is_access_denied(self, make_app, client_for, alice):
        async with client_for(make_app(alice)) as client:
            response = await client.post("/oauth/authorize", data=_authorize_params())

        query = _redirect_query(response)
        assert query["error"] == "access_denied"
        assert query["state"] == "xyz"

    async def test_post_without_subject_is_server_error(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.post(
                "/oauth/authorize", data={**_authorize_params(), "consented": "true"}
            )

        query = _redirect_query(response)
        assert query["error"] == "server_error"
        assert "code" not in query

    async def test_post_with_consent_issues_sealed_code(self, make_app, client_for, alice, codec):
        async with client_for(make_app(alice)) as client:
            response = await client.post(
                "/oauth/authorize", data={**_authorize_params(), "consented": "true"}
            )

        query = _redirect_query(response)
        assert query["state"] == "xyz"
        assert "error" not in query
        assert codec.open(query["code"]) == AuthorizationCodePayload(
            code_challenge=CHALLENGE, code_challenge_method="S256", username="alice"
        )


class TestOAuthToken:
    @pytest.fixture
    def code(self, codec) -> str:
        return codec.seal(
            AuthorizationCodePayload(
                code_challenge=CHALLENGE, code_challenge_method="S256", username="alice"
            )
        )

    def _token_params(self, **overrides: str | None) -> dict[str, str]:
        params = {
            "grant_type": "authorization_code",
            "client_id": "terraform",
            "redirect_uri": REDIRECT_URI,
            "code_verifier": VERIFIER,
        }
        params.update(overrides)
        return {k: v for k, v in params.items() if v is not None}

    @patch("tfgate.api.routers.oauth.create_api_token", new_callable=AsyncMock)
    async def test_exchange_returns_token(self, mock_create, make_app, client_for, code, mock_db):
        mock_create.return_value = (MagicMock(id="at-123"), "raw.tfgate.token")

        async with client_for(make_app()) as client:
            response = await client.post("/oauth/token", data=self._token_params(code=code))

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.headers["cache-control"] == "no-store"
        assert response.json() == {"access_token": "raw.tfgate.token", "token_type": "bearer"}

        mock_create.assert_awaited_once_with(mock_db, "alice", description="terraform login")
        mock_db.commit.assert_awaited()

    @pytest.mark.parametrize("redirect_uri", ["nope", "http://[::1/cb"])
    async def test_invalid_redirect_uri_is_direct_400(
        self, make_app, client_for, code, redirect_uri
    ):
        async with client_for(make_app()) as client:
            response = await client.post(
                "/oauth/token", data=self._token_params(code=code, redirect_uri=redirect_uri)
            )

        assert response.status_code == 400
        assert response.json()["detail"] == "invalid redirect_uri"

    async def test_wrong_client_is_direct_400(self, make_app, client_for, code):
        async with client_for(make_app()) as client:
            response = await client.post(
                "/oauth/token", data=self._token_params(code=code, client_id="other")
            )

        assert response.status_code == 400
        assert response.json()["detail"] == "invalid_client"

    @pytest.mark.parametrize(
        ("overrides", "error"),
        [
            ({}, "invalid_request"),
            ({"code": "placeholder", "code_verifier": None}, "invalid_request"),
            ({"code": "placeholder", "grant_type": "refresh_token"}, "unsupported_grant_type"),
        ],
    )
    async def test_request_errors_redirect(self, make_app, client_for, code, overrides, error):
        if overrides.get("code") == "placeholder":
            overrides = {**overrides, "code": code}

        async with client_for(make_app()) as client:
            response = await client.post("/oauth/token", data=self._token_params(**overrides))

        assert _redirect_query(response)["error"] == error

    async def test_missing_code_checked_before_grant_type(self, make_app, client_for):
        async with client_for(make_app()) as client:
            response = await client.post(
                "/oauth/token", data=self._token_params(grant_type="password")
            )

        assert _redirect_query(response)["error"] == "invalid_request"

    @pytest.mark.parametrize("bad_code", ["garbage", "gAAAAABnot-really-fernet"])
    async def test_unopenable_code_is_invalid_request(self, make_app, client_for, bad_code):
        async with client_for(make_app()) as client:
            response = await client.post("/oauth/token", data=self._token_params(code=bad_code))

        query = _redirect_query(response)
        assert query["error"] == "invalid_request"
        assert query["error_description"] == "invalid or expired authorization code"

    async def test_expired_code_is_invalid_request(self, make_app, client_for, secret):
        plaintext = json.dumps(
            {"code_challenge": CHALLENGE, "code_challenge_method": "S256", "username": "alice"}
        ).encode()
        old = Fernet(derive_fernet_key(secret)).encrypt_at_time(
            plaintext, int(time.time()) - 3600
        )

        async with client_for(make_app()) as client:
            response = await client.post(
                "/oauth/token", data=self._token_params(code=old.decode())
            )

        query = _redirect_query(response)
        assert query["error"] == "invalid_request"
        assert query["error_description"] == "invalid or expired authorization code"

    @patch("tfgate.api.routers.oauth.create_api_token", new_callable=AsyncMock)
    async def test_wrong_verifier_is_invalid_grant(self, mock_create, make_app, client_for, code):
        wrong = VERIFIER[:-1] + ("A" if VERIFIER[-1] != "A" else "B")

        async with client_for(make_app()) as client:
            response = await client.post(
                "/oauth/token", data=self._token_params(code=code, code_verifier=wrong)
            )

        query = _redirect_query(response)
        assert query["error"] == "invalid_grant"
        assert _challenge(wrong) not in response.headers["location"]
        assert CHALLENGE not in response.headers["location"]
        mock_create.assert_not_called()

    @patch("tfgate.api.routers.oauth.create_api_token", new_callable=AsyncMock)
    async def test_mint_failure_is_server_error(
        self, mock_create, make_app, client_for, code, mock_db
    ):
        mock_create.side_effect = OperationalError("INSERT", {}, Exception("db down"))

        async with client_for(make_app()) as client:
            response = await client.post("/oauth/token", data=self._token_params(code=code))

        assert _redirect_query(response)["error"] == "server_error"
        mock_db.rollback.assert_awaited()

    @patch("tfgate.api.routers.oauth.create_api_token", new_callable=AsyncMock)
    async def test_full_login_flow(self, mock_create, make_app, client_for, alice):
        mock_create.return_value = (MagicMock(id="at-123"), "raw.tfgate.token")

        async with client_for(make_app(alice)) as client:
            authorize = await client.post(
                "/oauth/authorize", data={**_authorize_params(), "consented": "true"}
            )
            code = _redirect_query(authorize)["code"]
            token = await client.post("/oauth/token", data=self._token_params(code=code))

        assert token.status_code == 200
        assert token.json()["access_token"] == "raw.tfgate.token"
        assert mock_create.await_args.args[1] == "alice"
