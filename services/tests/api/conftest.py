"""
Shared fixtures for API tests.

ASGITransport does not run the lifespan, so the process-wide collaborators
are replaced through dependency overrides instead.
"""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tfgate.api.app import create_application
from tfgate.api.dependencies import AuthenticatedUser, get_current_user, get_optional_user
from tfgate.auth.code_codec import CodeCodec, get_code_codec
from tfgate.auth.signed_urls import URLSigner, get_url_signer
from tfgate.db.session import get_db

TEST_SECRET = b"0123456789abcdef0123456789abcdef"


@pytest.fixture
def secret() -> bytes:
    return TEST_SECRET


@pytest.fixture
def codec() -> CodeCodec:
    return CodeCodec(TEST_SECRET)


@pytest.fixture
def signer() -> URLSigner:
    return URLSigner(TEST_SECRET)


@pytest.fixture
def mock_db() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def alice() -> AuthenticatedUser:
    return AuthenticatedUser(
        username="alice", display_name="Alice", roles=["everyone"], auth_method="session"
    )


@pytest.fixture
def make_app(codec, signer, mock_db) -> Callable[..., FastAPI]:
    """Build an app with collaborators overridden.

    user sets the authenticated subject for both required and optional auth;
    None leaves required auth in place and makes optional auth return None.
    """

    def _make(user: AuthenticatedUser | None = None) -> FastAPI:
        app = create_application()

        async def override_db():
            yield mock_db

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_code_codec] = lambda: codec
        app.dependency_overrides[get_url_signer] = lambda: signer
        app.dependency_overrides[get_optional_user] = lambda: user
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: user
        return app

    return _make


@pytest.fixture
def client_for() -> Callable[[FastAPI], AsyncClient]:
    def _client(app: FastAPI) -> AsyncClient:
        return AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test", follow_redirects=False
        )

    return _client
