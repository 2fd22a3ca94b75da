"""Tests for signed, expiring upload URLs."""

import pytest
from fastapi import APIRouter, Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from tfgate.auth.signed_urls import (
    SIGNED_PREFIX,
    InvalidSignatureError,
    SignatureExpiredError,
    URLSigner,
    get_url_signer,
    require_signed_url,
)

SECRET = b"0123456789abcdef0123456789abcdef"
PATH = "/configuration-versions/cv-0193a1b2-0000-7000-8000-000000000001/upload"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer(clock) -> URLSigner:
    return URLSigner(SECRET, clock=clock)


class TestSign:
    def test_format(self, signer, clock):
        signed = signer.sign(PATH, 3600)
        assert signed.startswith(SIGNED_PREFIX + "/")
        assert signed.endswith(PATH)
        token = signed[len(SIGNED_PREFIX) + 1 :].split("/", 1)[0]
        sig, expiry = token.rsplit(".", 1)
        assert int(expiry) == int(clock.now) + 3600
        assert len(sig) == 64

    def test_relative_path_rejected(self, signer):
        with pytest.raises(ValueError):
            signer.sign("configuration-versions/x/upload", 60)


class TestVerify:
    def test_valid_url_accepted(self, signer):
        assert signer.verify(signer.sign(PATH, 3600)) == PATH

    def test_expired_url_rejected(self, signer, clock):
        signed = signer.sign(PATH, 3600)
        clock.now += 3601
        with pytest.raises(SignatureExpiredError):
            signer.verify(signed)

    def test_altered_signature_char_rejected(self, signer):
        signed = signer.sign(PATH, 3600)
        i = len(SIGNED_PREFIX) + 1
        flipped = "0" if signed[i] != "0" else "1"
        with pytest.raises(InvalidSignatureError):
            signer.verify(signed[:i] + flipped + signed[i + 1 :])

    def test_altered_expiry_rejected(self, signer):
        signed = signer.sign(PATH, 3600)
        token, rest = signed[len(SIGNED_PREFIX) + 1 :].split("/", 1)
        sig, expiry = token.rsplit(".", 1)
        forged = f"{SIGNED_PREFIX}/{sig}.{int(expiry) + 86400}/{rest}"
        with pytest.raises(InvalidSignatureError):
            signer.verify(forged)

    def test_other_path_rejected(self, signer):
        signed = signer.sign(PATH, 3600)
        with pytest.raises(InvalidSignatureError):
            signer.verify(signed.replace("000000000001", "000000000002"))

    def test_other_secret_rejected(self, signer, clock):
        other = URLSigner(b"fedcba9876543210fedcba9876543210", clock=clock)
        with pytest.raises(InvalidSignatureError):
            other.verify(signer.sign(PATH, 3600))

    @pytest.mark.parametrize(
        "path",
        [
            PATH,
            "/signed",
            "/signed/",
            "/signed/abc" + PATH,
            "/signed/abc.notanumber" + PATH,
            "/signed/.1700000000" + PATH,
            "/signed/abc.1700000000",
        ],
    )
    def test_malformed_rejected(self, signer, path):
        with pytest.raises(InvalidSignatureError):
            signer.verify(path)

    def test_forged_expired_reports_invalid(self, signer, clock):
        # Bad signature wins over expiry so probing reveals nothing
        clock.now += 10**6
        with pytest.raises(InvalidSignatureError):
            signer.verify(f"{SIGNED_PREFIX}/{'0' * 64}.1{PATH}")


class TestRequireSignedURL:
    def _app(self, signer: URLSigner) -> tuple[FastAPI, list[str]]:
        calls: list[str] = []
        router = APIRouter(prefix="/signed/{signature}", dependencies=[Depends(require_signed_url)])

        @router.put("/configuration-versions/{cv_id}/upload")
        async def upload(cv_id: str) -> dict:
            calls.append(cv_id)
            return {"ok": True}

        app = FastAPI()
        app.include_router(router)
        app.dependency_overrides[get_url_signer] = lambda: signer
        return app, calls

    async def test_valid_signature_reaches_handler(self, signer):
        app, calls = self._app(signer)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.put(signer.sign(PATH, 60), content=b"x")
        assert response.status_code == 200
        assert calls == ["cv-0193a1b2-0000-7000-8000-000000000001"]

    async def test_expired_signature_is_403_and_handler_skipped(self, signer, clock):
        app, calls = self._app(signer)
        signed = signer.sign(PATH, 60)
        clock.now += 61
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.put(signed, content=b"x")
        assert response.status_code == 403
        assert response.json()["detail"] == "Signed URL has expired"
        assert calls == []

    async def test_bad_signature_is_403_and_handler_skipped(self, signer):
        app, calls = self._app(signer)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.put(f"/signed/{'a' * 64}.9999999999{PATH}", content=b"x")
        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid signature"
        assert calls == []
