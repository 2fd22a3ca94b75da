"""
Signed, expiring URLs for endpoints reachable without a bearer token.

go-tfe uploads configuration archives with a bare PUT (no Authorization
header) to whatever upload-url the create response advertised. That URL is
a capability: the path and an absolute expiry are bound together by an
HMAC-SHA256 signature keyed from the server secret.

Format:
    /signed/{hex_signature}.{unix_expiry}{path}

e.g. /signed/9f2c...e1.1767225600/configuration-versions/cv-0193.../upload

Verification is stateless and fails closed. There is no single-use
enforcement; a URL stays valid until its expiry.
"""

import hashlib
import hmac
import time
from collections.abc import Callable

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from fastapi import Depends, HTTPException, Request, status

from tfgate.logging_config import get_logger

logger = get_logger(__name__)

SIGNED_PREFIX = "/signed"

_HKDF_INFO = b"tfgate/signed-url/v1"


class SignedURLError(Exception):
    """Base exception for rejected signed URLs."""


class InvalidSignatureError(SignedURLError):
    """Signature absent, malformed, or not matching the path and expiry."""


class SignatureExpiredError(SignedURLError):
    """Signature is authentic but the URL is past its expiry."""


class URLSigner:
    """Signs and verifies path-bound, expiring URLs.

    Immutable after construction; safe to share across concurrent requests.
    """

    def __init__(self, secret: bytes, clock: Callable[[], float] = time.time) -> None:
        hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=_HKDF_INFO)
        self._key = hkdf.derive(secret)
        self._clock = clock

    def _sign(self, path: str, expiry: int) -> str:
        message = f"{path}:{expiry}"
        return hmac.new(self._key, message.encode(), hashlib.sha256).hexdigest()

    def sign(self, path: str, ttl: int) -> str:
        """Return the signed form of path, valid for ttl seconds."""
        if not path.startswith("/"):
            raise ValueError(f"path must be absolute: {path!r}")
        expiry = int(self._clock()) + ttl
        return f"{SIGNED_PREFIX}/{self._sign(path, expiry)}.{expiry}{path}"

    def verify(self, signed_path: str) -> str:
        """Verify a signed path and return the unsigned path it authorizes.

        Raises:
            InvalidSignatureError: Missing, malformed, or mismatched signature.
            SignatureExpiredError: Valid signature, but expiry has passed.
        """
        if not signed_path.startswith(SIGNED_PREFIX + "/"):
            raise InvalidSignatureError("missing signature")

        token, sep, tail = signed_path[len(SIGNED_PREFIX) + 1 :].partition("/")
        if not sep:
            raise InvalidSignatureError("missing signed path")
        path = "/" + tail

        signature, dot, expiry_str = token.rpartition(".")
        if not dot or not signature or not expiry_str.isdigit():
            raise InvalidSignatureError("malformed signature")
        expiry = int(expiry_str)

        expected = self._sign(path, expiry)
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            raise InvalidSignatureError("signature mismatch")

        if self._clock() > expiry:
            raise SignatureExpiredError("signed URL has expired")

        return path


_signer: URLSigner | None = None


def init_url_signer(secret: bytes) -> None:
    """Create the process-wide signer. Called from the API lifespan."""
    global _signer  # noqa: PLW0603
    _signer = URLSigner(secret)
    logger.info("URL signer initialized")


def get_url_signer() -> URLSigner:
    """FastAPI dependency returning the process-wide signer."""
    if _signer is None:
        raise RuntimeError("URL signer not initialized. Call init_url_signer() first.")
    return _signer


def get_url_signer_or_none() -> URLSigner | None:
    return _signer


async def require_signed_url(
    request: Request,
    signer: URLSigner = Depends(get_url_signer),
) -> str:
    """Router dependency gating every route under /signed/.

    Runs before the handler; any failure is a 403 and the handler never
    executes. Returns the verified unsigned path.
    """
    try:
        return signer.verify(request.url.path)
    except SignatureExpiredError:
        logger.info("Rejected expired signed URL", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Signed URL has expired",
        ) from None
    except InvalidSignatureError as e:
        logger.warning("Rejected signed URL", path=request.url.path, reason=str(e))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid signature",
        ) from None
