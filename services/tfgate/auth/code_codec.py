"""Sealed authorization codes for the terraform login flow.

The authorization code handed to the CLI's loopback listener *is* the
session: it carries the PKCE challenge and the username, sealed with Fernet
(AES-128-CBC + HMAC-SHA256, encrypt-then-MAC). No row is stored between
/oauth/authorize and /oauth/token.

The Fernet key is derived from the server secret with HKDF so that the
signing key used for upload URLs is never reused here.

Fernet tokens embed their creation time, which lets /oauth/token refuse
codes older than auth.auth_code_ttl_seconds. There is still no replay
tracking: a code can be redeemed more than once within its TTL.
"""

import base64
import json
import time
from dataclasses import asdict, dataclass

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from tfgate.logging_config import get_logger

logger = get_logger(__name__)

_HKDF_INFO = b"tfgate/authorization-code/v1"


class CodeError(Exception):
    """Base exception for authorization codes that cannot be redeemed."""


class CodeIntegrityError(CodeError):
    """The code was not sealed with this server's secret, or was altered."""


class MalformedCodeError(CodeError):
    """The code is authentic but does not contain a valid payload."""


class CodeExpiredError(CodeError):
    """The code is authentic but older than the allowed TTL."""


@dataclass(frozen=True)
class AuthorizationCodePayload:
    code_challenge: str
    code_challenge_method: str
    username: str


def derive_fernet_key(secret: bytes, info: bytes = _HKDF_INFO) -> bytes:
    """Derive a urlsafe-base64 Fernet key from the server secret."""
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info)
    return base64.urlsafe_b64encode(hkdf.derive(secret))


class CodeCodec:
    """Seals and opens authorization code payloads.

    Immutable after construction; safe to share across concurrent requests.
    """

    def __init__(self, secret: bytes) -> None:
        self._fernet = Fernet(derive_fernet_key(secret))

    def seal(self, payload: AuthorizationCodePayload) -> str:
        plaintext = json.dumps(asdict(payload), separators=(",", ":")).encode()
        return self._fernet.encrypt(plaintext).decode("ascii")

    def open(
        self,
        code: str,
        ttl: int | None = None,
        now: float | None = None,
    ) -> AuthorizationCodePayload:
        """Open a sealed code.

        Args:
            code: The opaque code string from the redirect.
            ttl: Maximum age in seconds; None or 0 disables the check.
            now: Current unix time, for tests.

        Raises:
            CodeIntegrityError: Tampered, truncated, or sealed under another secret.
            CodeExpiredError: Authentic but older than ttl.
            MalformedCodeError: Authentic but not an authorization code payload.
        """
        try:
            token = code.encode("ascii")
            plaintext = self._fernet.decrypt(token)
        except (InvalidToken, UnicodeEncodeError):
            raise CodeIntegrityError("authorization code failed integrity check") from None

        if ttl:
            issued_at = self._fernet.extract_timestamp(token)
            current = time.time() if now is None else now
            if current - issued_at > ttl:
                raise CodeExpiredError("authorization code has expired")

        try:
            data = json.loads(plaintext)
            payload = AuthorizationCodePayload(
                code_challenge=data["code_challenge"],
                code_challenge_method=data["code_challenge_method"],
                username=data["username"],
            )
        except (ValueError, KeyError, TypeError):
            raise MalformedCodeError("authorization code payload is malformed") from None

        if not all(isinstance(v, str) for v in asdict(payload).values()):
            raise MalformedCodeError("authorization code payload is malformed")
        return payload


_codec: CodeCodec | None = None


def init_code_codec(secret: bytes) -> None:
    """Create the process-wide codec. Called from the API lifespan."""
    global _codec  # noqa: PLW0603
    _codec = CodeCodec(secret)
    logger.info("Authorization code codec initialized")


def get_code_codec() -> CodeCodec:
    """FastAPI dependency returning the process-wide codec."""
    if _codec is None:
        raise RuntimeError("Code codec not initialized. Call init_code_codec() first.")
    return _codec
