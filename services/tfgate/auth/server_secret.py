"""Process-wide server secret.

The same long-lived secret keys both the authorization code codec and the
upload URL signer; each derives its own subkey so neither can be used to
forge the other's output. Loaded once at startup and never mutated.
"""

import secrets

from tfgate.logging_config import get_logger

logger = get_logger(__name__)

MIN_SECRET_BYTES = 16

_secret: bytes | None = None


def parse_secret(raw: str) -> bytes:
    """Decode a configured secret.

    Hex strings (what the bootstrap CLI prints) are decoded to raw bytes;
    anything else is used as UTF-8.
    """
    raw = raw.strip()
    try:
        decoded = bytes.fromhex(raw)
    except ValueError:
        decoded = raw.encode()
    if len(decoded) < MIN_SECRET_BYTES:
        raise ValueError(f"Server secret must be at least {MIN_SECRET_BYTES} bytes")
    return decoded


def generate_secret() -> str:
    """Generate a new hex-encoded 32-byte secret."""
    return secrets.token_hex(32)


def init_server_secret(raw: str) -> bytes:
    """Load the server secret. Generates an ephemeral one if none is configured."""
    global _secret  # noqa: PLW0603
    if not raw:
        logger.warning(
            "No server secret configured (TFGATE_SECRET). Using an ephemeral secret; "
            "authorization codes and upload URLs will not survive a restart."
        )
        raw = generate_secret()
    _secret = parse_secret(raw)
    return _secret


def get_server_secret() -> bytes:
    if _secret is None:
        raise RuntimeError("Server secret not initialized. Call init_server_secret() first.")
    return _secret
