"""
PKCE (Proof Key for Code Exchange) utilities.
As per RFC 7636.
"""
import hashlib
import re
import secrets

import structlog

from ..utils.codec import urlsafe_b64encode_nopad

logger = structlog.get_logger(__name__)

CODE_CHALLENGE_METHOD_S256 = "S256"
CODE_CHALLENGE_METHOD_PLAIN = "plain"

MIN_CODE_VERIFIER_LENGTH = 43
MAX_CODE_VERIFIER_LENGTH = 128
DEFAULT_CODE_VERIFIER_ENTROPY = 64
MIN_CODE_VERIFIER_ENTROPY = 32
MAX_CODE_VERIFIER_ENTROPY = 96

_CODE_VERIFIER_PATTERN = re.compile(r"^[0-9A-Za-z\-._~]+$")


def _sha256_available() -> bool:
    try:
        hashlib.new("sha256")
    except ValueError:
        return False
    return True


def generate_random_code_verifier(entropy_bytes: int = DEFAULT_CODE_VERIFIER_ENTROPY) -> str:
    """
    Generates a random code verifier.

    Args:
        entropy_bytes: Number of random bytes to encode. Must lie in [32, 96].

    Returns:
        The verifier, URL-safe base64 encoded without padding (43 to 128 chars).

    Raises:
        ValueError: If entropy_bytes is outside the permitted range.
    """
    if not MIN_CODE_VERIFIER_ENTROPY <= entropy_bytes <= MAX_CODE_VERIFIER_ENTROPY:
        raise ValueError(
            f"entropy_bytes must be between {MIN_CODE_VERIFIER_ENTROPY} and "
            f"{MAX_CODE_VERIFIER_ENTROPY}, got {entropy_bytes}"
        )
    return urlsafe_b64encode_nopad(secrets.token_bytes(entropy_bytes))


def check_code_verifier(code_verifier: str) -> None:
    """
    Checks a code verifier against the RFC 7636 length and character set rules.

    Raises:
        ValueError: If the verifier is too short, too long or contains
                    characters outside [A-Za-z0-9-._~].
    """
    if len(code_verifier) < MIN_CODE_VERIFIER_LENGTH:
        raise ValueError("code_verifier length is shorter than allowed by RFC 7636")
    if len(code_verifier) > MAX_CODE_VERIFIER_LENGTH:
        raise ValueError("code_verifier length is longer than allowed by RFC 7636")
    if not _CODE_VERIFIER_PATTERN.match(code_verifier):
        raise ValueError("code_verifier string contains illegal characters")


def derive_code_verifier_challenge(code_verifier: str) -> str:
    """
    Produces the challenge for a verifier.

    Uses SHA-256 when the runtime provides it; otherwise the verifier itself is
    returned and code_verifier_challenge_method() reports "plain".
    """
    if not _sha256_available():
        logger.warning("SHA-256 is not supported on this device! Using plain challenge")
        return code_verifier
    digest = hashlib.sha256(code_verifier.encode("iso-8859-1")).digest()
    return urlsafe_b64encode_nopad(digest)


def code_verifier_challenge_method() -> str:
    """The challenge method matching derive_code_verifier_challenge on this runtime."""
    # no exception, so SHA-256 is supported
    if _sha256_available():
        return CODE_CHALLENGE_METHOD_S256
    return CODE_CHALLENGE_METHOD_PLAIN
