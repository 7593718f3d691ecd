"""API key generation, hashing and verification.

Credential format: ``mk_<env>_<64 hex chars>`` where ``env`` is ``live`` or
``test``. The first 8 hex characters are a non-secret lookup fragment; the
lookup prefix ``mk_<env>_<fragment>`` is stored in cleartext, the full
credential only as a bcrypt hash. The full credential is 72 bytes, the
most bcrypt accepts.
"""

import re
import secrets
from typing import NamedTuple

import bcrypt

from src.config import settings
from src.exceptions import InvalidCredentialError, InvalidFormatError

KEY_PREFIX = "mk"
ENVIRONMENTS = ("live", "test")
SECRET_HEX_LENGTH = 64
LOOKUP_FRAGMENT_LENGTH = 8

_CREDENTIAL_RE = re.compile(
    rf"^(?P<prefix>{KEY_PREFIX}_(?:live|test)_[a-f0-9]{{{LOOKUP_FRAGMENT_LENGTH}}})"
    rf"[a-f0-9]{{{SECRET_HEX_LENGTH - LOOKUP_FRAGMENT_LENGTH}}}$"
)


class GeneratedKey(NamedTuple):
    """Output of key generation; ``full_key`` is shown to the owner once."""

    full_key: str
    key_prefix: str
    key_hash: str


def hash_api_key(api_key: str, rounds: int | None = None) -> str:
    """
    Hash an API key using bcrypt.

    Args:
        api_key: Plain text API key to hash
        rounds: Bcrypt cost factor (defaults to settings.bcrypt_rounds)

    Returns:
        Bcrypt hash of the API key
    """
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    key_bytes = api_key.encode("utf-8")
    hashed = bcrypt.hashpw(key_bytes, salt)
    return hashed.decode("utf-8")


def generate_api_key(environment: str | None = None) -> GeneratedKey:
    """
    Generate a new credential with its lookup prefix and hash.

    Args:
        environment: ``live`` or ``test`` (defaults to settings.api_key_environment)

    Returns:
        GeneratedKey(full_key, key_prefix, key_hash)
    """
    environment = environment or settings.api_key_environment
    if environment not in ENVIRONMENTS:
        raise ValueError(f"Unknown key environment: {environment}")

    random_hex = secrets.token_hex(SECRET_HEX_LENGTH // 2)
    key_prefix = f"{KEY_PREFIX}_{environment}_{random_hex[:LOOKUP_FRAGMENT_LENGTH]}"
    full_key = f"{key_prefix}{random_hex[LOOKUP_FRAGMENT_LENGTH:]}"

    return GeneratedKey(
        full_key=full_key,
        key_prefix=key_prefix,
        key_hash=hash_api_key(full_key),
    )


def extract_key_prefix(api_key: str) -> str:
    """
    Return the lookup prefix of a well-formed credential.

    Raises:
        InvalidFormatError: If the credential has the wrong structure or length
    """
    match = _CREDENTIAL_RE.match(api_key)
    if not match:
        raise InvalidFormatError()
    return match.group("prefix")


def verify_api_key(api_key: str, key_hash: str) -> bool:
    """
    Verify an API key against its hash.

    Malformed credentials return False without running bcrypt; well-formed
    ones always pay the full hash cost. ``bcrypt.checkpw`` compares in
    constant time.

    Args:
        api_key: Plain text API key to verify
        key_hash: Bcrypt hash to verify against

    Returns:
        True if the API key matches the hash, False otherwise
    """
    if not _CREDENTIAL_RE.match(api_key):
        return False
    try:
        return bcrypt.checkpw(api_key.encode("utf-8"), key_hash.encode("utf-8"))
    except ValueError:
        # Stored hash is not a valid bcrypt string
        return False


def check_api_key(api_key: str, key_hash: str) -> None:
    """
    Raise the specific verification failure for a presented credential.

    Raises:
        InvalidFormatError: Wrong structural prefix or length
        InvalidCredentialError: Well-formed but not matching the hash
    """
    extract_key_prefix(api_key)
    if not verify_api_key(api_key, key_hash):
        raise InvalidCredentialError()


def mask_api_key(key_prefix: str) -> str:
    """Display form of a key, e.g. ``mk_live_1a2b3c4d...``."""
    return f"{key_prefix}..."
