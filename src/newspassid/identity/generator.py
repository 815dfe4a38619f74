"""Identifier generation.

Tokens are 128 random bits taken straight from the operating system's
CSPRNG and hex-encoded, so the namespace and token are concatenated and no
entropy is lost to arithmetic folding. At 5×10⁸ issued identifiers the
birthday bound puts the collision probability near 2⁻⁷⁰.
"""

from __future__ import annotations

import logging
import os
import random
import secrets
import time

from newspassid.identity.identifiers import is_valid_namespace

logger = logging.getLogger(__name__)

TOKEN_BYTES = 16  # 128 bits


def _token_bytes(n: int) -> bytes:
    """Draw ``n`` random bytes, degrading gracefully if the OS source is missing."""
    try:
        return secrets.token_bytes(n)
    except NotImplementedError:
        logger.warning("[IDGEN] OS randomness unavailable, using fallback generator")
    try:
        return random.SystemRandom().getrandbits(n * 8).to_bytes(n, "big")
    except NotImplementedError:
        seed = time.time_ns() ^ (os.getpid() << 32)
        return random.Random(seed).getrandbits(n * 8).to_bytes(n, "big")


def generate_token() -> str:
    """Return a fresh 32-character lower-case hex token."""
    return _token_bytes(TOKEN_BYTES).hex()


def generate_id(namespace: str) -> str:
    """Generate a new identifier ``<namespace>-<token>``.

    Args:
        namespace: Publisher namespace (letters, digits, underscores).

    Returns:
        The new identifier. Nothing is persisted.

    Raises:
        ValueError: If the namespace is empty or contains other characters.
    """
    if not is_valid_namespace(namespace):
        raise ValueError(f"Invalid namespace: {namespace!r}")
    return f"{namespace}-{generate_token()}"
