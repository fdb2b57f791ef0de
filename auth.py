"""
Optional bearer-token check for the identify endpoints.

With REQUIRE_AUTH_IDENTIFY=false (the default) a missing or rejected token
just means the request is anonymous; with it true the request gets a 401.
"""
from __future__ import annotations

import hmac
import logging
from abc import ABC, abstractmethod
from typing import Optional

from errors import Unauthorized

logger = logging.getLogger(__name__)


class TokenVerifier(ABC):

    @abstractmethod
    async def verify(self, token: str) -> str:
        """Return the uid the token belongs to. Raises Unauthorized."""
        ...


class StaticTokenVerifier(TokenVerifier):
    """Tokens configured up front as {token: uid} (API_TOKENS)."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> str:
        for known, uid in self._tokens.items():
            if hmac.compare_digest(known.encode(), token.encode()):
                return uid
        raise Unauthorized("Invalid token")


def bearer_token(header: Optional[str]) -> str:
    if not header or not header.startswith("Bearer "):
        return ""
    return header[len("Bearer "):].strip()


async def authenticate(
    header: Optional[str],
    verifier: Optional[TokenVerifier],
    require: bool,
) -> Optional[str]:
    """Resolve the caller's uid, or None for an anonymous request."""
    token = bearer_token(header)
    if not token:
        if require:
            raise Unauthorized("Missing token")
        return None
    if verifier is None:
        if require:
            raise Unauthorized("No token verifier configured")
        return None
    try:
        return await verifier.verify(token)
    except Unauthorized:
        if require:
            raise
        logger.info("Ignoring invalid bearer token (auth not required)")
        return None
