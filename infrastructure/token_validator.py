import hmac
from typing import Dict, List, Optional

from domain.identity import Identity


class TokenValidator:
    """Resolves access tokens to the identity they were issued for."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = tokens or {}

    @classmethod
    def from_pairs(cls, pairs: List[str]) -> "TokenValidator":
        """Builds a validator from "token:username" strings."""
        tokens = {}
        for pair in pairs:
            token, sep, username = pair.strip().partition(':')
            if not sep or not token or not username:
                raise ValueError(f"Invalid token entry {pair!r}, expected <token>:<username>")
            tokens[token] = username
        return cls(tokens)

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None

        username = None
        for valid_token, owner in self.tokens.items():
            if self._timing_safe_compare(token, valid_token):
                username = owner

        return Identity(username) if username else None

    def _timing_safe_compare(self, a: str, b: str) -> bool:
        return hmac.compare_digest(a.encode('utf-8'), b.encode('utf-8'))
