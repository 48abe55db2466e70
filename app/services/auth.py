"""Bearer-token identity resolution.

Authentication itself lives outside this service; all the chat routes need is
a stable user id for the caller.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from app.config import settings
from app.errors import Unauthenticated

DEV_USER_ID = "dev_user"


@dataclass(frozen=True)
class User:
    id: str
    email: str | None = None


class AuthProvider(Protocol):
    def is_enabled(self) -> bool: ...
    async def verify_token(self, token: str) -> User: ...


class TokenAuthProvider:
    """Maps opaque bearer tokens to user ids from AUTH_TOKENS."""

    def __init__(self, tokens: dict[str, str], *, enabled: bool = True):
        self._tokens = dict(tokens)
        self._enabled = enabled

    def is_enabled(self) -> bool:
        return self._enabled

    async def verify_token(self, token: str) -> User:
        user_id = self._tokens.get(token)
        if not user_id:
            raise Unauthenticated("Unknown token")
        return User(id=user_id)


_provider: AuthProvider | None = None


def get_auth_provider() -> AuthProvider:
    global _provider
    if _provider is None:
        _provider = TokenAuthProvider(settings.auth_token_map, enabled=settings.auth_enabled)
    return _provider
