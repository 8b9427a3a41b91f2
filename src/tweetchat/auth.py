"""Bearer-token authentication for the HTTP handlers.

Identity verification itself belongs to an external provider; here a static
token table from config (``auth.tokens``) answers "who is the current user".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, Request, status


@dataclass(frozen=True)
class User:
    id: str


class TokenAuthenticator:
    """Map ``Authorization: Bearer <token>`` headers to users."""

    def __init__(self, tokens: Optional[Mapping[str, str]] = None) -> None:
        self._tokens: Dict[str, str] = {str(k): str(v) for k, v in (tokens or {}).items()}

    def current_user(self, authorization: Optional[str]) -> Optional[User]:
        if not authorization:
            return None
        try:
            scheme, token = authorization.split()
        except ValueError:
            return None
        if scheme.lower() != "bearer":
            return None
        user_id = self._tokens.get(token)
        return User(id=user_id) if user_id else None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "TokenAuthenticator":
        return cls((cfg or {}).get("auth", {}).get("tokens") or {})


def require_user(request: Request) -> User:
    """FastAPI dependency: the authenticated user or a 401."""
    authenticator: TokenAuthenticator = request.app.state.authenticator
    user = authenticator.current_user(request.headers.get("authorization"))
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user
