from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyCookie, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .exceptions import Forbidden, Unauthenticated
from .models.user import Role, User
from .security import PasswordHasher, TokenManager
from .services import UserStore

TOKEN_COOKIE = "token"

cookie_scheme = APIKeyCookie(name=TOKEN_COOKIE, auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)

token_manager = TokenManager.from_settings(settings)
password_hasher = PasswordHasher.from_settings(settings)


def get_token_manager() -> TokenManager:
    return token_manager


def get_password_hasher() -> PasswordHasher:
    return password_hasher


def extract_token(
    cookie_token: Optional[str] = Depends(cookie_scheme),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Return the session token, preferring the cookie over the header."""
    if cookie_token:
        return cookie_token
    if credentials and credentials.credentials:
        return credentials.credentials
    raise Unauthenticated("Authentication required")


def require_roles(*roles: Role):
    """Build a dependency that authenticates the caller and checks its role.

    With no ``roles`` any authenticated user passes. The token's role is
    checked before the user row is loaded; a user deleted after the token
    was issued is treated as unauthenticated.
    """
    allowed = frozenset(Role(r) for r in roles)

    def _guard(
        request: Request,
        token: str = Depends(extract_token),
        tokens: TokenManager = Depends(get_token_manager),
        db: Session = Depends(get_db),
    ) -> User:
        claims = tokens.verify(token)
        if allowed and claims.role not in allowed:
            raise Forbidden("Insufficient permissions")
        user = UserStore(db).find_by_id(claims.user_id)
        if user is None:
            raise Unauthenticated("User not found")
        request.state.user = user
        return user

    return _guard


get_current_user = require_roles()
