"""Authentication and tenant membership, exposed as FastAPI dependencies.

Public interface:
    ``require_auth``       -- returns AuthContext or raises 401.
    ``require_org_member`` -- additionally requires membership of the
                              ``organization_id`` path parameter; 403 otherwise.

When ``settings.auth_enabled`` is False both return an anonymous context
that is treated as a member of every organization, so local development
works without an identity provider.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .tokens import decode_token
from ..database import get_db
from ..exceptions import AuthenticationError, ForbiddenError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, taken from the verified token claims."""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    is_anonymous: bool = False


_ANONYMOUS = AuthContext(user_id="anonymous", name="Anonymous", is_anonymous=True)


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthContext:
    """Require a valid bearer token. Anonymous when ``AUTH_ENABLED=false``."""
    if not settings.auth_enabled:
        return _ANONYMOUS

    if credentials is None:
        raise AuthenticationError("Missing authentication token")

    payload = decode_token(credentials.credentials, settings.jwt_secret_key, settings.jwt_algorithm)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    return AuthContext(user_id=payload.sub, email=payload.email, name=payload.name)


def require_org_member(
    organization_id: str,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Require membership of the organization named in the route."""
    if auth.is_anonymous and not settings.auth_enabled:
        return auth

    from ..models.organization import Member

    member = (
        db.query(Member.id)
        .filter(Member.organization_id == organization_id, Member.user_id == auth.user_id)
        .first()
    )
    if member is None:
        logger.info(
            "Organization access denied",
            extra={"organization_id": organization_id, "user_id": auth.user_id},
        )
        raise ForbiddenError()
    return auth
