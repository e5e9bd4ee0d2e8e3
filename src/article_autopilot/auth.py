"""Bearer-credential checks for manually triggered runs."""

from __future__ import annotations

import logging
from typing import Optional

from .errors import Forbidden, Unauthorized
from .storage import IdentityProvider, RoleDirectory

logger = logging.getLogger(__name__)


def uses_bearer_scheme(authorization: Optional[str]) -> bool:
    """True when the header names the Bearer scheme, whether or not a token follows."""
    parts = (authorization or "").split(maxsplit=1)
    return bool(parts) and parts[0] == "Bearer"


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header, if any."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def require_admin(
    token: Optional[str],
    identities: IdentityProvider,
    roles: RoleDirectory,
    *,
    role: str = "admin",
) -> str:
    """
    Resolve the caller and confirm the administrative role.

    Returns the user id. Raises Unauthorized for a missing or unknown token and
    Forbidden for a known user without ``role``.
    """
    if not token:
        raise Unauthorized("Unauthorized")
    user_id = identities.resolve(token)
    if not user_id:
        raise Unauthorized("Unauthorized")
    if not roles.has_role(user_id, role):
        logger.info("User %s is not an admin", user_id)
        raise Forbidden("Forbidden - Admin access required")
    logger.info("Admin access verified for user: %s", user_id)
    return user_id
