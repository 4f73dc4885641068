"""Login checks and the cached current-user projection."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from werkzeug.security import check_password_hash

from .errors import AuthorizationError, LoginRequiredError
from .models import Role, User
from .storage import CURRENT_USER_KEY

logger = logging.getLogger(__name__)

# Prefixes werkzeug.security.generate_password_hash produces.
_HASH_METHODS = ("scrypt:", "pbkdf2:")


def _is_hashed(secret: str) -> bool:
    return secret.startswith(_HASH_METHODS)


def verify_password(stored: Optional[str], candidate: str) -> bool:
    if not stored or candidate is None:
        return False
    if _is_hashed(stored):
        return check_password_hash(stored, candidate)
    # Plaintext secrets come from older backups.
    return hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))


def find_user(store, username: str, password: Optional[str] = None) -> Optional[User]:
    """Look a user up by login name, checking the password when one is given."""
    user = store.get_user_by_username(username)
    if user is None or password is None:
        return user
    return user if verify_password(user.password, password) else None


def authenticate(store, username: str, password: str) -> Optional[User]:
    if not username or not password:
        return None
    return find_user(store, username, password)


def public_projection(user: User) -> Dict[str, Any]:
    return user.to_dict(include_password=False)


class SessionManager:
    """One logged-in user cached under ``currentUser``.

    ``cache`` is any get/set/delete store: the persistence gateway for a single
    local profile, or a per-client view such as the web app's cookie session.
    """

    def __init__(self, cache, store) -> None:
        self.cache = cache
        self.store = store

    def login(self, username: str, password: str) -> Optional[User]:
        user = authenticate(self.store, username, password)
        if user is None:
            logger.info("Failed login for %r", username)
            return None
        self.cache.set(CURRENT_USER_KEY, public_projection(user))
        logger.info("User %s logged in", user.username)
        return user

    def logout(self) -> None:
        self.cache.delete(CURRENT_USER_KEY)

    def current_user(self) -> Optional[User]:
        """Return the cached user if it still exists in the register."""
        cached = self.cache.get(CURRENT_USER_KEY)
        if not cached:
            return None
        username = cached.get("username") if isinstance(cached, dict) else None
        user = self.store.get_user_by_username(username) if username else None
        if user is None:
            logger.info("Dropping cached session for unknown user %r", username)
            self.cache.delete(CURRENT_USER_KEY)
            return None
        return user

    def is_authenticated(self) -> bool:
        return self.current_user() is not None

    def is_admin(self) -> bool:
        user = self.current_user()
        return user is not None and user.role == Role.ADMIN


def require_role(user: Optional[User], *roles: Role) -> User:
    if user is None:
        raise LoginRequiredError("Login required")
    if roles and user.role not in roles:
        raise AuthorizationError(f"{user.username} lacks role {'/'.join(r.value for r in roles)}")
    return user


__all__ = [
    "SessionManager",
    "authenticate",
    "find_user",
    "public_projection",
    "require_role",
    "verify_password",
]
