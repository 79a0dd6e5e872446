# sqlguard/store/provider.py

import hashlib
import hmac
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from sqlguard.data_classes import Session, User
from sqlguard.rbac.permissions import Permission


def hash_credential(credential: str) -> str:
    """Credentials are never stored in clear; only their sha256 digest."""
    return hashlib.sha256((credential or "").encode("utf-8")).hexdigest()


def credential_matches(stored_digest: Optional[str], credential: str) -> bool:
    if stored_digest is None:
        return False
    return hmac.compare_digest(stored_digest, hash_credential(credential))


class AuthStore(ABC):
    """
    Contract between the authorization core and its persistence backend.

    The core composes every grant/revoke from two primitives,
    ``get_user_permissions`` and ``update_user_permissions``; implementations
    must make each of them atomic. Backend failures are raised as
    ``sqlguard.errors.StoreError``.
    """

    # ── users ───────────────────────────────────────────────────────── #

    @abstractmethod
    def add_user(self, username: str, credential: str) -> int:
        """Create a user (idempotent) and return its numeric id."""

    @abstractmethod
    def user_exists(self, username: str) -> bool: ...

    @abstractmethod
    def authenticate(self, username: str, credential: str) -> bool: ...

    @abstractmethod
    def get_user_id(self, username: str) -> int:
        """Raises ``StoreError`` for an unknown user."""

    @abstractmethod
    def get_user(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def update_credential(self, username: str, credential: str) -> None:
        """Replace the credential of an existing user; ``StoreError`` if unknown."""

    @abstractmethod
    def delete_user(self, username: str) -> None:
        """
        Remove a user together with its permissions, role memberships and
        sessions. Raises ``StoreError`` for an unknown user.
        """

    # ── permissions ─────────────────────────────────────────────────── #

    @abstractmethod
    def get_user_permissions(self, username: str) -> List[Permission]:
        """Ordered permission list; empty for a user without grants."""

    @abstractmethod
    def update_user_permissions(self, username: str, permissions: List[Permission]) -> None:
        """Replace the full permission list of a user."""

    # ── roles ───────────────────────────────────────────────────────── #

    @abstractmethod
    def add_role(self, role_name: str) -> int: ...

    @abstractmethod
    def delete_role(self, role_id: int) -> None: ...

    @abstractmethod
    def get_role_id(self, role_name: str) -> Optional[int]: ...

    @abstractmethod
    def get_role_name(self, role_id: int) -> Optional[str]: ...

    @abstractmethod
    def add_user_role(self, username: str, role_name: str) -> bool: ...

    @abstractmethod
    def remove_user_role(self, username: str, role_name: str) -> bool: ...

    @abstractmethod
    def get_user_roles(self, username: str) -> List[str]: ...

    @abstractmethod
    def get_users_with_role(self, role_name: str) -> List[str]: ...

    # ── sessions ────────────────────────────────────────────────────── #

    @abstractmethod
    def store_session(self, session: Session) -> None: ...

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]: ...

    @abstractmethod
    def terminate_session(self, session_id: str) -> bool: ...

    @abstractmethod
    def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """Drop every session expired at ``now``; returns how many were dropped."""

    def validate_session(self, session_id: str, now: Optional[datetime] = None) -> bool:
        session = self.get_session(session_id)
        return session is not None and not session.is_expired(now)
