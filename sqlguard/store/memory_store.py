# sqlguard/store/memory_store.py

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlguard.config.defaults import logger
from sqlguard.data_classes import Session, User
from sqlguard.errors import InvalidInput, StoreError
from sqlguard.rbac.permissions import Permission
from sqlguard.store.provider import AuthStore, credential_matches, hash_credential


class MemoryStore(AuthStore):
    """
    In-process store, mostly for tests and embedded use.

    Every public method holds one re-entrant lock, so each call is atomic.
    A grant composed of get + update can still race with a concurrent grant
    on the same user (last writer wins).
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._credentials: Dict[str, str] = {}
        self._user_ids: Dict[str, int] = {}
        self._created: Dict[str, datetime] = {}
        self._permissions: Dict[str, List[Permission]] = {}
        self._roles: Dict[int, str] = {}
        self._role_ids: Dict[str, int] = {}
        self._user_roles: Dict[str, List[str]] = {}
        self._sessions: Dict[str, Session] = {}
        self._next_user_id = 1
        self._next_role_id = 1

    # ── users ───────────────────────────────────────────────────────── #

    def add_user(self, username: str, credential: str) -> int:
        if not username:
            raise InvalidInput("username cannot be empty")
        with self._lock:
            if username in self._user_ids:
                return self._user_ids[username]
            user_id = self._next_user_id
            self._next_user_id += 1
            self._user_ids[username] = user_id
            self._created[username] = datetime.now(timezone.utc)
            self._credentials[username] = hash_credential(credential)
            logger.debug(f"[memory-store] user created: {username} ({user_id})")
            return user_id

    def user_exists(self, username: str) -> bool:
        with self._lock:
            return username in self._user_ids

    def authenticate(self, username: str, credential: str) -> bool:
        with self._lock:
            return credential_matches(self._credentials.get(username), credential)

    def get_user_id(self, username: str) -> int:
        with self._lock:
            if username not in self._user_ids:
                raise StoreError(f"user {username} not found")
            return self._user_ids[username]

    def get_user(self, username: str) -> Optional[User]:
        with self._lock:
            if username not in self._user_ids:
                return None
            return User(self._user_ids[username], username, self._created[username])

    def update_credential(self, username: str, credential: str) -> None:
        if not credential:
            raise InvalidInput("credential cannot be empty")
        with self._lock:
            if username not in self._user_ids:
                raise StoreError(f"user {username} not found")
            self._credentials[username] = hash_credential(credential)

    def delete_user(self, username: str) -> None:
        with self._lock:
            if username not in self._user_ids:
                raise StoreError(f"user {username} not found")
            del self._user_ids[username]
            del self._created[username]
            self._credentials.pop(username, None)
            self._permissions.pop(username, None)
            self._user_roles.pop(username, None)
            for session_id in [s.session_id for s in self._sessions.values() if s.username == username]:
                del self._sessions[session_id]
            logger.debug(f"[memory-store] user deleted: {username}")

    # ── permissions ─────────────────────────────────────────────────── #

    def get_user_permissions(self, username: str) -> List[Permission]:
        with self._lock:
            if username not in self._user_ids:
                raise StoreError(f"user {username} not found")
            return list(self._permissions.get(username, []))

    def update_user_permissions(self, username: str, permissions: List[Permission]) -> None:
        with self._lock:
            if username not in self._user_ids:
                raise StoreError(f"user {username} not found")
            self._permissions[username] = list(permissions)

    # ── roles ───────────────────────────────────────────────────────── #

    def add_role(self, role_name: str) -> int:
        if not role_name:
            raise InvalidInput("role name cannot be empty")
        with self._lock:
            if role_name in self._role_ids:
                raise StoreError(f"role {role_name} already exists")
            role_id = self._next_role_id
            self._next_role_id += 1
            self._roles[role_id] = role_name
            self._role_ids[role_name] = role_id
            return role_id

    def delete_role(self, role_id: int) -> None:
        with self._lock:
            role_name = self._roles.pop(role_id, None)
            if role_name is None:
                raise StoreError(f"role with id {role_id} not found")
            del self._role_ids[role_name]
            for username, roles in self._user_roles.items():
                self._user_roles[username] = [r for r in roles if r != role_name]

    def get_role_id(self, role_name: str) -> Optional[int]:
        with self._lock:
            return self._role_ids.get(role_name)

    def get_role_name(self, role_id: int) -> Optional[str]:
        with self._lock:
            return self._roles.get(role_id)

    def add_user_role(self, username: str, role_name: str) -> bool:
        with self._lock:
            if username not in self._user_ids:
                raise StoreError(f"user {username} not found")
            if role_name not in self._role_ids:
                raise StoreError(f"role {role_name} not found")
            roles = self._user_roles.setdefault(username, [])
            if role_name in roles:
                return False
            roles.append(role_name)
            return True

    def remove_user_role(self, username: str, role_name: str) -> bool:
        with self._lock:
            roles = self._user_roles.get(username, [])
            if role_name not in roles:
                return False
            roles.remove(role_name)
            return True

    def get_user_roles(self, username: str) -> List[str]:
        with self._lock:
            return list(self._user_roles.get(username, []))

    def get_users_with_role(self, role_name: str) -> List[str]:
        with self._lock:
            return [u for u, roles in self._user_roles.items() if role_name in roles]

    # ── sessions ────────────────────────────────────────────────────── #

    def store_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def terminate_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for session_id in expired:
                del self._sessions[session_id]
            return len(expired)
