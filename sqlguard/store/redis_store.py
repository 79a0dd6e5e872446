from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List, Optional

import redis

from sqlguard.config.defaults import logger
from sqlguard.data_classes import Session, User
from sqlguard.errors import InvalidInput, StoreError
from sqlguard.rbac.permissions import Permission
from sqlguard.redis_connector import RedisConnector, RedisOptions
from sqlguard.store.provider import AuthStore, credential_matches, hash_credential


def _user_ids_key(prefix: str) -> str:
    return f"{prefix}:users:ids"


def _user_seq_key(prefix: str) -> str:
    return f"{prefix}:users:seq"


def _user_cred_key(prefix: str) -> str:
    return f"{prefix}:users:cred"


def _user_created_key(prefix: str) -> str:
    return f"{prefix}:users:created"


def _user_perms_key(prefix: str, username: str) -> str:
    return f"{prefix}:users:perms:{username}"


def _user_roles_key(prefix: str, username: str) -> str:
    return f"{prefix}:users:roles:{username}"


def _user_sessions_key(prefix: str, username: str) -> str:
    return f"{prefix}:users:sessions:{username}"


def _role_ids_key(prefix: str) -> str:
    # role_name -> role_id
    return f"{prefix}:roles:ids"


def _role_names_key(prefix: str) -> str:
    # role_id -> role_name
    return f"{prefix}:roles:names"


def _role_seq_key(prefix: str) -> str:
    return f"{prefix}:roles:seq"


def _role_members_key(prefix: str, role_name: str) -> str:
    return f"{prefix}:roles:members:{role_name}"


def _session_key(prefix: str, session_id: str) -> str:
    return f"{prefix}:sessions:{session_id}"


class RedisStore(AuthStore):
    """
    Redis-backed authorization store:
      * users:ids            -> hash {username: user_id}
      * users:cred           -> hash {username: sha256(credential)}
      * users:created        -> hash {username: ISO creation time}
      * users:perms:{user}   -> JSON list of permission documents (GET/SET, atomic replace)
      * users:roles:{user}   -> set of role names
      * users:sessions:{user} -> set of session ids issued to the user
      * roles:ids / names    -> hashes name<->id
      * roles:members:{role} -> set of usernames
      * sessions:{id}        -> JSON session document with EX = remaining lifetime
    """

    def __init__(self, options: Optional[RedisOptions] = None, client: Optional[redis.Redis] = None):
        if client is not None:
            self.r = client
            self.prefix = (options.key_prefix if options else "sqlguard")
        else:
            connector = RedisConnector(options)
            self.r = connector.r
            self.prefix = connector.options.key_prefix

    # ── users ───────────────────────────────────────────────────────── #

    def add_user(self, username: str, credential: str) -> int:
        if not username:
            raise InvalidInput("username cannot be empty")
        p = self.prefix
        try:
            existing = self.r.hget(_user_ids_key(p), username)
            if existing is not None:
                return int(existing)
            user_id = int(self.r.incr(_user_seq_key(p)))
            if not self.r.hsetnx(_user_ids_key(p), username, user_id):
                # Lost a concurrent create; the winner's id stands.
                return int(self.r.hget(_user_ids_key(p), username))
            self.r.hset(_user_cred_key(p), username, hash_credential(credential))
            self.r.hset(_user_created_key(p), username, datetime.now(timezone.utc).isoformat())
            logger.debug(f"[redis-store] user created: {username} ({user_id})")
            return user_id
        except redis.RedisError as e:
            logger.error(f"[redis-store] add_user failed: {e}")
            raise StoreError("failed to add user", cause=e)

    def user_exists(self, username: str) -> bool:
        try:
            return bool(self.r.hexists(_user_ids_key(self.prefix), username))
        except redis.RedisError as e:
            logger.error(f"[redis-store] user_exists failed: {e}")
            raise StoreError("failed to look up user", cause=e)

    def authenticate(self, username: str, credential: str) -> bool:
        try:
            digest = self.r.hget(_user_cred_key(self.prefix), username)
        except redis.RedisError as e:
            logger.error(f"[redis-store] authenticate failed: {e}")
            raise StoreError("failed to authenticate", cause=e)
        return credential_matches(digest, credential)

    def get_user_id(self, username: str) -> int:
        try:
            raw = self.r.hget(_user_ids_key(self.prefix), username)
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_user_id failed: {e}")
            raise StoreError("failed to look up user", cause=e)
        if raw is None:
            raise StoreError(f"user {username} not found")
        return int(raw)

    def get_user(self, username: str) -> Optional[User]:
        p = self.prefix
        try:
            raw_id = self.r.hget(_user_ids_key(p), username)
            created = self.r.hget(_user_created_key(p), username)
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_user failed: {e}")
            raise StoreError("failed to look up user", cause=e)
        if raw_id is None:
            return None
        if created is None:
            raise StoreError(f"user document of {username} has no creation time")
        return User(int(raw_id), username, datetime.fromisoformat(created))

    def update_credential(self, username: str, credential: str) -> None:
        if not credential:
            raise InvalidInput("credential cannot be empty")
        if not self.user_exists(username):
            raise StoreError(f"user {username} not found")
        try:
            self.r.hset(_user_cred_key(self.prefix), username, hash_credential(credential))
        except redis.RedisError as e:
            logger.error(f"[redis-store] update_credential failed: {e}")
            raise StoreError("failed to update credential", cause=e)

    def delete_user(self, username: str) -> None:
        if not self.user_exists(username):
            raise StoreError(f"user {username} not found")
        p = self.prefix
        try:
            roles = self.r.smembers(_user_roles_key(p, username)) or set()
            sessions = self.r.smembers(_user_sessions_key(p, username)) or set()
            with self.r.pipeline() as pipe:
                for role_name in roles:
                    pipe.srem(_role_members_key(p, role_name), username)
                for session_id in sessions:
                    pipe.delete(_session_key(p, session_id))
                pipe.delete(
                    _user_perms_key(p, username),
                    _user_roles_key(p, username),
                    _user_sessions_key(p, username),
                )
                pipe.hdel(_user_ids_key(p), username)
                pipe.hdel(_user_cred_key(p), username)
                pipe.hdel(_user_created_key(p), username)
                pipe.execute()
            logger.debug(f"[redis-store] user deleted: {username}")
        except redis.RedisError as e:
            logger.error(f"[redis-store] delete_user failed: {e}")
            raise StoreError("failed to delete user", cause=e)

    # ── permissions ─────────────────────────────────────────────────── #

    def get_user_permissions(self, username: str) -> List[Permission]:
        if not self.user_exists(username):
            raise StoreError(f"user {username} not found")
        try:
            raw = self.r.get(_user_perms_key(self.prefix, username))
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_user_permissions failed: {e}")
            raise StoreError("failed to read permissions", cause=e)
        if not raw:
            return []
        try:
            return [Permission.from_json(doc) for doc in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"[redis-store] corrupt permission document for {username}: {e}")
            raise StoreError(f"corrupt permission document for {username}", cause=e)

    def update_user_permissions(self, username: str, permissions: List[Permission]) -> None:
        if not self.user_exists(username):
            raise StoreError(f"user {username} not found")
        payload = json.dumps([perm.to_json() for perm in permissions])
        try:
            self.r.set(_user_perms_key(self.prefix, username), payload)
        except redis.RedisError as e:
            logger.error(f"[redis-store] update_user_permissions failed: {e}")
            raise StoreError("failed to write permissions", cause=e)

    # ── roles ───────────────────────────────────────────────────────── #

    def add_role(self, role_name: str) -> int:
        if not role_name:
            raise InvalidInput("role name cannot be empty")
        p = self.prefix
        try:
            role_id = int(self.r.incr(_role_seq_key(p)))
            if not self.r.hsetnx(_role_ids_key(p), role_name, role_id):
                raise StoreError(f"role {role_name} already exists")
            self.r.hset(_role_names_key(p), str(role_id), role_name)
            return role_id
        except redis.RedisError as e:
            logger.error(f"[redis-store] add_role failed: {e}")
            raise StoreError("failed to add role", cause=e)

    def delete_role(self, role_id: int) -> None:
        p = self.prefix
        role_name = self.get_role_name(role_id)
        if role_name is None:
            raise StoreError(f"role with id {role_id} not found")
        try:
            members = self.r.smembers(_role_members_key(p, role_name)) or set()
            with self.r.pipeline() as pipe:
                for username in members:
                    pipe.srem(_user_roles_key(p, username), role_name)
                pipe.delete(_role_members_key(p, role_name))
                pipe.hdel(_role_ids_key(p), role_name)
                pipe.hdel(_role_names_key(p), str(role_id))
                pipe.execute()
        except redis.RedisError as e:
            logger.error(f"[redis-store] delete_role failed: {e}")
            raise StoreError("failed to delete role", cause=e)

    def get_role_id(self, role_name: str) -> Optional[int]:
        try:
            raw = self.r.hget(_role_ids_key(self.prefix), role_name)
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_role_id failed: {e}")
            raise StoreError("failed to look up role", cause=e)
        return int(raw) if raw is not None else None

    def get_role_name(self, role_id: int) -> Optional[str]:
        try:
            return self.r.hget(_role_names_key(self.prefix), str(role_id))
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_role_name failed: {e}")
            raise StoreError("failed to look up role", cause=e)

    def add_user_role(self, username: str, role_name: str) -> bool:
        if not self.user_exists(username):
            raise StoreError(f"user {username} not found")
        if self.get_role_id(role_name) is None:
            raise StoreError(f"role {role_name} not found")
        p = self.prefix
        try:
            with self.r.pipeline() as pipe:
                pipe.sadd(_user_roles_key(p, username), role_name)
                pipe.sadd(_role_members_key(p, role_name), username)
                added, _ = pipe.execute()
            return bool(added)
        except redis.RedisError as e:
            logger.error(f"[redis-store] add_user_role failed: {e}")
            raise StoreError("failed to assign role", cause=e)

    def remove_user_role(self, username: str, role_name: str) -> bool:
        p = self.prefix
        try:
            with self.r.pipeline() as pipe:
                pipe.srem(_user_roles_key(p, username), role_name)
                pipe.srem(_role_members_key(p, role_name), username)
                removed, _ = pipe.execute()
            return bool(removed)
        except redis.RedisError as e:
            logger.error(f"[redis-store] remove_user_role failed: {e}")
            raise StoreError("failed to remove role", cause=e)

    def get_user_roles(self, username: str) -> List[str]:
        try:
            return sorted(self.r.smembers(_user_roles_key(self.prefix, username)) or [])
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_user_roles failed: {e}")
            raise StoreError("failed to read roles", cause=e)

    def get_users_with_role(self, role_name: str) -> List[str]:
        try:
            return sorted(self.r.smembers(_role_members_key(self.prefix, role_name)) or [])
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_users_with_role failed: {e}")
            raise StoreError("failed to read role members", cause=e)

    # ── sessions ────────────────────────────────────────────────────── #

    def store_session(self, session: Session) -> None:
        ttl_s = int((session.expires_at - session.created_at).total_seconds())
        doc = {
            "session_id": session.session_id,
            "username": session.username,
            "created_at": session.created_at.isoformat(),
            "expires_at": session.expires_at.isoformat(),
        }
        p = self.prefix
        try:
            self.r.set(_session_key(p, session.session_id), json.dumps(doc), ex=max(1, ttl_s))
            self.r.sadd(_user_sessions_key(p, session.username), session.session_id)
        except redis.RedisError as e:
            logger.error(f"[redis-store] store_session failed: {e}")
            raise StoreError("failed to store session", cause=e)

    def get_session(self, session_id: str) -> Optional[Session]:
        try:
            raw = self.r.get(_session_key(self.prefix, session_id))
        except redis.RedisError as e:
            logger.error(f"[redis-store] get_session failed: {e}")
            raise StoreError("failed to read session", cause=e)
        if not raw:
            return None
        doc = json.loads(raw)
        return Session(
            session_id=doc["session_id"],
            username=doc["username"],
            created_at=datetime.fromisoformat(doc["created_at"]),
            expires_at=datetime.fromisoformat(doc["expires_at"]),
        )

    def terminate_session(self, session_id: str) -> bool:
        session = self.get_session(session_id)
        p = self.prefix
        try:
            with self.r.pipeline() as pipe:
                pipe.delete(_session_key(p, session_id))
                if session is not None:
                    pipe.srem(_user_sessions_key(p, session.username), session_id)
                deleted = pipe.execute()[0]
            return bool(deleted)
        except redis.RedisError as e:
            logger.error(f"[redis-store] terminate_session failed: {e}")
            raise StoreError("failed to terminate session", cause=e)

    def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Session keys expire through their TTL; this prunes the per-user
        session index and drops any document already past ``expires_at``.
        """
        p = self.prefix
        removed = 0
        try:
            for username in self.r.hkeys(_user_ids_key(p)):
                index = _user_sessions_key(p, username)
                for session_id in self.r.smembers(index) or set():
                    session = self.get_session(session_id)
                    if session is not None and not session.is_expired(now):
                        continue
                    with self.r.pipeline() as pipe:
                        pipe.delete(_session_key(p, session_id))
                        pipe.srem(index, session_id)
                        pipe.execute()
                    removed += 1
        except redis.RedisError as e:
            logger.error(f"[redis-store] cleanup_expired_sessions failed: {e}")
            raise StoreError("failed to clean up sessions", cause=e)
        if removed:
            logger.debug(f"[redis-store] removed {removed} expired session(s)")
        return removed
