# sqlguard/session.py

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlguard.config.defaults import default, logger
from sqlguard.data_classes import Session
from sqlguard.errors import AuthenticationError, InvalidInput, SessionError
from sqlguard.store.provider import AuthStore


class SessionManager:
    """Issues, validates and terminates sessions kept in the auth store."""

    def __init__(self, store: AuthStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else default.SESSION_TTL_SEC)

    def create_session(self, username: str, credential: str) -> Session:
        """Authenticate ``username`` and open a session for it."""
        if not username:
            raise InvalidInput("username cannot be empty")
        if not self.store.authenticate(username, credential):
            logger.warning(f"[session] authentication failed for {username}")
            raise AuthenticationError(f"invalid credentials for {username}")

        now = datetime.now(timezone.utc)
        session = Session(
            session_id=secrets.token_hex(32),
            username=username,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.store.store_session(session)
        logger.debug(f"[session] opened for {username}, expires {session.expires_at.isoformat()}")
        return session

    def get_session(self, session_id: str) -> Session:
        """Return the live session or raise ``SessionError``; expired ones are dropped."""
        session = self.store.get_session(session_id) if session_id else None
        if session is None:
            raise SessionError("session not found")
        if session.is_expired():
            self.store.terminate_session(session_id)
            raise SessionError("session expired")
        return session

    def validate_session(self, session_id: str) -> bool:
        if not session_id:
            return False
        return self.store.validate_session(session_id)

    def terminate_session(self, session_id: str) -> bool:
        terminated = self.store.terminate_session(session_id)
        if terminated:
            logger.debug("[session] terminated")
        return terminated

    def cleanup_expired_sessions(self) -> int:
        removed = self.store.cleanup_expired_sessions(datetime.now(timezone.utc))
        logger.info(f"[session] cleanup removed {removed} expired session(s)")
        return removed
