import re
import unittest
from datetime import timedelta

from sqlguard.errors import AuthenticationError, InvalidInput, SessionError
from sqlguard.session import SessionManager
from sqlguard.store.memory_store import MemoryStore


class TestSessionManager(unittest.TestCase):

    def setUp(self):
        self.store = MemoryStore()
        self.store.add_user("alice", "alice-token")
        self.sessions = SessionManager(self.store, ttl_seconds=3600)

    def test_create_session(self):
        session = self.sessions.create_session("alice", "alice-token")
        self.assertEqual(session.username, "alice")
        self.assertRegex(session.session_id, re.compile(r"^[0-9a-f]{64}$"))
        self.assertEqual(session.expires_at - session.created_at, timedelta(hours=1))
        self.assertTrue(self.sessions.validate_session(session.session_id))

    def test_session_ids_are_unique(self):
        a = self.sessions.create_session("alice", "alice-token")
        b = self.sessions.create_session("alice", "alice-token")
        self.assertNotEqual(a.session_id, b.session_id)

    def test_get_session(self):
        session = self.sessions.create_session("alice", "alice-token")
        fetched = self.sessions.get_session(session.session_id)
        self.assertEqual(fetched.username, "alice")

    def test_bad_credentials(self):
        with self.assertRaises(AuthenticationError):
            self.sessions.create_session("alice", "wrong")
        with self.assertRaises(AuthenticationError):
            self.sessions.create_session("nobody", "alice-token")
        with self.assertRaises(InvalidInput):
            self.sessions.create_session("", "alice-token")

    def test_terminate(self):
        session = self.sessions.create_session("alice", "alice-token")
        self.assertTrue(self.sessions.terminate_session(session.session_id))
        self.assertFalse(self.sessions.validate_session(session.session_id))
        self.assertFalse(self.sessions.terminate_session(session.session_id))
        with self.assertRaises(SessionError):
            self.sessions.get_session(session.session_id)

    def test_unknown_session(self):
        self.assertFalse(self.sessions.validate_session(""))
        self.assertFalse(self.sessions.validate_session("f" * 64))
        with self.assertRaises(SessionError):
            self.sessions.get_session("f" * 64)

    def test_cleanup_expired_sessions(self):
        expired = SessionManager(self.store, ttl_seconds=0).create_session("alice", "alice-token")
        live = self.sessions.create_session("alice", "alice-token")

        self.assertEqual(self.sessions.cleanup_expired_sessions(), 1)
        self.assertIsNone(self.store.get_session(expired.session_id))
        self.assertTrue(self.sessions.validate_session(live.session_id))
        self.assertEqual(self.sessions.cleanup_expired_sessions(), 0)

    def test_expired_session_is_dropped(self):
        sessions = SessionManager(self.store, ttl_seconds=0)
        session = sessions.create_session("alice", "alice-token")
        self.assertFalse(sessions.validate_session(session.session_id))
        with self.assertRaises(SessionError) as ctx:
            sessions.get_session(session.session_id)
        self.assertEqual(ctx.exception.message, "session expired")
        self.assertIsNone(self.store.get_session(session.session_id))


if __name__ == "__main__":
    unittest.main()
