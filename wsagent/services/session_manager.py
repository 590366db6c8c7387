"""Session management for in-memory storage."""

from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from wsagent.config import get_settings
from wsagent.models.session import Session
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemorySessionManager:
    """In-memory session manager, one session per open connection."""

    def __init__(self, session_timeout_minutes: int = 60):
        """Initialize session manager.

        Args:
            session_timeout_minutes: Minutes of inactivity before an idle session expires
        """
        self.sessions: dict[str, Session] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)
        self.last_update = datetime.now(UTC)

    def open_session(
        self,
        connection_id: str | None = None,
        user_id: str | None = None,
        email: str | None = None,
        attached: bool = False,
    ) -> Session:
        """Create a session for a newly opened connection.

        An existing session with the same connection id is replaced.

        Args:
            connection_id: Transport-assigned id, generated if omitted
            user_id: Principal from the external authorizer
            email: Principal email from the external authorizer
            attached: Whether a live connection in this process owns the session

        Returns:
            New session with empty history
        """
        self._cleanup_expired_sessions()

        new_connection_id = connection_id or self._generate_connection_id()
        session = Session(connection_id=new_connection_id, user_id=user_id, email=email, attached=attached)
        self.sessions[new_connection_id] = session
        self.touch()
        logger.info(f"Opened session {new_connection_id} (user: {user_id or 'anonymous'})")
        return session

    def get_session(self, connection_id: str) -> Session | None:
        """Get existing session by connection id.

        Args:
            connection_id: Connection identifier

        Returns:
            Session if found and not expired, None otherwise
        """
        self._cleanup_expired_sessions()

        session = self.sessions.get(connection_id)
        if session:
            session.update_activity()
        return session

    def close_session(self, connection_id: str) -> bool:
        """Discard a session and its history.

        Args:
            connection_id: Connection identifier

        Returns:
            True if session was deleted, False if not found
        """
        session = self.sessions.pop(connection_id, None)
        if session is None:
            return False

        self.touch()
        logger.info(f"Closed session {connection_id} after {session.turn_count} turns")
        return True

    def touch(self) -> None:
        """Record that server state changed."""
        self.last_update = datetime.now(UTC)

    def _generate_connection_id(self) -> str:
        """Generate a new CUID-based connection id."""
        return cuid()

    def _cleanup_expired_sessions(self) -> None:
        """Remove idle detached sessions whose connection was never closed."""
        current_time = datetime.now(UTC)
        expired_sessions = [
            connection_id
            for connection_id, session in self.sessions.items()
            if not session.busy
            and not session.attached
            and current_time - session.last_activity > self.session_timeout
        ]

        for connection_id in expired_sessions:
            logger.info(f"Expiring idle session {connection_id}")
            del self.sessions[connection_id]

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        self._cleanup_expired_sessions()
        return len(self.sessions)

    def get_busy_session_count(self) -> int:
        """Get current number of sessions with a turn in flight."""
        return sum(1 for session in self.sessions.values() if session.busy)

    def get_last_update(self) -> datetime:
        """Most recent session open/close or turn activity."""
        return max([self.last_update, *(session.last_activity for session in self.sessions.values())])


_session_manager: InMemorySessionManager | None = None


def get_session_manager() -> InMemorySessionManager:
    """Get or create session manager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = InMemorySessionManager(get_settings().session_timeout_minutes)
    return _session_manager
