"""Session and state management models."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from wsagent.models.llm import LLMMessage
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """State of one live connection."""

    connection_id: str
    history: list[LLMMessage] = field(default_factory=list)
    busy: bool = False
    # Held by a live connection in this process; only the connection closing discards it
    attached: bool = False
    user_id: str | None = None
    email: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))
    turn_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        """Return the session as a dictionary."""
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "busy": self.busy,
            "attached": self.attached,
            "messages": len(self.history),
            "turn_count": self.turn_count,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = datetime.now(UTC)

    def try_begin_turn(self) -> bool:
        """Mark the session busy. Returns False if a turn is already in flight."""
        if self.busy:
            logger.warning(f"Rejecting turn for {self.connection_id}: a turn is already in progress")
            return False
        self.busy = True
        self.turn_count += 1
        self.update_activity()
        return True

    def end_turn(self) -> None:
        """Release the session for the next turn."""
        self.busy = False
        self.update_activity()
