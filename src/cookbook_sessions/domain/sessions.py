"""Domain models for request scopes and long-lived sessions."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from cookbook_sessions.domain.conversations import Conversation
from cookbook_sessions.domain.orders import CookbookOrder


@dataclass
class Scope:
    """A unit of work: one HTTP request or one fan-out item.

    `session_id` is bookkeeping only; a scope never owns its session.
    """

    id: UUID
    parent_id: UUID | None = None
    session_id: UUID | None = None


@dataclass
class Session:
    """Cross-call state shared by every scope attached to it.

    Fields are mutated only by `SessionManager`, under `lock`.
    """

    id: UUID
    created_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    duration: timedelta | None = None
    expires_immediately: bool = True
    user_id: str | None = None
    api_key_value: str | None = None
    order: CookbookOrder | None = None
    scopes: set[UUID] = field(default_factory=set)
    conversations: dict[str, Conversation] = field(default_factory=dict)
    ended: bool = False
    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def is_expired(self, now: datetime) -> bool:
        """Return True when the session is eligible for teardown."""
        with self.lock:
            if self.scopes:
                return False
            return self.expires_immediately or self.expires_at <= now


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session for listings."""

    id: UUID
    scope_count: int
    order_id: str | None
    user_id: str | None
    conversation_count: int
    created_at: datetime
    expires_at: datetime
    expires_immediately: bool
