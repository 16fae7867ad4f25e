"""In-memory registry of sessions and the scopes attached to them."""

import asyncio
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID, uuid4

from cookbook_sessions.config import SessionConfig
from cookbook_sessions.domain.conversations import (
    ChatMessage,
    Conversation,
    JsonValue,
    LlmMessage,
    StructuredPayload,
    TextPayload,
)
from cookbook_sessions.domain.errors import (
    ConversationNotFoundError,
    CustomerNotFoundError,
    InvalidArgumentError,
    InvariantViolationError,
    OrderNotFoundError,
    ServiceUnavailableError,
    SessionNotFoundError,
)
from cookbook_sessions.domain.orders import CookbookOrder, Customer
from cookbook_sessions.domain.sessions import Session, SessionSnapshot

_logger = logging.getLogger(__name__)

_EMPTY_UUID = UUID(int=0)


class OrderRepository(Protocol):
    """Persistence interface for cookbook orders."""

    def get_order(self, order_id: str) -> CookbookOrder | None:
        """Return an order by id, if present."""

    def save_order(self, order: CookbookOrder) -> None:
        """Insert or update an order."""


class CustomerRepository(Protocol):
    """Persistence interface for customers."""

    def get_by_email(self, email: str) -> Customer | None:
        """Return a customer by email, if present."""

    def save_customer(self, customer: Customer) -> None:
        """Insert or update a customer."""


class ConversationSink(Protocol):
    """Durable storage for conversation transcripts."""

    async def write_conversation(
        self, conversation: Conversation, session: Session
    ) -> None:
        """Persist one conversation of an ending session.

        Raises `ServiceUnavailableError` when the backing store is down.
        """


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class _KeyIndex:
    """Maps a lookup key to the id of the session that owns it."""

    def __init__(self) -> None:
        self._owners: dict[object, UUID] = {}
        self._lock = threading.Lock()

    def get(self, key: object) -> UUID | None:
        with self._lock:
            return self._owners.get(key)

    def claim(self, key: object, session_id: UUID) -> UUID:
        """Map `key` to `session_id` unless already owned; return the owner."""
        with self._lock:
            return self._owners.setdefault(key, session_id)

    def assign(self, key: object, session_id: UUID) -> UUID | None:
        """Map `key` to `session_id`; return the previous owner."""
        with self._lock:
            previous = self._owners.get(key)
            self._owners[key] = session_id
            return previous

    def release(self, key: object, session_id: UUID) -> None:
        """Unmap `key` if it is still owned by `session_id`."""
        with self._lock:
            if self._owners.get(key) == session_id:
                del self._owners[key]


@dataclass
class SessionManager:
    """Thread-safe registry of sessions.

    Sessions live in a dict keyed by id; secondary indices map scope ids,
    order ids, user ids and API keys to session ids. Each index has its own
    lock and each session its own lock, so unrelated sessions never contend.
    Index locks are leaves: they are never held while taking another lock.
    """

    order_repository: OrderRepository
    customer_repository: CustomerRepository
    conversation_sink: ConversationSink
    config: SessionConfig = field(default_factory=SessionConfig)
    clock: Callable[[], datetime] = _utcnow
    _sessions: dict[UUID, Session] = field(default_factory=dict, init=False)
    _by_scope: _KeyIndex = field(default_factory=_KeyIndex, init=False)
    _by_order: _KeyIndex = field(default_factory=_KeyIndex, init=False)
    _by_user: _KeyIndex = field(default_factory=_KeyIndex, init=False)
    _by_api_key: _KeyIndex = field(default_factory=_KeyIndex, init=False)

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(
        self, scope_id: UUID, duration: timedelta | None = None
    ) -> Session:
        """Create a session, attach `scope_id` to it and register it."""
        _require(scope_id, "scope_id")
        now = self.clock()
        session = Session(
            id=uuid4(),
            created_at=now,
            last_accessed_at=now,
            expires_at=now,
            duration=duration,
            expires_immediately=duration is None,
        )
        self._refresh(session, now)
        if self._sessions.setdefault(session.id, session) is not session:
            raise InvariantViolationError(f"Failed to add session {session.id}")
        self._attach(session, scope_id)
        _logger.info("Created new Session %s for scope %s", session.id, scope_id)
        return session

    def get_session(self, session_id: UUID) -> Session:
        """Return a registered session and refresh its expiry."""
        _require(session_id, "session_id")
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        self._refresh(session)
        return session

    def get_session_by_scope(self, scope_id: UUID) -> Session:
        """Return the session owning `scope_id`, creating one if needed."""
        _require(scope_id, "scope_id")
        session = self._find(self._by_scope, scope_id)
        if session is not None:
            self._refresh(session)
            return session
        return self.create_session(scope_id)

    def find_session_by_scope(self, scope_id: UUID) -> Session | None:
        """Return the session owning `scope_id` without creating one."""
        _require(scope_id, "scope_id")
        return self._find(self._by_scope, scope_id)

    def get_session_by_order(self, order_id: str, scope_id: UUID) -> Session:
        """Return the session holding `order_id`, loading the order if needed."""
        _require(order_id, "order_id")
        _require(scope_id, "scope_id")

        existing = self._find(self._by_order, order_id)
        if existing is not None:
            self.add_scope_to_session(existing, scope_id)
            return existing

        order = self.order_repository.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        customer = self.customer_repository.get_by_email(order.email)
        if customer is None:
            raise CustomerNotFoundError(f"Customer {order.email} not found")
        order.customer = customer

        session = self._find(self._by_scope, scope_id)
        if session is None:
            session = self.create_session(scope_id)
        else:
            self.add_scope_to_session(session, scope_id)

        owner = self._assign_order(session, order)
        if owner is not session:
            self.add_scope_to_session(owner, scope_id)
        return owner

    def get_session_by_user_id(self, user_id: str, scope_id: UUID) -> Session:
        """Return the session for `user_id`, creating one if needed."""
        return self._get_by_identity(self._by_user, "user_id", user_id, scope_id)

    def get_session_by_api_key(self, api_key: str, scope_id: UUID) -> Session:
        """Return the session for `api_key`, creating one if needed."""
        return self._get_by_identity(
            self._by_api_key, "api_key_value", api_key, scope_id
        )

    def add_scope_to_session(self, session: Session, scope_id: UUID) -> None:
        """Attach `scope_id` to `session`; attaching twice is a no-op."""
        if session is None:
            raise InvalidArgumentError("session cannot be None")
        _require(scope_id, "scope_id")
        self._attach(session, scope_id)

    def remove_scope_from_session(self, scope_id: UUID) -> Session | None:
        """Detach `scope_id` from its session and return that session."""
        _require(scope_id, "scope_id")
        session = self._find(self._by_scope, scope_id)
        if session is None:
            _logger.warning(
                "Attempted to remove scope %s from a non-existent session", scope_id
            )
            return None
        with session.lock:
            removed = scope_id in session.scopes
            session.scopes.discard(scope_id)
        self._by_scope.release(scope_id, session.id)
        if removed:
            _logger.info("Scope %s removed from Session %s", scope_id, session.id)
        else:
            _logger.warning(
                "Failed to remove scope %s from Session %s", scope_id, session.id
            )
        return session

    async def end_session(self, session: Session) -> None:
        """Remove `session` from the registry and persist its state.

        Persistence runs outside every lock. A failure is logged and
        re-raised; the session is not re-registered.
        """
        if session is None:
            raise InvalidArgumentError("session cannot be None")
        await self._end(session)

    async def end_session_if_expired(
        self, session: Session, now: datetime | None = None
    ) -> bool:
        """End `session` only if it is still expired; return whether it ended.

        Expiry is re-checked under the session lock, so a scope attached
        after the session was picked for cleanup keeps it alive.
        """
        if session is None:
            raise InvalidArgumentError("session cannot be None")
        return await self._end(session, now or self.clock())

    async def end_session_by_id(self, session_id: UUID) -> None:
        """End a session by id."""
        _require(session_id, "session_id")
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        await self.end_session(session)

    async def end_session_by_scope(self, scope_id: UUID) -> None:
        """End the session owning `scope_id`, if any."""
        _require(scope_id, "scope_id")
        session = self._find(self._by_scope, scope_id)
        if session is None:
            _logger.warning(
                "Attempted to end non-existent session for scope %s", scope_id
            )
            return
        await self.end_session(session)

    async def end_session_by_order(self, order_id: str) -> None:
        """End the session holding `order_id`, if any."""
        _require(order_id, "order_id")
        session = self._find(self._by_order, order_id)
        if session is None:
            _logger.warning(
                "Attempted to end non-existent session for order %s", order_id
            )
            return
        await self.end_session(session)

    async def shutdown(self) -> None:
        """End every remaining session."""
        sessions = list(self._sessions.values())
        results = await asyncio.gather(
            *(self.end_session(session) for session in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results, strict=True):
            if isinstance(result, Exception):
                _logger.error(
                    "Failed to end Session %s during shutdown",
                    session.id,
                    exc_info=result,
                )

    def add_order(self, scope_id: UUID, order: CookbookOrder) -> None:
        """Attach `order` to the session owning `scope_id`."""
        if order is None:
            raise InvalidArgumentError("order cannot be None")
        _require(scope_id, "scope_id")
        session = self._require_session_for_scope(scope_id)
        owner = self._assign_order(session, order)
        if owner is not session:
            raise InvariantViolationError(
                f"Order {order.order_id} already belongs to Session {owner.id}"
            )

    def initialize_conversation(
        self,
        scope_id: UUID,
        messages: Sequence[ChatMessage],
        function_name: str | None = None,
    ) -> str:
        """Start a conversation in the scope's session and return its id."""
        _require(scope_id, "scope_id")
        session = self.get_session_by_scope(scope_id)
        system_prompt = next(
            (message.content for message in messages if message.role == "system"), ""
        )
        now = self.clock()
        stamp = f"{now:%Y%m%d-%H%M%S}.{now.microsecond // 1000:03d}"
        base_id = (f"{function_name}-{stamp}" if function_name else stamp).lower()
        with session.lock:
            conversation_id = base_id
            suffix = 1
            while conversation_id in session.conversations:
                suffix += 1
                conversation_id = f"{base_id}-{suffix}"
            session.conversations[conversation_id] = Conversation(
                id=conversation_id,
                system_prompt=system_prompt,
                prompt_catalog_name=function_name,
            )
        return conversation_id

    def add_message(  # noqa: PLR0913
        self,
        scope_id: UUID,
        conversation_id: str,
        prompt: str,
        completion: dict[str, object],
        tool_response: JsonValue = None,
        options: dict[str, object] | None = None,
    ) -> None:
        """Append an exchange to a conversation of the scope's session."""
        if completion is None:
            raise InvalidArgumentError("completion cannot be None")
        _require(scope_id, "scope_id")
        _require(conversation_id, "conversation_id")
        _require(prompt, "prompt")
        conversation = self.get_conversation(scope_id, conversation_id)
        response = (
            StructuredPayload(value=tool_response)
            if tool_response is not None
            else TextPayload(text=str(completion.get("output_text") or ""))
        )
        conversation.add_message(
            LlmMessage(
                request=prompt,
                response=response,
                timestamp=self.clock(),
                completion=completion,
                options=options,
            )
        )

    def get_conversation(self, scope_id: UUID, conversation_id: str) -> Conversation:
        """Return a conversation of the scope's session."""
        _require(scope_id, "scope_id")
        _require(conversation_id, "conversation_id")
        session = self._require_session_for_scope(scope_id)
        with session.lock:
            conversation = session.conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(
                f"Conversation {conversation_id} not found in Session {session.id}"
            )
        return conversation

    def expired_sessions(self, now: datetime | None = None) -> list[Session]:
        """Return sessions with no scopes whose expiry condition is met."""
        moment = now or self.clock()
        return [
            session
            for session in list(self._sessions.values())
            if session.is_expired(moment)
        ]

    def snapshot(self) -> list[SessionSnapshot]:
        """Return a read-only view of every registered session."""
        views = []
        for session in list(self._sessions.values()):
            with session.lock:
                views.append(
                    SessionSnapshot(
                        id=session.id,
                        scope_count=len(session.scopes),
                        order_id=session.order.order_id if session.order else None,
                        user_id=session.user_id,
                        conversation_count=len(session.conversations),
                        created_at=session.created_at,
                        expires_at=session.expires_at,
                        expires_immediately=session.expires_immediately,
                    )
                )
        return views

    def _get_by_identity(
        self, index: _KeyIndex, attribute: str, value: str, scope_id: UUID
    ) -> Session:
        _require(value, attribute)
        _require(scope_id, "scope_id")

        current = self._find(self._by_scope, scope_id)
        if current is not None:
            recorded = getattr(current, attribute)
            if recorded is not None and recorded != value:
                _logger.warning(
                    "Scope %s presented a different %s than Session %s recorded",
                    scope_id,
                    attribute,
                    current.id,
                )

        existing = self._find(index, value)
        if existing is not None:
            self.add_scope_to_session(existing, scope_id)
            return existing

        if current is not None and getattr(current, attribute) is None:
            session = current
            self._refresh(session)
        else:
            session = self.create_session(scope_id)

        with session.lock:
            owner_id = index.claim(value, session.id)
            if owner_id == session.id:
                setattr(session, attribute, value)
                return session
        owner = self._sessions.get(owner_id)
        if owner is None:
            index.release(value, owner_id)
            return self._get_by_identity(index, attribute, value, scope_id)
        self.add_scope_to_session(owner, scope_id)
        return owner

    def _assign_order(self, session: Session, order: CookbookOrder) -> Session:
        """Store `order` on `session` unless another session already holds it."""
        with session.lock:
            if session.order is not None and session.order.order_id != order.order_id:
                raise InvariantViolationError(
                    f"Session {session.id} already holds order {session.order.order_id}"
                )
            owner_id = self._by_order.claim(order.order_id, session.id)
            if owner_id == session.id:
                session.order = order
                self._refresh(session)
                return session
        owner = self._sessions.get(owner_id)
        if owner is None:
            self._by_order.release(order.order_id, owner_id)
            return self._assign_order(session, order)
        return owner

    def _attach(self, session: Session, scope_id: UUID) -> None:
        with session.lock:
            if session.ended:
                raise SessionNotFoundError(f"Session {session.id} has ended")
            previous_id = self._by_scope.assign(scope_id, session.id)
            added = scope_id not in session.scopes
            session.scopes.add(scope_id)
            self._refresh(session)
        if previous_id is not None and previous_id != session.id:
            previous = self._sessions.get(previous_id)
            if previous is not None:
                with previous.lock:
                    previous.scopes.discard(scope_id)
                _logger.info(
                    "Scope %s moved from Session %s to Session %s",
                    scope_id,
                    previous_id,
                    session.id,
                )
        if added:
            _logger.info("Scope %s added to Session %s", scope_id, session.id)

    async def _end(self, session: Session, expired_at: datetime | None = None) -> bool:
        with session.lock:
            if expired_at is not None and not session.is_expired(expired_at):
                _logger.info("Session %s is active again, not ending it", session.id)
                return False
            if self._sessions.pop(session.id, None) is None:
                _logger.warning("Failed to remove Session %s", session.id)
                return False
            session.ended = True
            scopes = list(session.scopes)
            order = session.order
            conversations = list(session.conversations.values())
            user_id = session.user_id
            api_key = session.api_key_value

        for scope_id in scopes:
            self._by_scope.release(scope_id, session.id)
        if order is not None:
            self._by_order.release(order.order_id, session.id)
        if user_id is not None:
            self._by_user.release(user_id, session.id)
        if api_key is not None:
            self._by_api_key.release(api_key, session.id)
        _logger.info("Session %s ended", session.id)

        pending = [self._write_conversation(item, session) for item in conversations]
        if order is not None:
            pending.append(asyncio.to_thread(self._save_order, order))
        try:
            await asyncio.gather(*pending)
        except Exception:
            _logger.exception(
                "Error persisting session data for session %s", session.id
            )
            raise
        return True

    def _find(self, index: _KeyIndex, key: object) -> Session | None:
        session_id = index.get(key)
        if session_id is None:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            index.release(key, session_id)
        return session

    def _require_session_for_scope(self, scope_id: UUID) -> Session:
        session = self._find(self._by_scope, scope_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found for scope {scope_id}")
        return session

    def _refresh(self, session: Session, now: datetime | None = None) -> None:
        with session.lock:
            session.last_accessed_at = now or self.clock()
            duration = session.duration or self.config.default_duration
            session.expires_at = session.last_accessed_at + duration

    async def _write_conversation(
        self, conversation: Conversation, session: Session
    ) -> None:
        try:
            await self.conversation_sink.write_conversation(conversation, session)
        except ServiceUnavailableError as exc:
            _logger.warning(
                "Conversation %s of Session %s not persisted: %s",
                conversation.id,
                session.id,
                exc,
            )

    def _save_order(self, order: CookbookOrder) -> None:
        self.order_repository.save_order(order)
        if order.customer is not None:
            self.customer_repository.save_customer(order.customer)


def _require(value: object, name: str) -> None:
    """Reject empty identifiers before any state is touched."""
    if value is None or value in ("", _EMPTY_UUID):
        raise InvalidArgumentError(f"{name} cannot be empty")
