"""Error types raised by the session registry and its collaborators."""


class SessionError(Exception):
    """Base class for session registry errors."""


class NotFoundError(SessionError, LookupError):
    """A session, scope, order, customer, or conversation lookup failed."""


class SessionNotFoundError(NotFoundError):
    """No registered session matches the lookup."""


class ConversationNotFoundError(NotFoundError):
    """The session holds no conversation with the requested id."""


class OrderNotFoundError(NotFoundError):
    """The order store has no order with the requested id."""


class CustomerNotFoundError(NotFoundError):
    """The customer store has no customer for the order's email."""


class InvalidArgumentError(SessionError, ValueError):
    """An empty or missing identifier was passed to a registry operation."""


class InvariantViolationError(SessionError, RuntimeError):
    """Registry state would become inconsistent; indicates a programming defect."""


class ServiceUnavailableError(SessionError):
    """A collaborator declared itself temporarily unavailable."""
