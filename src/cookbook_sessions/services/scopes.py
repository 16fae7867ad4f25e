"""Scope creation for requests and fan-out items."""

from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

from cookbook_sessions.domain.sessions import Scope


class ScopeFactory(Protocol):
    """Creates unit-of-work scopes."""

    def create_scope(self, parent: Scope | None = None) -> Scope:
        """Return a fresh scope, linked to `parent` when given."""


@dataclass
class DefaultScopeFactory(ScopeFactory):
    """Scope factory issuing random UUIDs.

    Child scopes inherit the parent's session id so fan-out items can be
    attached to the same session.
    """

    def create_scope(self, parent: Scope | None = None) -> Scope:
        """Return a fresh scope with a unique id."""
        if parent is None:
            return Scope(id=uuid4())
        return Scope(id=uuid4(), parent_id=parent.id, session_id=parent.session_id)
