"""LLM function calls recorded into the caller's session conversation."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from cookbook_sessions.domain.conversations import ChatMessage
from cookbook_sessions.domain.sessions import Scope
from cookbook_sessions.services.sessions import SessionManager

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionDefinition:
    """A function tool the model must call with structured arguments."""

    name: str
    description: str
    parameters: dict[str, object]


@dataclass(frozen=True)
class FunctionCallResult:
    """Parsed function-call arguments plus the raw completion."""

    arguments: dict[str, object]
    completion: dict[str, object]


@dataclass(frozen=True)
class LlmResult:
    """Arguments returned by the model and the conversation they belong to."""

    arguments: dict[str, object]
    conversation_id: str


class LlmClient(Protocol):
    """Interface for model providers supporting function calling."""

    async def call_function(
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        messages: Sequence[ChatMessage],
        function: FunctionDefinition,
    ) -> FunctionCallResult:
        """Call the model, forcing `function`, and return its arguments."""


@dataclass
class LlmService:
    """Calls the model and logs every exchange into the scope's session."""

    client: LlmClient
    session_manager: SessionManager
    model: str
    reasoning_effort: str | None = None

    async def call_function(  # noqa: PLR0913
        self,
        scope: Scope,
        system_prompt: str,
        user_prompt: str,
        function: FunctionDefinition,
        conversation_id: str | None = None,
    ) -> LlmResult:
        """Call `function` and record the exchange in a conversation."""
        messages = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_prompt),
        ]
        if conversation_id is None:
            conversation_id = self.session_manager.initialize_conversation(
                scope.id, messages, function.name
            )

        result = await self.client.call_function(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            messages=messages,
            function=function,
        )
        self.session_manager.add_message(
            scope.id,
            conversation_id,
            user_prompt,
            result.completion,
            tool_response=result.arguments,
            options={"model": self.model, "function": function.name},
        )
        _logger.info(
            "LLM function %s answered in conversation %s",
            function.name,
            conversation_id,
        )
        return LlmResult(arguments=result.arguments, conversation_id=conversation_id)
