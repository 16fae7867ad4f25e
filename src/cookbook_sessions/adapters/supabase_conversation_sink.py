"""Supabase-backed storage for conversation transcripts."""

import asyncio
import re
from dataclasses import dataclass

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from cookbook_sessions.domain.conversations import (
    Conversation,
    LlmMessage,
    payload_to_dict,
)
from cookbook_sessions.domain.errors import ServiceUnavailableError
from cookbook_sessions.domain.sessions import Session
from cookbook_sessions.services.sessions import ConversationSink

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class SupabaseConversationSink(ConversationSink):
    """Writes one metadata row and one row per message for a conversation."""

    client: Client
    enabled: bool = True

    async def write_conversation(
        self, conversation: Conversation, session: Session
    ) -> None:
        """Persist a conversation under its session-derived path."""
        if not self.enabled:
            raise ServiceUnavailableError("Conversation persistence is disabled")
        try:
            await asyncio.to_thread(self._write, conversation, session)
        except httpx.TransportError as exc:
            raise ServiceUnavailableError(f"Supabase unreachable: {exc}") from exc
        except APIError as exc:
            if not _is_server_error(exc):
                raise
            raise ServiceUnavailableError(
                f"Supabase returned {exc.code}: {exc.message}"
            ) from exc

    def _write(self, conversation: Conversation, session: Session) -> None:
        path = conversation_path(conversation, session)
        self.client.table("llm_conversations").upsert(
            {
                "path": path,
                "conversation_id": conversation.id,
                "session_id": str(session.id),
                "system_prompt": conversation.system_prompt,
                "prompt_catalog_name": conversation.prompt_catalog_name,
            },
            on_conflict="path",
        ).execute()
        rows = [
            _message_row(path, index, message)
            for index, message in enumerate(conversation.messages, start=1)
        ]
        if rows:
            self.client.table("llm_messages").upsert(
                rows, on_conflict="conversation_path,message_index"
            ).execute()


def conversation_path(conversation: Conversation, session: Session) -> str:
    """Build the storage path for a conversation of `session`."""
    base = f"prompts/session_{session.created_at:%Y%m%d-%H%M%S}_"
    customer = session.order.customer if session.order else None
    if customer is not None and customer.email:
        base += make_safe_file_name(customer.email)
    else:
        base += str(session.id)[:8]
    if conversation.prompt_catalog_name:
        base += f"/{conversation.prompt_catalog_name}"
    return f"{base}/{conversation.id}"


def make_safe_file_name(value: str) -> str:
    """Replace characters that are unsafe in file names."""
    return _UNSAFE_CHARS.sub("_", value)


def _is_server_error(exc: APIError) -> bool:
    code = str(exc.code or "")
    return len(code) == 3 and code.startswith("5") and code.isdigit()


def _message_row(path: str, index: int, message: LlmMessage) -> dict[str, object]:
    return {
        "conversation_path": path,
        "message_index": index,
        "request": message.request,
        "response_json": payload_to_dict(message.response),
        "timestamp": message.timestamp.isoformat(),
        "completion_json": message.completion,
        "options_json": message.options,
    }
