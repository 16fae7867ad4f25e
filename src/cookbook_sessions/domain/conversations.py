"""Domain models for AI conversation transcripts."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

JsonValue = (
    str | int | float | bool | None | list["JsonValue"] | dict[str, "JsonValue"]
)


@dataclass(frozen=True)
class TextPayload:
    """Plain completion text returned by the model."""

    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class StructuredPayload:
    """Structured tool-call result returned by the model."""

    value: JsonValue
    kind: Literal["structured"] = "structured"


MessagePayload = TextPayload | StructuredPayload


def payload_to_dict(payload: MessagePayload) -> dict[str, object]:
    """Serialize a payload keeping its variant tag."""
    if isinstance(payload, TextPayload):
        return {"kind": payload.kind, "text": payload.text}
    return {"kind": payload.kind, "value": payload.value}


def payload_from_dict(data: dict[str, object]) -> MessagePayload:
    """Rebuild a payload from its tagged dictionary form."""
    kind = data.get("kind")
    if kind == "text":
        return TextPayload(text=str(data.get("text", "")))
    if kind == "structured":
        return StructuredPayload(value=data.get("value"))  # type: ignore[arg-type]
    raise ValueError(f"Unknown message payload kind: {kind!r}")


@dataclass(frozen=True)
class ChatMessage:
    """A prompt message sent to the model."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class LlmMessage:
    """One request/response exchange within a conversation."""

    request: str
    response: MessagePayload
    timestamp: datetime
    completion: dict[str, object] | None = None
    options: dict[str, object] | None = None


@dataclass
class Conversation:
    """Ordered transcript of one AI interaction.

    Messages may be appended concurrently by several scopes of the same
    session, so the transcript is guarded by its own lock and only exposed
    as an immutable snapshot.
    """

    id: str
    system_prompt: str
    prompt_catalog_name: str | None = None
    _messages: list[LlmMessage] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def add_message(self, message: LlmMessage) -> None:
        """Append a message to the transcript."""
        with self._lock:
            self._messages.append(message)

    @property
    def messages(self) -> tuple[LlmMessage, ...]:
        """Return a snapshot of the transcript in insertion order."""
        with self._lock:
            return tuple(self._messages)
