"""OpenAI Responses API client for function calling."""

import json
from collections.abc import Sequence
from dataclasses import dataclass

from openai import AsyncOpenAI

from cookbook_sessions.domain.conversations import ChatMessage
from cookbook_sessions.services.llm import (
    FunctionCallResult,
    FunctionDefinition,
    LlmClient,
)


@dataclass
class OpenAILlmClient(LlmClient):
    """LLM client backed by OpenAI Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str) -> "OpenAILlmClient":
        """Create an OpenAI LLM client."""
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def call_function(
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        messages: Sequence[ChatMessage],
        function: FunctionDefinition,
    ) -> FunctionCallResult:
        """Call the model with a forced function tool."""
        request_payload: dict[str, object] = {
            "model": model,
            "input": [
                {"role": message.role, "content": message.content}
                for message in messages
            ],
            "tools": [
                {
                    "type": "function",
                    "name": function.name,
                    "description": function.description,
                    "parameters": function.parameters,
                    "strict": True,
                }
            ],
            "tool_choice": {"type": "function", "name": function.name},
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        response = await self.client.responses.create(**request_payload)
        for item in response.output:
            if getattr(item, "type", None) == "function_call" and (
                getattr(item, "name", None) == function.name
            ):
                return FunctionCallResult(
                    arguments=json.loads(item.arguments),
                    completion=_dump(response),
                )
        raise RuntimeError(f"OpenAI did not call function {function.name}")

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()


def _dump(response: object) -> dict[str, object]:
    model_dump = getattr(response, "model_dump", None)
    if callable(model_dump):
        return model_dump(mode="json")
    return {}
