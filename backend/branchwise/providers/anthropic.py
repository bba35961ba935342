"""Anthropic (Claude) completion provider."""

from collections.abc import AsyncIterator
from typing import Any

from anthropic import AsyncAnthropic

from branchwise.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
)


def split_system(messages: list[dict[str, str]]) -> tuple[str | None, list[dict[str, str]]]:
    """Separate system messages from the conversational ones.

    The Messages API takes system text as its own parameter, so the fixed
    prompt and any context summary are joined with a blank line.
    """
    system = [m["content"] for m in messages if m["role"] == "system"]
    rest = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m["role"] != "system"
    ]
    return ("\n\n".join(system) if system else None), rest


class AnthropicProvider(LLMProvider):
    """Provider backed by Anthropic's Messages API."""

    suggested_models = [
        "claude-haiku-4-5-20251001",
        "claude-sonnet-4-5-20250929",
    ]

    def __init__(self, client: AsyncAnthropic) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "anthropic"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        response = await self._client.messages.create(**self._params(request))
        text = "".join(b.text for b in response.content if b.type == "text")
        return GenerationResult(
            content=text,
            model=response.model,
            finish_reason=response.stop_reason,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        parts: list[str] = []
        usage = {"input_tokens": 0, "output_tokens": 0}
        model = request.model
        stop_reason: str | None = None

        stream = await self._client.messages.create(**self._params(request), stream=True)
        async for event in stream:
            if event.type == "message_start":
                model = event.message.model
                usage["input_tokens"] = event.message.usage.input_tokens
            elif event.type == "content_block_delta":
                # tool and thinking deltas carry no text
                text = getattr(event.delta, "text", None)
                if text:
                    parts.append(text)
                    yield StreamChunk(type="text_delta", text=text)
            elif event.type == "message_delta":
                stop_reason = event.delta.stop_reason
                usage["output_tokens"] = event.usage.output_tokens

        yield StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content="".join(parts),
                model=model,
                finish_reason=stop_reason,
                usage=usage,
            ),
        )

    @staticmethod
    def _params(request: GenerationRequest) -> dict[str, Any]:
        system, messages = split_system(request.messages)
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.sampling_params.max_tokens,
            "messages": messages,
        }
        if system is not None:
            params["system"] = system
        if request.sampling_params.temperature is not None:
            params["temperature"] = request.sampling_params.temperature
        return params
