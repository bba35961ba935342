"""OpenAI completion provider (Chat Completions API)."""

from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from branchwise.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    StreamChunk,
)


class OpenAIProvider(LLMProvider):
    """Provider backed by OpenAI's chat completions endpoint."""

    suggested_models = [
        "gpt-4o-mini",
        "gpt-4o",
        "gpt-4-turbo",
        "gpt-3.5-turbo",
    ]

    def __init__(self, *, client: AsyncOpenAI | None = None, api_key: str | None = None) -> None:
        self._client = client if client is not None else AsyncOpenAI(api_key=api_key)

    @property
    def name(self) -> str:
        return "openai"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        params = self._build_params(request)
        response = await self._client.chat.completions.create(**params)

        choice = response.choices[0]
        usage = None
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            }
        return GenerationResult(
            content=choice.message.content or "",
            model=response.model,
            finish_reason=choice.finish_reason,
            usage=usage,
        )

    async def generate_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamChunk]:
        params = self._build_params(request)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        accumulated_text = ""
        finish_reason: str | None = None
        model = request.model
        input_tokens = 0
        output_tokens = 0

        stream = await self._client.chat.completions.create(**params)
        async for chunk in stream:
            if chunk.model:
                model = chunk.model

            if chunk.choices:
                choice = chunk.choices[0]
                text = choice.delta.content
                if text:
                    accumulated_text += text
                    yield StreamChunk(type="text_delta", text=text)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

            # Usage arrives in a final chunk with no choices
            if chunk.usage:
                input_tokens = chunk.usage.prompt_tokens
                output_tokens = chunk.usage.completion_tokens

        yield StreamChunk(
            type="message_stop",
            is_final=True,
            result=GenerationResult(
                content=accumulated_text,
                model=model,
                finish_reason=finish_reason,
                usage={"input_tokens": input_tokens, "output_tokens": output_tokens},
            ),
        )

    @staticmethod
    def _build_params(request: GenerationRequest) -> dict[str, Any]:
        """Build kwargs dict for client.chat.completions.create()."""
        sp = request.sampling_params
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": sp.max_tokens,
            "messages": [
                {"role": m["role"], "content": m["content"]} for m in request.messages
            ],
        }
        if sp.temperature is not None:
            params["temperature"] = sp.temperature
        return params
