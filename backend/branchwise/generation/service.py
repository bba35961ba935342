"""Reply service: assembles context, calls the provider, grows the reply node.

A reply is created up front as a placeholder assistant node so the tree
shows it immediately. The node's text is then replaced as the provider
streams, and finalized exactly once: with the full reply, with a fixed
apology when the provider returned nothing, or with a failure marker when
the call errored, timed out or was cancelled.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Literal

from pydantic import BaseModel

from branchwise.config import Settings
from branchwise.conversations.service import (
    ConversationNotFoundError,
    NodeNotFoundError,
)
from branchwise.generation.context import ContextAssembler
from branchwise.generation.rate_limit import RateLimiter, RateLimitExceededError
from branchwise.models import ContextWindow, Node
from branchwise.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    SamplingParams,
)
from branchwise.providers.registry import (
    ProviderNotFoundError,
    get_default_provider,
    get_provider,
)
from branchwise.store import NodeStore
from branchwise.tree.paths import build_node_index, get_active_path

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Generating..."
EMPTY_REPLY_TEXT = "Sorry, I could not generate a response."


class PendingReply(BaseModel):
    """A placeholder node plus everything needed to fill it in."""

    placeholder: Node
    provider_name: str
    request: GenerationRequest
    context: ContextWindow


class ReplyEvent(BaseModel):
    type: Literal["node", "content", "complete", "error"]
    data: dict[str, Any]


def failure_text(partial: str, reason: str) -> str:
    """Text a reply node ends with when generation did not complete."""
    if partial:
        return f"{partial}\n\n[Response interrupted: {reason}]"
    return f"{EMPTY_REPLY_TEXT} ({reason})"


class GenerationService:
    """Orchestrates AI replies for conversation nodes."""

    def __init__(
        self,
        store: NodeStore,
        rate_limiter: RateLimiter,
        settings: Settings,
        *,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self._store = store
        self._rate_limiter = rate_limiter
        self._settings = settings
        self._assembler = assembler or ContextAssembler(
            settings.context.system_prompt,
            summary_max_tokens=settings.context.summary_max_tokens,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._settings.generation.completion_timeout_seconds

    def default_model_for(self, provider: LLMProvider) -> str:
        """Model used when a reply does not name one.

        `default_model` applies to the default provider only; other
        providers use their `default_models` entry, then their first
        suggested model.
        """
        gen = self._settings.generation
        if gen.default_model and provider.name == gen.default_provider:
            return gen.default_model
        if provider.name in gen.default_models:
            return gen.default_models[provider.name]
        if provider.suggested_models:
            return provider.suggested_models[0]
        raise ProviderNotFoundError(
            f"No default model configured for provider '{provider.name}'"
        )

    async def prepare_reply(
        self,
        conversation_id: str,
        node_id: str,
        *,
        client: str,
        provider_name: str | None = None,
        model: str | None = None,
    ) -> PendingReply:
        """Check quota and inputs, build the context, create the placeholder.

        Everything that can reject the request happens here, before any
        node is written. Quota is keyed by conversation owner and `client`.
        """
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        identifier = f"{conversation.owner_id}:{client}"
        if not self._rate_limiter.is_allowed(identifier):
            raise RateLimitExceededError(
                identifier, self._rate_limiter.retry_after(identifier)
            )

        nodes = await self._store.get_nodes_by_conversation(conversation_id)
        index = build_node_index(nodes)
        if node_id not in index:
            raise NodeNotFoundError(node_id)

        gen = self._settings.generation
        if provider_name is not None:
            provider = get_provider(provider_name)
        else:
            provider = get_default_provider(gen.default_provider)
        resolved_model = model or self.default_model_for(provider)

        path = get_active_path(node_id, index)
        window = self._assembler.build(
            path,
            max_tokens=self._settings.context.max_tokens,
            keep_recent_turns=self._settings.context.keep_recent_turns,
        )
        request = GenerationRequest(
            model=resolved_model,
            messages=window.as_dicts(),
            sampling_params=SamplingParams(
                max_tokens=gen.max_tokens, temperature=gen.temperature
            ),
        )

        placeholder = await self._store.create_node(
            conversation_id, "assistant", PLACEHOLDER_TEXT, parent_id=node_id
        )
        logger.info(
            "Reply %s started under %s (%d context tokens, summary=%s)",
            placeholder.node_id, node_id, window.estimated_tokens, window.summary_mode,
        )
        return PendingReply(
            placeholder=placeholder,
            provider_name=provider.name,
            request=request,
            context=window,
        )

    async def reply(self, pending: PendingReply) -> Node:
        """Generate without streaming and finalize the placeholder."""
        provider = get_provider(pending.provider_name)
        node_id = pending.placeholder.node_id
        try:
            result = await asyncio.wait_for(
                provider.generate(pending.request), timeout=self.timeout_seconds
            )
        except TimeoutError:
            logger.warning("Reply %s timed out after %ss", node_id, self.timeout_seconds)
            return await self._finalize(node_id, failure_text("", "timed out"))
        except Exception as e:
            logger.warning("Reply %s failed: %s", node_id, e)
            return await self._finalize(node_id, failure_text("", "provider error"))
        return await self._finalize(node_id, result.content or EMPTY_REPLY_TEXT)

    async def reply_stream(self, pending: PendingReply) -> AsyncIterator[ReplyEvent]:
        """Stream a reply as events, persisting partial text along the way.

        Emits one `node` event, any number of `content` events, then exactly
        one of `complete` or `error`. The timeout bounds the whole call,
        not each chunk.
        """
        provider = get_provider(pending.provider_name)
        node_id = pending.placeholder.node_id
        flush_every = self._settings.generation.stream_flush_chars

        yield ReplyEvent(type="node", data={
            "node": pending.placeholder.model_dump(),
            "context": {
                "estimated_tokens": pending.context.estimated_tokens,
                "summary_mode": pending.context.summary_mode,
            },
        })

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        stream = provider.generate_stream(pending.request)
        text = ""
        flushed_len = 0
        result: GenerationResult | None = None
        reason: str | None = None

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TimeoutError
                try:
                    chunk = await asyncio.wait_for(anext(stream), timeout=remaining)
                except StopAsyncIteration:
                    break
                if chunk.is_final:
                    result = chunk.result
                    continue
                if not chunk.text:
                    continue
                text += chunk.text
                yield ReplyEvent(type="content", data={
                    "node_id": node_id, "text": chunk.text,
                })
                if len(text) - flushed_len >= flush_every:
                    await self._store.update_node_text(node_id, text)
                    flushed_len = len(text)
        except TimeoutError:
            logger.warning("Reply %s timed out after %ss", node_id, self.timeout_seconds)
            reason = "timed out"
        except (asyncio.CancelledError, GeneratorExit):
            logger.warning("Reply %s cancelled", node_id)
            await self._store.update_node_text(node_id, failure_text(text, "cancelled"))
            raise
        except Exception as e:
            logger.warning("Reply %s failed: %s", node_id, e)
            reason = "provider error"
        finally:
            await stream.aclose()

        if reason is not None:
            final = await self._finalize(node_id, failure_text(text, reason))
            yield ReplyEvent(type="error", data={
                "node_id": node_id, "error": reason, "text": final.text,
            })
            return

        content = result.content if result is not None and result.content else text
        final = await self._finalize(node_id, content or EMPTY_REPLY_TEXT)
        yield ReplyEvent(type="complete", data={
            "node_id": node_id,
            "text": final.text,
            "finish_reason": result.finish_reason if result else None,
            "usage": result.usage if result else None,
        })

    async def _finalize(self, node_id: str, text: str) -> Node:
        node = await self._store.update_node_text(node_id, text)
        if node is None:
            # Deleted while generating; last writer wins.
            logger.info("Reply %s was deleted before it finished", node_id)
            raise NodeNotFoundError(node_id)
        return node
