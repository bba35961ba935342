"""FastAPI routes for conversations, nodes, tree views, and AI replies."""

import json as json_module
import logging
import math
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from branchwise.conversations.schemas import (
    ConversationDetailResponse,
    ConversationSummary,
    CreateConversationRequest,
    CreateNodeRequest,
    DeleteResponse,
    NodeResponse,
    PatchConversationRequest,
    PatchNodeRequest,
    PathResponse,
    ReplyRequest,
    SiblingsResponse,
    TurnsResponse,
    ValidationResponse,
)
from branchwise.conversations.service import (
    ConversationNotFoundError,
    ConversationService,
    InvalidParentError,
    NodeNotFoundError,
    RootAlreadyExistsError,
)
from branchwise.generation.rate_limit import RateLimitExceededError
from branchwise.generation.service import GenerationService, PendingReply
from branchwise.models import ContextWindow, SwitchSteps, TreeLayout
from branchwise.providers.registry import ProviderNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_conversation_service() -> ConversationService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("ConversationService not initialized")


def get_generation_service() -> GenerationService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("GenerationService not initialized")


def _not_found(e: ConversationNotFoundError | NodeNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


# -- Conversations --


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: CreateConversationRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetailResponse:
    return await service.create_conversation(request)


@router.get("")
async def list_conversations(
    owner_id: str | None = None,
    service: ConversationService = Depends(get_conversation_service),
) -> list[ConversationSummary]:
    return await service.list_conversations(owner_id)


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetailResponse:
    conversation = await service.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=404, detail=f"Conversation not found: {conversation_id}"
        )
    return conversation


@router.patch("/{conversation_id}")
async def rename_conversation(
    conversation_id: str,
    request: PatchConversationRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetailResponse:
    try:
        return await service.rename_conversation(conversation_id, request)
    except ConversationNotFoundError as e:
        raise _not_found(e)


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> DeleteResponse:
    try:
        return await service.delete_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise _not_found(e)


# -- Nodes --


@router.post("/{conversation_id}/nodes", status_code=status.HTTP_201_CREATED)
async def create_node(
    conversation_id: str,
    request: CreateNodeRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> NodeResponse:
    try:
        return await service.create_node(conversation_id, request)
    except ConversationNotFoundError as e:
        raise _not_found(e)
    except InvalidParentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RootAlreadyExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch("/{conversation_id}/nodes/{node_id}")
async def edit_node(
    conversation_id: str,
    node_id: str,
    request: PatchNodeRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> NodeResponse:
    try:
        return await service.edit_node(conversation_id, node_id, request)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.delete("/{conversation_id}/nodes/{node_id}")
async def delete_node(
    conversation_id: str,
    node_id: str,
    soft: bool = False,
    service: ConversationService = Depends(get_conversation_service),
) -> DeleteResponse:
    try:
        return await service.delete_subtree(conversation_id, node_id, soft=soft)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


# -- Tree views --


@router.get("/{conversation_id}/nodes/{node_id}/path")
async def get_path(
    conversation_id: str,
    node_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> PathResponse:
    try:
        return await service.get_path(conversation_id, node_id)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.get("/{conversation_id}/nodes/{node_id}/siblings")
async def get_siblings(
    conversation_id: str,
    node_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> SiblingsResponse:
    try:
        return await service.get_siblings(conversation_id, node_id)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.get("/{conversation_id}/switch")
async def switch_steps(
    conversation_id: str,
    from_id: str,
    to_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> SwitchSteps:
    try:
        return await service.switch_steps(conversation_id, from_id, to_id)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.get("/{conversation_id}/turns")
async def get_turns(
    conversation_id: str,
    active_node_id: str | None = None,
    service: ConversationService = Depends(get_conversation_service),
) -> TurnsResponse:
    try:
        return await service.get_turns(conversation_id, active_node_id)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.get("/{conversation_id}/layout")
async def get_layout(
    conversation_id: str,
    active_node_id: str | None = None,
    service: ConversationService = Depends(get_conversation_service),
) -> TreeLayout:
    try:
        return await service.get_layout(conversation_id, active_node_id)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.get("/{conversation_id}/nodes/{node_id}/context")
async def preview_context(
    conversation_id: str,
    node_id: str,
    max_tokens: int | None = Query(default=None, gt=0),
    service: ConversationService = Depends(get_conversation_service),
) -> ContextWindow:
    try:
        return await service.preview_context(conversation_id, node_id, max_tokens)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)


@router.get("/{conversation_id}/validate")
async def validate_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> ValidationResponse:
    try:
        return await service.validate(conversation_id)
    except ConversationNotFoundError as e:
        raise _not_found(e)


# -- AI replies --


@router.post(
    "/{conversation_id}/nodes/{node_id}/reply",
    status_code=status.HTTP_201_CREATED,
    response_model=None,
)
async def reply(
    conversation_id: str,
    node_id: str,
    request: ReplyRequest,
    http_request: Request,
    gen_service: GenerationService = Depends(get_generation_service),
) -> NodeResponse | StreamingResponse:
    client = http_request.client.host if http_request.client else "unknown"
    try:
        pending = await gen_service.prepare_reply(
            conversation_id,
            node_id,
            client=client,
            provider_name=request.provider,
            model=request.model,
        )
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise _not_found(e)
    except ProviderNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RateLimitExceededError as e:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(math.ceil(e.retry_after))},
        )

    if request.stream:
        return StreamingResponse(
            _stream_sse(gen_service, pending),
            status_code=status.HTTP_201_CREATED,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    try:
        node = await gen_service.reply(pending)
    except NodeNotFoundError as e:
        raise _not_found(e)
    return NodeResponse(**node.model_dump())


async def _stream_sse(
    gen_service: GenerationService, pending: PendingReply
) -> AsyncIterator[str]:
    """Async generator that yields SSE-formatted lines."""
    try:
        async for event in gen_service.reply_stream(pending):
            yield f"event: {event.type}\ndata: {json_module.dumps(event.data)}\n\n"
    except Exception as e:
        logger.warning("Reply stream %s ended with error: %s", pending.placeholder.node_id, e)
        error = {"node_id": pending.placeholder.node_id, "error": str(e)}
        yield f"event: error\ndata: {json_module.dumps(error)}\n\n"
