"""Share link routes: owner-side management and the public read-only view."""

from fastapi import APIRouter, Depends, HTTPException, status

from branchwise.conversations.service import ConversationNotFoundError, NodeNotFoundError
from branchwise.share.schemas import (
    CreateShareRequest,
    PublicViewResponse,
    RevokeResponse,
    ShareResponse,
)
from branchwise.share.service import ShareNotFoundError, ShareService

router = APIRouter(prefix="/api/conversations", tags=["share"])
public_router = APIRouter(prefix="/api/public", tags=["share"])


def get_share_service() -> ShareService:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("ShareService not configured")


@router.post("/{conversation_id}/shares", status_code=status.HTTP_201_CREATED)
async def create_share(
    conversation_id: str,
    request: CreateShareRequest,
    service: ShareService = Depends(get_share_service),
) -> ShareResponse:
    try:
        return await service.create_share(conversation_id, request)
    except (ConversationNotFoundError, NodeNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("/{conversation_id}/shares")
async def list_shares(
    conversation_id: str,
    service: ShareService = Depends(get_share_service),
) -> list[ShareResponse]:
    try:
        return await service.list_shares(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.delete("/{conversation_id}/shares/{token}")
async def revoke_share(
    conversation_id: str,
    token: str,
    service: ShareService = Depends(get_share_service),
) -> RevokeResponse:
    try:
        return await service.revoke_share(conversation_id, token)
    except ShareNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@public_router.get("/{token}")
async def public_view(
    token: str,
    service: ShareService = Depends(get_share_service),
) -> PublicViewResponse:
    """Read-only view of whatever the token shares."""
    try:
        return await service.public_view(token)
    except ShareNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
