"""Export API routes."""

import json
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from branchwise.conversations.service import ConversationNotFoundError, NodeNotFoundError
from branchwise.export.service import ExportService, export_filename, render_markdown

router = APIRouter(prefix="/api/conversations", tags=["export"])


def get_export_service() -> ExportService:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("ExportService not configured")


@router.get("/{conversation_id}/export")
async def export_conversation(
    conversation_id: str,
    format: Literal["json", "md", "markdown"] = Query("json"),
    node: str | None = Query(None, description="Export only the subtree under this node"),
    service: ExportService = Depends(get_export_service),
) -> Response:
    """Export a conversation as portable JSON or as Markdown with a Mermaid graph."""
    try:
        if format == "json":
            document = await service.export_json(conversation_id, node)
            return Response(
                content=json.dumps(document.to_wire(), indent=2),
                media_type="application/json",
                headers={
                    "Content-Disposition": (
                        f'attachment; filename="{export_filename(document.conversation.title, "json")}"'
                    ),
                },
            )

        conversation, nodes = await service.collect(conversation_id, node)
        markdown = render_markdown(conversation, nodes, datetime.now(UTC))
        return Response(
            content=markdown,
            media_type="text/markdown",
            headers={
                "Content-Disposition": (
                    f'attachment; filename="{export_filename(conversation.title, "md")}"'
                ),
            },
        )
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NodeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
