"""Import API routes."""

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile, status

from branchwise.conversations.service import (
    ConversationNotFoundError,
    InvalidParentError,
    RootAlreadyExistsError,
)
from branchwise.importer.schemas import ImportResult
from branchwise.importer.service import ImportFormatError, ImportService

router = APIRouter(prefix="/api/import", tags=["import"])


def get_import_service() -> ImportService:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("ImportService not configured")


@router.post("", status_code=status.HTTP_201_CREATED)
async def import_conversation(
    file: UploadFile,
    title: str | None = Form(None),
    conversation_id: str | None = Form(None),
    parent_id: str | None = Form(None),
    owner_id: str = Form("local"),
    service: ImportService = Depends(get_import_service),
) -> ImportResult:
    """Import an exported JSON document as a new conversation or under a node."""
    content = await file.read()
    try:
        return await service.import_document(
            content,
            owner_id=owner_id,
            title=title or None,
            conversation_id=conversation_id or None,
            parent_id=parent_id or None,
        )
    except ImportFormatError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidParentError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except RootAlreadyExistsError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
