"""Pydantic schemas for the import API."""

from pydantic import BaseModel, Field


class ImportResult(BaseModel):
    conversation_id: str
    title: str
    node_count: int
    root_node_id: str
    # Existing node the imported root was attached under, if any
    attached_to: str | None = None
    # Id in the uploaded document -> newly generated id
    id_mapping: dict[str, str] = Field(default_factory=dict)
