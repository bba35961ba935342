"""Portable JSON document shared by export and import (camelCase on the wire)."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from branchwise.models import Role

EXPORT_VERSION = 1


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExportedNode(_WireModel):
    id: str
    parent_id: str | None = None
    role: Role
    text: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Stored timestamps are compared as UTC strings; naive means UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class ExportedConversation(_WireModel):
    id: str
    title: str


class ExportDocument(_WireModel):
    version: int = EXPORT_VERSION
    conversation: ExportedConversation
    nodes: list[ExportedNode]

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
