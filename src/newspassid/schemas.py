"""Pydantic schemas for the client ↔ backend wire format.

Field names are snake_case in Python and camelCase on the wire
(``consentString``, ``previousId``, ``publisherSegments``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IdentityEvent(BaseModel):
    """One identity resolution, sent by the client once per set_id() call."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(description="The visitor identifier")
    timestamp: int = Field(description="Client dispatch time, epoch milliseconds")
    url: str = Field(description="Page URL the event was raised on")
    consent_string: str = Field(alias="consentString", description="Privacy consent signal")
    previous_id: str | None = Field(
        default=None,
        alias="previousId",
        description="Identifier this one supersedes (publisher-initiated change only)",
    )
    publisher_segments: list[str] | None = Field(
        default=None,
        alias="publisherSegments",
        description="Segments declared by the publisher page",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire names, dropping absent optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class IngestionResponse(BaseModel):
    """Body returned by the ingestion endpoint."""

    success: bool
    id: str | None = None
    segments: list[str] | None = None
    error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
