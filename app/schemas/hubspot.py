"""Schemas for data proxied from the HubSpot CRM."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ContactListResponse(BaseModel):
    """Contacts returned by the example CRM endpoint."""

    success: bool = True
    portal_id: int
    contacts: List[Dict[str, Any]] = Field(default_factory=list)
