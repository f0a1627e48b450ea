"""
WATCHTOWER - Workflow Schemas
=============================
Pydantic models for dispatching and polling the external workflow.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from watchtower.db.models import VerificationStatus


class SearchData(BaseModel):
    """Case details submitted to the workflow. At least one field is required."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_name: Optional[str] = Field(default=None, alias="fullName")
    address: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = None

    @model_validator(mode="after")
    def require_one(self):
        if not any((self.full_name, self.address, self.email, self.phone, self.username)):
            raise ValueError("At least one search parameter is required")
        return self


class DispatchRequest(BaseModel):
    investigation_id: UUID
    search: SearchData


class PollRequest(BaseModel):
    workorderid: str = Field(..., min_length=1, max_length=200)


class FindingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    investigation_id: UUID
    agent_type: str
    source: str
    data: dict[str, Any]
    confidence_score: Optional[float] = None
    verification_status: VerificationStatus


class PollingStateResponse(BaseModel):
    investigation_id: UUID
    state: str
    workorderid: Optional[str] = None
    attempts: int = 0
