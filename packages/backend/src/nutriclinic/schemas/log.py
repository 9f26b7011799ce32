"""Pydantic schemas for access logs."""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class AccessLogRead(BaseModel):
    id: int
    user_id: str
    user_email: str
    user_role: str
    tenant_id: Optional[str] = None
    action: str
    resource: str
    method: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    metadata: Optional[dict] = Field(
        None, validation_alias=AliasChoices("meta", "metadata")
    )
    timestamp: datetime

    model_config = {"from_attributes": True}


class AccessStats(BaseModel):
    total_access: int
    successful_access: int
    failed_access: int
    unique_users: int
    success_rate: float
