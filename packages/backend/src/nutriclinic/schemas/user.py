"""Pydantic schemas for user management."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from nutriclinic.auth.roles import Role
from nutriclinic.schemas.auth import EMAIL_PATTERN


class UserRead(BaseModel):
    """User as returned by the API. Never carries hashes."""

    id: uuid.UUID
    email: str
    name: str
    role: Role
    tenant_id: Optional[uuid.UUID] = None
    nutricionista_id: Optional[uuid.UUID] = None
    crn: Optional[str] = None
    especialidade: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    metadata: Optional[dict] = Field(
        None, validation_alias=AliasChoices("user_metadata", "metadata")
    )
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    crn: Optional[str] = None
    especialidade: Optional[str] = None
    is_active: Optional[bool] = None


class RoleUpdate(BaseModel):
    role: Role
    nutricionista_id: Optional[uuid.UUID] = None  # when turning into a patient


class AdminRoleUpdate(BaseModel):
    """Super admin role change; tenant_id optionally moves the user."""

    role: Role
    tenant_id: Optional[uuid.UUID] = None
    nutricionista_id: Optional[uuid.UUID] = None


class SuperAdminCreate(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=200)


class NutricionistaCreate(BaseModel):
    """Super admin creating a nutritionist.

    Without a tenant (query parameter) the nutritionist becomes the admin of
    a new clinic built from the tenant_* fields; with one, a staff member.
    """

    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=200)
    crn: Optional[str] = None
    especialidade: Optional[str] = None
    tenant_name: Optional[str] = Field(None, min_length=1, max_length=200)
    tenant_subdomain: Optional[str] = Field(
        None, min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$"
    )
    tenant_description: Optional[str] = None


class InviteNutricionista(BaseModel):
    """Staff nutritionist invited into the caller's clinic."""

    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    name: str = Field(..., min_length=1, max_length=200)
    crn: Optional[str] = None
    especialidade: Optional[str] = None
    temp_password: Optional[str] = Field(None, min_length=6)


class InviteResponse(BaseModel):
    """The invited user plus the one-time password to hand over."""

    user: UserRead
    temp_password: str
