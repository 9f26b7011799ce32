"""Pydantic schemas for tenants (clinics) and their reports."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from nutriclinic.auth.roles import Role


class TenantRead(BaseModel):
    id: uuid.UUID
    name: str
    subdomain: str
    description: Optional[str] = None
    is_active: bool
    owner_id: Optional[uuid.UUID] = None
    settings: Optional[dict] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[dict] = None
    metadata: Optional[dict] = Field(
        None, validation_alias=AliasChoices("tenant_metadata", "metadata")
    )
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantSettingsUpdate(BaseModel):
    """Known settings keys; unknown keys are kept as-is."""

    max_patients: Optional[int] = Field(None, ge=0)
    allowed_features: Optional[list[str]] = None
    custom_branding: Optional[dict] = None
    nutricionista_permissions: Optional[dict] = None

    model_config = {"extra": "allow"}


class TenantStats(BaseModel):
    id: uuid.UUID
    name: str
    subdomain: str
    total_users: int
    active_users: int
    nutricionistas: int
    pacientes: int
    is_active: bool
    created_at: datetime


class SystemOverview(BaseModel):
    total_users: int
    total_tenants: int
    active_tenants: int
    users_by_role: dict[str, int]
    active_users: int
    inactive_users: int
    tenants_with_users: int


class NutricionistaLoad(BaseModel):
    nutricionista_id: uuid.UUID
    nutricionista_name: str
    role: Optional[Role] = None
    crn: Optional[str] = None
    especialidade: Optional[str] = None
    patients_count: int


class PatientBrief(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PatientsDistribution(NutricionistaLoad):
    patients: list[PatientBrief] = Field(default_factory=list)


class TenantOverview(BaseModel):
    total_users: int
    total_nutricionistas: int
    total_pacientes: int
    active_users: int
    nutricionistas: list[NutricionistaLoad]
