"""Pydantic schemas for login, registration and tokens.

Learn: Request schemas do shape validation only (types, lengths, formats).
Role-dependent rules (who needs a tenant, who needs a nutritionist) live in
AuthService so every entry point (HTTP, CLI) gets them.
"""

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from nutriclinic.auth.roles import Role

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
SUBDOMAIN_PATTERN = r"^[a-z0-9-]+$"


class LoginRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6)
    tenant_subdomain: Optional[str] = None


class RegisterRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=200)
    role: Role
    tenant_id: Optional[uuid.UUID] = None
    nutricionista_id: Optional[uuid.UUID] = None

    # Nutritionists
    crn: Optional[str] = None
    especialidade: Optional[str] = None

    # Used when a nutricionista_admin registers without tenant_id
    tenant_name: Optional[str] = Field(None, min_length=1, max_length=200)
    tenant_subdomain: Optional[str] = Field(
        None, min_length=1, max_length=100, pattern=SUBDOMAIN_PATTERN
    )
    tenant_description: Optional[str] = None

    metadata: Optional[dict] = None


class UserSummary(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: Role
    tenant_id: Optional[uuid.UUID] = None

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserSummary


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
