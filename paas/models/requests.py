# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
# 3. Type hints for IDE autocompletion in route handlers
#
# Pydantic checks shape and simple bounds only. Rules that depend on the
# database (unique subdomain, seats available, password policy messages,
# supported template variables) live in the service layer and come back
# as structured errors with a stable `code`.
#
# PARTIAL UPDATES: "Update*" models have every field optional. Routes read
# them with `model_dump(exclude_unset=True)`, so an explicit `null` (e.g.
# `"user_limit": null` = unlimited) is different from an omitted field.
# =============================================================================

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

UserRole = Literal["operations", "manager", "admin"]
UserStatus = Literal["active", "inactive", "suspended"]
TenantStatus = Literal["active", "inactive", "suspended"]
AppRole = Literal["user", "admin", "manager", "operations"]


# =============================================================================
# Authentication
# =============================================================================


class LoginRequest(BaseModel):
    """
    Request body for POST /auth/login and POST /platform-auth/login.

    Example:
        {"email": "ana@clinic.com", "password": "Secret123"}
    """

    email: str = Field(..., min_length=3, max_length=255, examples=["ana@clinic.com"])
    password: str = Field(..., min_length=1, max_length=200)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=200)
    new_password: str = Field(
        ...,
        max_length=200,
        description="At least 8 characters with upper-case, lower-case and a digit.",
    )


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(..., max_length=200)


# =============================================================================
# Tenants
# =============================================================================


class CreateTenantRequest(BaseModel):
    """
    Request body for POST /tenants.

    Creating a tenant also provisions its PostgreSQL schema.
    """

    name: str = Field(..., min_length=2, max_length=255, examples=["Clínica Bem Estar"])
    subdomain: str = Field(
        ...,
        min_length=2,
        max_length=50,
        description="URL-safe slug: letters, digits, '_' and '-'.",
        examples=["bem-estar"],
    )
    timezone: str = Field(
        default="America/Sao_Paulo",
        description="IANA timezone name, used for dates in documents and the token locale.",
    )
    status: TenantStatus = "active"


class UpdateTenantRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    timezone: str | None = None
    status: TenantStatus | None = None


class ContactRequest(BaseModel):
    type: str = Field(..., description="ADMIN, BILLING, TECH, LEGAL or OTHER")
    full_name: str = Field(..., min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    title: str | None = Field(default=None, max_length=100)
    department: str | None = Field(default=None, max_length=100)
    notes: str | None = None
    is_primary: bool = Field(
        default=False,
        description="Marking a contact primary demotes the previous primary of the same type.",
    )


class UpdateContactRequest(BaseModel):
    type: str | None = None
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    title: str | None = Field(default=None, max_length=100)
    department: str | None = Field(default=None, max_length=100)
    notes: str | None = None
    is_primary: bool | None = None


class AddressRequest(BaseModel):
    type: str = Field(..., description="HQ, BILLING, SHIPPING, BRANCH or OTHER")
    label: str | None = Field(default=None, max_length=100)
    line1: str = Field(..., min_length=1, max_length=255)
    line2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    country_code: str = Field(..., min_length=2, max_length=2, examples=["BR"])
    is_primary: bool = False


class UpdateAddressRequest(BaseModel):
    type: str | None = None
    label: str | None = Field(default=None, max_length=100)
    line1: str | None = Field(default=None, min_length=1, max_length=255)
    line2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    is_primary: bool | None = None


# =============================================================================
# Users
# =============================================================================


class CreateUserRequest(BaseModel):
    """Request body for creating a tenant user (platform or tenant admin)."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., max_length=200)
    first_name: str = Field(..., max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    role: UserRole = "operations"
    user_type_id: int | None = Field(
        default=None,
        description="Pricing tier. Defaults to the user type matching the role.",
    )


class UpdateUserRequest(BaseModel):
    first_name: str | None = Field(default=None, min_length=2, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    role: UserRole | None = None
    status: UserStatus | None = None
    user_type_id: int | None = None


# =============================================================================
# Applications & Pricing
# =============================================================================


class CreateApplicationRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    slug: str = Field(..., min_length=2, max_length=50, examples=["tq"])
    description: str | None = None
    price_per_user: Decimal = Field(default=Decimal("0"), ge=0)
    status: Literal["active", "inactive", "deprecated"] = "active"
    version: str | None = Field(default=None, max_length=20)


class UpdateApplicationRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    description: str | None = None
    price_per_user: Decimal | None = Field(default=None, ge=0)
    status: Literal["active", "inactive", "deprecated"] | None = None
    version: str | None = Field(default=None, max_length=20)


class CreatePricingRequest(BaseModel):
    """
    New price of one seat for a user type. The previous active price for
    the same user type is ended when this one starts.
    """

    user_type_id: int
    price: Decimal = Field(..., ge=0)
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    billing_cycle: Literal["monthly", "yearly"] = "monthly"
    valid_from: datetime | None = Field(
        default=None, description="Defaults to now.",
    )


# =============================================================================
# Licenses & Seats
# =============================================================================


class ActivateLicenseRequest(BaseModel):
    """
    Request body for POST /tenants/{id}/applications/{slug}/activate.

    Example:
        {"user_limit": 5, "expires_at": "2026-12-31T23:59:59Z"}
    """

    user_limit: int | None = Field(
        default=None,
        description="Number of seats. Omit or null for unlimited; otherwise at least 1.",
    )
    expires_at: datetime | None = None
    status: Literal["active", "trial"] = "active"


class AdjustLicenseRequest(BaseModel):
    """
    Request body for PUT /tenants/{id}/applications/{slug}/adjust.

    Only the fields present in the body change; at least one is required.
    `"user_limit": null` makes the license unlimited.
    """

    user_limit: int | None = None
    expires_at: datetime | None = None
    status: Literal["active", "suspended", "expired", "trial", "revoked"] | None = None


class GrantAccessRequest(BaseModel):
    role_in_app: AppRole | None = Field(
        default=None,
        description="Role inside the application. Defaults from the user's role.",
    )


# =============================================================================
# API Keys & Provisioning
# =============================================================================


class CreateApiKeyRequest(BaseModel):
    """
    Request body for POST /admin/keys — Create a new integration key.

    Example:
        {"name": "Website signup", "scopes": ["provisioning"]}
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Human-readable name for the key",
    )
    scopes: list[str] = Field(
        default_factory=list,
        description="Allowed scopes (e.g. 'provisioning'). Empty means all scopes.",
    )
    rate_limit_rpm: int | None = Field(
        default=None,
        ge=1,
        le=10000,
        description="Requests per minute. Null uses the system default.",
    )
    expires_at: datetime | None = None


class UpdateApiKeyRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = Field(default=None, ge=1, le=10000)
    is_active: bool | None = None
    expires_at: datetime | None = None


class SignupRequest(BaseModel):
    """Self-service signup: tenant, admin user and a TQ license in one call."""

    tenant_name: str = Field(..., min_length=2, max_length=255)
    admin_email: str = Field(..., min_length=3, max_length=255)
    admin_first_name: str = Field(..., max_length=100)
    admin_last_name: str | None = Field(default=None, max_length=100)
    subdomain: str | None = Field(
        default=None,
        max_length=50,
        description="Derived from the tenant name when omitted.",
    )
    timezone: str = "America/Sao_Paulo"
    seats: int = Field(default=1, ge=1, le=10000)


# =============================================================================
# TQ — Patients, Sessions, Templates, Items, Quotes, Clinical Notes
# =============================================================================


class PatientRequest(BaseModel):
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    notes: str | None = None


class CreateSessionRequest(BaseModel):
    patient_id: uuid.UUID | None = None
    status: Literal["draft", "pending", "completed", "cancelled"] = "draft"
    transcript: str | None = Field(
        default=None, description="Transcription text to attach to the session.",
    )
    audio_url: str | None = None


class UpdateSessionRequest(BaseModel):
    patient_id: uuid.UUID | None = None
    status: Literal["draft", "pending", "completed", "cancelled"] | None = None
    transcript: str | None = None


class TemplateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(
        ...,
        min_length=1,
        description="HTML with $variable$ placeholders, e.g. $patient.fullName$.",
    )
    description: str | None = None
    active: bool = True


class UpdateTemplateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    content: str | None = Field(default=None, min_length=1)
    description: str | None = None
    active: bool | None = None


class ValidateTemplateRequest(BaseModel):
    content: str


class ItemRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    base_price: Decimal = Field(..., ge=0)
    active: bool = True


class UpdateItemRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    base_price: Decimal | None = Field(default=None, ge=0)
    active: bool | None = None


class QuoteLineRequest(BaseModel):
    item_id: uuid.UUID
    quantity: int = Field(default=1, ge=1)
    discount_amount: Decimal = Field(
        default=Decimal("0"), ge=0, description="Discount per unit.",
    )


class CreateQuoteRequest(BaseModel):
    """
    Example:
        {
            "session_id": "8f0c...",
            "items": [{"item_id": "2b1e...", "quantity": 2, "discount_amount": "10.00"}],
            "expires_at": "2025-06-30T23:59:59Z"
        }
    """

    session_id: uuid.UUID
    items: list[QuoteLineRequest] = Field(default_factory=list)
    content: str | None = None
    expires_at: datetime | None = None
    status: Literal["draft", "sent", "approved", "rejected", "expired"] = "draft"


class UpdateQuoteRequest(BaseModel):
    content: str | None = None
    expires_at: datetime | None = None
    status: Literal["draft", "sent", "approved", "rejected", "expired"] | None = None


class CreateClinicalNoteRequest(BaseModel):
    session_id: uuid.UUID
    content: str = Field(..., min_length=1)


class UpdateClinicalNoteRequest(BaseModel):
    content: str = Field(..., min_length=1)


# =============================================================================
# TQ — AI Agent
# =============================================================================


class FillTemplateRequest(BaseModel):
    """
    Request body for POST /ai-agent/fill-template.

    The patient defaults to the session's patient.
    """

    template_id: uuid.UUID
    session_id: uuid.UUID
    patient_id: uuid.UUID | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "template_id": "7d7f1f6e-0f1c-4d55-9a53-4d1d2f7f3c11",
                    "session_id": "3c0e8d2a-1b6f-4b8e-8f5d-2a9c7e6b1d40",
                },
            ],
        },
    )


class ChatMessageRequest(BaseModel):
    # Plain str: an unknown role is reported as INVALID_MESSAGE, not a 422
    role: str = Field(..., examples=["user"])
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessageRequest] = Field(
        default_factory=list,
        description="Conversation so far. May be empty only when session_id is given.",
    )
    session_id: uuid.UUID | None = None
    patient_id: uuid.UUID | None = None


class AgentConfigurationRequest(BaseModel):
    system_message: str = Field(..., min_length=1, max_length=20000)
