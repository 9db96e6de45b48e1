# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between backend and frontend:
# 1. Ensure consistent response structure across all endpoints
# 2. Automatically serialized to JSON by FastAPI
# 3. Generate OpenAPI response schemas (visible at /docs)
# 4. Prevent accidental exposure of internal fields
#
# DESIGN DECISION: Separate response models from DB models
# The users table stores bcrypt password hashes and api_keys stores key
# hashes. Response models control exactly what is exposed; most are built
# straight from ORM rows with `model_validate(row)` (from_attributes=True).
# =============================================================================

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class ErrorResponse(BaseModel):
    """Body of every error raised by the service layer."""

    error: str = Field(description="HTTP reason, e.g. 'Not Found'")
    message: str
    code: str = Field(description="Stable machine-readable reason, e.g. NO_SEATS_AVAILABLE")
    details: dict[str, Any] | None = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


def paginate(total: int, limit: int, offset: int, count: int) -> Pagination:
    return Pagination(
        total=total, limit=limit, offset=offset, has_more=offset + count < total,
    )


# =============================================================================
# Authentication
# =============================================================================


class UserResponse(BaseModel):
    """A platform or tenant user. Never includes the password hash."""

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    full_name: str
    tenant_id: int
    role: str
    status: str
    user_type_id: int | None = None
    platform_role: str | None = None
    last_login: datetime | None = None
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    items: list[UserResponse]
    pagination: Pagination


class LoginResponse(BaseModel):
    """
    Response for POST /auth/login, /auth/refresh and /platform-auth/login.

    `allowed_apps` mirrors the entitlements embedded in the token.
    """

    token: str
    token_type: str = "Bearer"
    expires_in: int = Field(description="Token lifetime in seconds")
    user: UserResponse
    tenant_id: int | None = None
    allowed_apps: list[str] = Field(default_factory=list)
    locale: str | None = None


class MeResponse(BaseModel):
    """The identity carried by the caller's token."""

    user_id: int
    email: str
    name: str
    type: str
    role: str | None = None
    tenant_id: int | None = None
    timezone: str | None = None
    locale: str | None = None
    allowed_apps: list[str] = Field(default_factory=list)
    user_type: dict[str, Any] | None = None
    platform_role: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# =============================================================================
# Tenants
# =============================================================================


class TenantResponse(BaseModel):
    id: int
    name: str
    subdomain: str
    schema_name: str | None = None
    timezone: str
    status: str
    active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TenantListResponse(BaseModel):
    items: list[TenantResponse]
    pagination: Pagination


class ContactResponse(BaseModel):
    id: int
    tenant_id: int
    type: str
    full_name: str
    email: str | None = None
    phone: str | None = None
    title: str | None = None
    department: str | None = None
    notes: str | None = None
    is_primary: bool
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AddressResponse(BaseModel):
    id: int
    tenant_id: int
    type: str
    label: str | None = None
    line1: str
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country_code: str
    is_primary: bool
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Applications, Licenses & Seats
# =============================================================================


class ApplicationResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: str | None = None
    price_per_user: Decimal
    status: str
    version: str | None = None
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PricingResponse(BaseModel):
    id: int
    application_id: int
    user_type_id: int
    price: Decimal
    currency: str
    billing_cycle: str
    valid_from: datetime
    valid_to: datetime | None = None
    active: bool

    model_config = ConfigDict(from_attributes=True)


class LicenseResponse(BaseModel):
    """
    A tenant's license for one application.

    `user_limit` and `seats_available` are null for unlimited licenses.
    """

    id: int
    tenant_id: int
    application_id: int
    application_slug: str
    application_name: str
    status: str
    activated_at: datetime
    expires_at: datetime | None = None
    user_limit: int | None = None
    seats_used: int
    seats_available: int | None = None
    active: bool


class LicenseListResponse(BaseModel):
    tenant_id: int
    licenses: list[LicenseResponse]


class SeatChangeResponse(BaseModel):
    """Result of granting or revoking a seat."""

    user_id: int
    application_slug: str
    role_in_app: str
    active: bool
    granted_at: datetime | None = None
    seats_used: int
    user_limit: int | None = None
    seats_remaining: int | None = Field(
        default=None, description="Null for unlimited licenses",
    )
    seats_freed: int = 0
    price_snapshot: Decimal | None = None
    currency_snapshot: str | None = None
    billing_cycle_snapshot: str | None = None


class SeatUsage(BaseModel):
    used: int
    total: int | None = None
    available: int | None = None


class LicenseUser(BaseModel):
    id: int
    name: str
    email: str
    role: str
    status: str
    granted: bool
    access_id: int | None = None
    role_in_app: str | None = None
    granted_at: datetime | None = None


class LicenseUsersResponse(BaseModel):
    """Response for GET /tenants/{id}/applications/{slug}/users."""

    usage: SeatUsage
    items: list[LicenseUser]
    pagination: Pagination


class MyEntitlementsResponse(BaseModel):
    user_id: int
    tenant_id: int
    allowed_apps: list[str]


class AccessLogResponse(BaseModel):
    id: int
    user_id: int | None = None
    tenant_id: int | None = None
    application_id: int | None = None
    decision: str
    access_type: str
    reason: str | None = None
    api_path: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccessLogListResponse(BaseModel):
    items: list[AccessLogResponse]
    pagination: Pagination


# =============================================================================
# API Keys, Audit & Provisioning
# =============================================================================


class ApiKeyResponse(BaseModel):
    """
    Response for API key details.

    Never includes raw key or hash — only the prefix for identification.
    """

    id: int
    name: str
    key_prefix: str
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    is_active: bool
    created_by_id: int | None = None
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ApiKeyCreatedResponse(BaseModel):
    """
    Response for POST /admin/keys — returned once at key creation.

    WARNING: The raw_key is only returned in this response.
    It is never stored or retrievable after creation.
    """

    id: int
    name: str
    key_prefix: str
    raw_key: str = Field(
        description=(
            "The full API key. Store it securely "
            "— it will NOT be shown again."
        ),
    )
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    created_at: datetime
    expires_at: datetime | None = None


class ApiKeyListResponse(BaseModel):
    """Response for GET /admin/keys — list of all API keys."""

    keys: list[ApiKeyResponse]
    total: int


class AuditLogResponse(BaseModel):
    """Response for a single audit log entry."""

    id: int
    user_id: int | None = None
    api_key_id: int | None = None
    tenant_id: int | None = None
    method: str
    path: str
    client_ip: str | None = None
    status_code: int | None = None
    response_time_ms: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Response for GET /admin/audit-logs — list of audit log entries."""

    logs: list[AuditLogResponse]
    total: int


class SignupResponse(BaseModel):
    """
    Response for POST /provisioning/signup.

    The temporary password is only returned here; the admin must change it
    after the first login.
    """

    tenant: TenantResponse
    admin_user: UserResponse
    temporary_password: str
    license: LicenseResponse
    seats_remaining: int | None = None


# =============================================================================
# TQ
# =============================================================================


class PatientResponse(BaseModel):
    id: uuid.UUID
    first_name: str | None = None
    last_name: str | None = None
    full_name: str
    email: str | None = None
    phone: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PatientListResponse(BaseModel):
    items: list[PatientResponse]
    pagination: Pagination


class TranscriptionResponse(BaseModel):
    id: uuid.UUID
    audio_url: str | None = None
    transcript_status: str
    transcript: str | None = None
    confidence_score: Decimal | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    id: uuid.UUID
    number: str
    status: str
    patient_id: uuid.UUID | None = None
    transcription_id: uuid.UUID | None = None
    created_by_user_id: int | None = None
    patient: PatientResponse | None = None
    transcription: TranscriptionResponse | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionListResponse(BaseModel):
    items: list[SessionResponse]
    pagination: Pagination


class TemplateResponse(BaseModel):
    id: uuid.UUID
    title: str
    content: str
    description: str | None = None
    active: bool
    usage_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TemplateListResponse(BaseModel):
    items: list[TemplateResponse]
    pagination: Pagination


class VariableValidationResponse(BaseModel):
    is_valid: bool
    used_variables: list[str]
    unsupported_variables: list[str]
    supported_variables: list[str]


class ItemResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    base_price: Decimal
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ItemListResponse(BaseModel):
    items: list[ItemResponse]
    pagination: Pagination


class QuoteItemResponse(BaseModel):
    id: uuid.UUID
    item_id: uuid.UUID | None = None
    name: str
    base_price: Decimal
    quantity: int
    discount_amount: Decimal
    final_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class QuoteResponse(BaseModel):
    id: uuid.UUID
    number: str
    session_id: uuid.UUID
    content: str | None = None
    total: Decimal
    status: str
    expires_at: datetime | None = None
    items: list[QuoteItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuoteListResponse(BaseModel):
    items: list[QuoteResponse]
    pagination: Pagination


class ClinicalNoteResponse(BaseModel):
    id: uuid.UUID
    number: str
    session_id: uuid.UUID
    content: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClinicalNoteListResponse(BaseModel):
    items: list[ClinicalNoteResponse]
    pagination: Pagination


class FillTemplateResponse(BaseModel):
    """
    Response for POST /ai-agent/fill-template.

    `ai_prompt` and `system_message` are returned for transparency: they are
    exactly what was sent to the language model.
    """

    original_template: str
    filled_template: str
    variables: dict[str, str]
    ai_prompt: str
    system_message: str
    model: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ChatResponse(BaseModel):
    response: str
    system_message_used: str
    model: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AgentConfigurationResponse(BaseModel):
    system_message: str
    is_default: bool
