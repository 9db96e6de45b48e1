# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# Two declarative bases, two kinds of tables:
#
# 1. `Base` — platform tables in the `public` schema, shared by all tenants:
#
#    tenants ──1:N──▶ tenant_contacts / tenant_addresses
#       │
#       ├──1:N──▶ users ──N:1──▶ user_types
#       │
#       └──1:N──▶ tenant_applications (license) ◀──N:1── applications
#                        │                                   │
#                        ▼                                   ▼
#              user_application_access (seat)      application_pricing
#
#    plus application_access_logs, api_keys and audit_logs.
#
# 2. `TenantBase` — TQ application tables, one copy per tenant schema
#    (`tenant_<id>`). They are declared against the placeholder schema
#    "tenant"; sessions and DDL map it to the real schema with
#    `schema_translate_map` (see db/engine.py).
#
# DESIGN DECISION: Status columns are plain strings validated by the
# service layer and Pydantic, not PostgreSQL ENUM types. Tenant schemas are
# created at runtime, and ENUM types would have to be created per schema.
# =============================================================================

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    Sequence,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from paas.db.engine import TENANT_SCHEMA


class Base(DeclarativeBase):
    """Declarative base for platform (public schema) tables."""

    # Fetch server-generated timestamps with RETURNING on INSERT and UPDATE;
    # async sessions cannot lazy-load them afterwards.
    __mapper_args__ = {"eager_defaults": True}


class TenantBase(DeclarativeBase):
    """
    Declarative base for tenant-owned tables.

    Every table lives in the placeholder schema "tenant", translated to
    `tenant_<id>` per connection.
    """

    metadata = MetaData(schema=TENANT_SCHEMA)
    __mapper_args__ = {"eager_defaults": True}


# ---------------------------------------------------------------------------
# Allowed values for string status/type columns
# ---------------------------------------------------------------------------
TENANT_STATUSES = ("active", "inactive", "suspended")
USER_ROLES = ("operations", "manager", "admin")
USER_STATUSES = ("active", "inactive", "suspended")
APP_ROLES = ("user", "admin", "manager", "operations")
LICENSE_STATUSES = ("active", "suspended", "expired", "trial", "revoked")
APPLICATION_STATUSES = ("active", "inactive", "deprecated")
BILLING_CYCLES = ("monthly", "yearly")
CONTACT_TYPES = ("ADMIN", "BILLING", "TECH", "LEGAL", "OTHER")
ADDRESS_TYPES = ("HQ", "BILLING", "SHIPPING", "BRANCH", "OTHER")
SESSION_STATUSES = ("draft", "pending", "completed", "cancelled")
QUOTE_STATUSES = ("draft", "sent", "approved", "rejected", "expired")

PLATFORM_ROLE_INTERNAL_ADMIN = "internal_admin"


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# =============================================================================
# Tenants
# =============================================================================


class Tenant(Base):
    """
    A customer organization.

    Its TQ data lives in the PostgreSQL schema `tenant_<id>`; `schema_name`
    is stored for reference and always equals that value.
    """

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # URL-safe slug, also used for subdomain resolution (<slug>.example.com)
    subdomain: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    schema_name: Mapped[str | None] = mapped_column(String(63), nullable=True)
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default="America/Sao_Paulo",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, subdomain='{self.subdomain}', status={self.status})>"


class TenantContact(Base):
    """Contact person of a tenant (at most one primary per type)."""

    __tablename__ = "tenant_contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class TenantAddress(Base):
    """Postal address of a tenant (at most one primary per type)."""

    __tablename__ = "tenant_addresses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    line1: Mapped[str] = mapped_column(String(255), nullable=False)
    line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


# =============================================================================
# Users
# =============================================================================


class UserType(Base):
    """
    Pricing tier of a user (operations / manager / admin).

    `hierarchy_level` orders the tiers: 0 operations, 1 manager, 2 admin.
    """

    __tablename__ = "user_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    base_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0"),
    )
    hierarchy_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()


class User(Base):
    """
    A person who logs in. Tenant users belong to exactly one tenant;
    platform staff additionally carry `platform_role = "internal_admin"`.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="operations")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    user_type_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("user_types.id"), nullable=True,
    )
    platform_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    user_type: Mapped["UserType | None"] = relationship("UserType", lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"


# =============================================================================
# Applications, Pricing & Licenses
# =============================================================================


class Application(Base):
    """An application in the platform catalog (e.g. `tq`)."""

    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_per_user: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0"),
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    version: Mapped[str | None] = mapped_column(String(20), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class ApplicationPricing(Base):
    """
    Price of one seat of an application for one user type.

    Rows are versioned: ending a price sets `valid_to` and `active=false`;
    the current price is the active row whose validity window contains now.
    """

    __tablename__ = "application_pricing"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    user_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_types.id"), nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    billing_cycle: Mapped[str] = mapped_column(
        String(10), nullable=False, default="monthly",
    )
    valid_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    valid_to: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()


class TenantApplication(Base):
    """
    A tenant's license for one application.

    `user_limit` NULL means unlimited seats. `seats_used` is the number of
    active user accesses and never exceeds `user_limit`; every change to it
    happens while the row is locked with SELECT ... FOR UPDATE.
    """

    __tablename__ = "tenant_applications"
    __table_args__ = (
        UniqueConstraint("tenant_id", "application_id", name="uq_tenant_application"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    activated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    user_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    seats_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    application: Mapped["Application"] = relationship("Application", lazy="selectin")

    @property
    def seats_available(self) -> int | None:
        """Remaining seats, or None for an unlimited license."""
        if self.user_limit is None:
            return None
        return max(self.user_limit - self.seats_used, 0)

    def __repr__(self) -> str:
        return (
            f"<TenantApplication(tenant={self.tenant_id}, app={self.application_id}, "
            f"status={self.status}, seats={self.seats_used}/{self.user_limit})>"
        )


class UserApplicationAccess(Base):
    """
    A seat: one user's access to one application within a tenant.

    Pricing at grant time is snapshotted so later price changes do not
    rewrite what the seat was billed at.
    """

    __tablename__ = "user_application_access"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "application_id", "tenant_id", name="uq_user_application_tenant",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    role_in_app: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    granted_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Pricing snapshot
    price_snapshot: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency_snapshot: Mapped[str | None] = mapped_column(String(3), nullable=True)
    user_type_id_snapshot: Mapped[int | None] = mapped_column(Integer, nullable=True)
    billing_cycle_snapshot: Mapped[str | None] = mapped_column(String(10), nullable=True)

    updated_at: Mapped[datetime] = _updated_at()


class ApplicationAccessLog(Base):
    """
    Append-only record of access decisions and seat changes.

    `access_type` is "access" for runtime checks, "granted"/"revoked" for
    seat changes and "platform_login" for internal admin logins.
    """

    __tablename__ = "application_access_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tenant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    application_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    access_type: Mapped[str] = mapped_column(String(20), nullable=False, default="access")
    reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    api_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = _created_at()


# =============================================================================
# Integration Keys & Audit Trail
# =============================================================================
#
# DESIGN DECISION: SHA-256 for key hashing (not bcrypt). API keys are
# 32-byte random tokens; their entropy makes a slow hash unnecessary and
# SHA-256 is cheap enough for per-request validation. Passwords, which are
# low-entropy, use bcrypt (services/auth.py).
# =============================================================================


class ApiKey(Base):
    """
    An integration key managed by platform admins.

    The raw key is only returned once at creation time.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # First 8 chars of the key, for identification in logs
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Null or empty = all scopes
    scopes: Mapped[list | None] = mapped_column(JSONB, nullable=True, default=list)

    # Null = settings.rate_limit_rpm
    rate_limit_rpm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    def __repr__(self) -> str:
        return (
            f"<ApiKey(id={self.id}, name='{self.name}', "
            f"prefix='{self.key_prefix}', active={self.is_active})>"
        )


class AuditLog(Base):
    """One row per API request (written by AuditLoggingMiddleware)."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    api_key_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True,
    )
    tenant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    client_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()


# Indexes for platform tables
user_tenant_idx = Index("idx_users_tenant", User.tenant_id)
access_user_idx = Index(
    "idx_user_app_access_tenant_user",
    UserApplicationAccess.tenant_id,
    UserApplicationAccess.user_id,
)
access_log_tenant_idx = Index(
    "idx_access_logs_tenant_created",
    ApplicationAccessLog.tenant_id,
    ApplicationAccessLog.created_at,
)
audit_log_created_idx = Index(
    "idx_audit_log_tenant_created",
    AuditLog.tenant_id,
    AuditLog.created_at,
)


# =============================================================================
# TQ — Tenant-Owned Tables
# =============================================================================
#
# Human-readable record numbers (SES000001, QUO000001, CLN000001) come from
# per-tenant sequences, so numbering restarts in each tenant schema.
# =============================================================================

session_number_seq = Sequence(
    "session_number_seq", schema=TENANT_SCHEMA, metadata=TenantBase.metadata,
)
quote_number_seq = Sequence(
    "quote_number_seq", schema=TENANT_SCHEMA, metadata=TenantBase.metadata,
)
clinical_note_number_seq = Sequence(
    "clinical_note_number_seq", schema=TENANT_SCHEMA, metadata=TenantBase.metadata,
)


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Patient(TenantBase):
    __tablename__ = "patient"

    id: Mapped[uuid.UUID] = _uuid_pk()
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Transcription(TenantBase):
    """Transcript text of a recorded session (produced outside this service)."""

    __tablename__ = "transcription"

    id: Mapped[uuid.UUID] = _uuid_pk()
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="completed",
    )
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(4, 3), nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class ClinicalSession(TenantBase):
    """A consultation: patient, transcription and status."""

    __tablename__ = "session"

    id: Mapped[uuid.UUID] = _uuid_pk()
    number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.patient.id", ondelete="SET NULL"),
        nullable=True,
    )
    transcription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.transcription.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_by_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    patient: Mapped["Patient | None"] = relationship("Patient", lazy="selectin")
    transcription: Mapped["Transcription | None"] = relationship(
        "Transcription", lazy="selectin",
    )


class Template(TenantBase):
    """HTML document template with `$variable$` placeholders."""

    __tablename__ = "template"

    id: Mapped[uuid.UUID] = _uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Item(TenantBase):
    """Billable catalog entry (procedure, product)."""

    __tablename__ = "item"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Quote(TenantBase):
    __tablename__ = "quote"

    id: Mapped[uuid.UUID] = _uuid_pk()
    number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.session.id", ondelete="RESTRICT"),
        nullable=False,
    )
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"),
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    items: Mapped[list["QuoteItem"]] = relationship(
        "QuoteItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class QuoteItem(TenantBase):
    """Quote line. Name and base price are copied from the catalog item."""

    __tablename__ = "quote_item"

    id: Mapped[uuid.UUID] = _uuid_pk()
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.quote.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.item.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0"),
    )
    final_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = _created_at()

    quote: Mapped["Quote"] = relationship("Quote", back_populates="items")


class ClinicalNote(TenantBase):
    __tablename__ = "clinical_note"

    id: Mapped[uuid.UUID] = _uuid_pk()
    number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.session.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class AIAgentConfiguration(TenantBase):
    """Per-tenant system message for the AI chat agent (single row)."""

    __tablename__ = "ai_agent_configuration"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    system_message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


session_status_idx = Index(
    "idx_session_status_created", ClinicalSession.status, ClinicalSession.created_at,
)
quote_session_idx = Index("idx_quote_session", Quote.session_id)
clinical_note_session_idx = Index("idx_clinical_note_session", ClinicalNote.session_id)
