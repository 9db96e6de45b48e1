# =============================================================================
# Licensing Service — Licenses, Seats & Application Access
# =============================================================================
#
# A tenant licenses an application (tenant_applications row). Each user
# granted access to it consumes one seat:
#
#   user_limit   NULL = unlimited
#   seats_used   number of active user_application_access rows
#
#   INVARIANT: seats_used <= user_limit (when user_limit is set)
#
# CONCURRENCY:
# Every operation that reads and then changes `seats_used` first loads the
# license row with SELECT ... FOR UPDATE. The lock is held by the caller's
# transaction (the request-scoped session from get_async_session), so two
# concurrent grants for the last seat serialize: the second one sees the
# incremented counter and fails with NO_SEATS_AVAILABLE.
#
# All functions take the caller's AsyncSession and never commit, except
# check_app_access, which commits its denial log row before raising so the
# record survives the request's rollback.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import (
    APP_ROLES,
    Application,
    ApplicationAccessLog,
    ApplicationPricing,
    Tenant,
    TenantApplication,
    User,
    UserApplicationAccess,
    UserType,
)
from paas.errors import (
    BadRequestError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from paas.services.auth import TokenClaims
from paas.services.tenancy import TenantContext

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class SeatChange:
    """Outcome of a grant or revoke."""

    access: UserApplicationAccess
    seats_used: int
    user_limit: int | None
    seats_remaining: int | None  # None = unlimited
    seats_freed: int = 0


@dataclass
class AccessRequestInfo:
    """Request metadata recorded with access decisions."""

    api_path: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass
class AppAccessGrant:
    """Result of a successful check_app_access."""

    application_id: int
    application_slug: str
    role_in_app: str
    source: str  # "jwt" or "database"
    license: TenantApplication


def _now() -> datetime:
    return datetime.now(UTC)


def _remaining(license_: TenantApplication) -> int | None:
    if license_.user_limit is None:
        return None
    return license_.user_limit - license_.seats_used


def _is_expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is not None and expires_at <= now


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_application_by_slug(session: AsyncSession, slug: str) -> Application:
    result = await session.execute(select(Application).where(Application.slug == slug))
    application = result.scalar_one_or_none()
    if application is None:
        raise NotFoundError(
            f"Application '{slug}' not found",
            code="APPLICATION_NOT_FOUND",
            details={"application_slug": slug},
        )
    return application


async def _get_tenant(session: AsyncSession, tenant_id: int) -> Tenant:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(
            f"Tenant {tenant_id} not found",
            code="TENANT_NOT_FOUND",
            details={"tenant_id": tenant_id},
        )
    return tenant


async def _lock_license(
    session: AsyncSession, tenant_id: int, application_id: int,
) -> TenantApplication | None:
    """Load the license row and hold a row lock until the transaction ends."""
    stmt = (
        select(TenantApplication)
        .where(
            TenantApplication.tenant_id == tenant_id,
            TenantApplication.application_id == application_id,
        )
        .with_for_update()
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _get_access(
    session: AsyncSession, tenant_id: int, user_id: int, application_id: int,
) -> UserApplicationAccess | None:
    stmt = select(UserApplicationAccess).where(
        UserApplicationAccess.tenant_id == tenant_id,
        UserApplicationAccess.user_id == user_id,
        UserApplicationAccess.application_id == application_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def current_pricing(
    session: AsyncSession,
    application_id: int,
    user_type_id: int,
    now: datetime | None = None,
) -> ApplicationPricing | None:
    """The active price row whose validity window contains `now`."""
    now = now or _now()
    stmt = (
        select(ApplicationPricing)
        .where(
            ApplicationPricing.application_id == application_id,
            ApplicationPricing.user_type_id == user_type_id,
            ApplicationPricing.active.is_(True),
            ApplicationPricing.valid_from <= now,
            or_(ApplicationPricing.valid_to.is_(None), ApplicationPricing.valid_to > now),
        )
        .order_by(ApplicationPricing.valid_from.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _resolve_user_type_id(session: AsyncSession, user: User) -> int | None:
    """The user's explicit user type, else the type whose slug matches the role."""
    if user.user_type_id is not None:
        return user.user_type_id
    result = await session.execute(select(UserType.id).where(UserType.slug == user.role))
    return result.scalar_one_or_none()


def log_access_event(
    session: AsyncSession,
    *,
    decision: str,
    access_type: str,
    user_id: int | None,
    tenant_id: int | None,
    application_id: int | None,
    reason: str | None = None,
    request_info: AccessRequestInfo | None = None,
) -> ApplicationAccessLog:
    """Stage an access log row on the session (flushed with the transaction)."""
    info = request_info or AccessRequestInfo()
    entry = ApplicationAccessLog(
        user_id=user_id,
        tenant_id=tenant_id,
        application_id=application_id,
        decision=decision,
        access_type=access_type,
        reason=reason,
        api_path=info.api_path,
        user_agent=info.user_agent,
        ip_address=info.ip_address,
    )
    session.add(entry)
    return entry


# ---------------------------------------------------------------------------
# License Lifecycle
# ---------------------------------------------------------------------------


async def activate_license(
    session: AsyncSession,
    tenant_id: int,
    app_slug: str,
    user_limit: int | None = None,
    expires_at: datetime | None = None,
    status: str = "active",
) -> TenantApplication:
    """
    License an application for a tenant.

    An existing non-active license (suspended, expired, revoked) is
    reactivated with the new terms and keeps its seats_used.

    Raises:
        NotFoundError: TENANT_NOT_FOUND, APPLICATION_NOT_FOUND
        BadRequestError: APPLICATION_INACTIVE
        BusinessRuleError: INVALID_USER_LIMIT (user_limit < 1)
        ConflictError: LICENSE_ALREADY_ACTIVE
    """
    await _get_tenant(session, tenant_id)
    application = await get_application_by_slug(session, app_slug)

    if application.status != "active" or not application.active:
        raise BadRequestError(
            f"Application '{app_slug}' is not active and cannot be licensed",
            code="APPLICATION_INACTIVE",
        )

    if user_limit is not None and user_limit < 1:
        raise BusinessRuleError(
            "User limit must be greater than 0",
            code="INVALID_USER_LIMIT",
            details={"user_limit": user_limit},
        )

    license_ = await _lock_license(session, tenant_id, application.id)
    if license_ is not None and license_.status == "active" and license_.active:
        raise ConflictError(
            f"License for '{app_slug}' is already active for this tenant",
            code="LICENSE_ALREADY_ACTIVE",
        )

    if license_ is not None:
        license_.status = status
        license_.active = True
        license_.user_limit = user_limit
        license_.expires_at = expires_at
        license_.activated_at = _now()
        logger.info(
            "Reactivated license %s for tenant %d (limit=%s)",
            app_slug, tenant_id, user_limit,
        )
    else:
        license_ = TenantApplication(
            tenant_id=tenant_id,
            application_id=application.id,
            status=status,
            user_limit=user_limit,
            expires_at=expires_at,
            seats_used=0,
            active=True,
            activated_at=_now(),
        )
        session.add(license_)
        logger.info(
            "Activated license %s for tenant %d (limit=%s)",
            app_slug, tenant_id, user_limit,
        )

    license_.application = application
    await session.flush()
    return license_


async def adjust_license(
    session: AsyncSession,
    tenant_id: int,
    app_slug: str,
    user_limit: int | None = _UNSET,
    expires_at: datetime | None = _UNSET,
    status: str | None = _UNSET,
) -> TenantApplication:
    """
    Change a license's seat limit, expiry or status.

    Passing `user_limit=None` makes the license unlimited; omitting an
    argument leaves the field unchanged.

    Raises:
        BadRequestError: NO_FIELDS
        NotFoundError: APPLICATION_NOT_FOUND, LICENSE_NOT_FOUND
        BusinessRuleError: INVALID_USER_LIMIT, TOTAL_LT_USED
    """
    if user_limit is _UNSET and expires_at is _UNSET and status is _UNSET:
        raise BadRequestError(
            "At least one of user_limit, expires_at or status is required",
            code="NO_FIELDS",
        )

    application = await get_application_by_slug(session, app_slug)
    license_ = await _lock_license(session, tenant_id, application.id)
    if license_ is None:
        raise NotFoundError(
            f"No license for '{app_slug}' on tenant {tenant_id}",
            code="LICENSE_NOT_FOUND",
        )

    if user_limit is not _UNSET and user_limit is not None:
        if user_limit < 0:
            raise BusinessRuleError(
                "User limit cannot be negative",
                code="INVALID_USER_LIMIT",
                details={"user_limit": user_limit},
            )
        if user_limit < license_.seats_used:
            raise BusinessRuleError(
                f"Cannot set user limit to {user_limit}: "
                f"{license_.seats_used} seats are in use",
                code="TOTAL_LT_USED",
                details={"user_limit": user_limit, "seats_used": license_.seats_used},
            )

    if user_limit is not _UNSET:
        license_.user_limit = user_limit
    if expires_at is not _UNSET:
        license_.expires_at = expires_at
    if status is not _UNSET and status is not None:
        license_.status = status

    license_.application = application
    await session.flush()
    logger.info(
        "Adjusted license %s for tenant %d: limit=%s used=%d status=%s",
        app_slug, tenant_id, license_.user_limit, license_.seats_used, license_.status,
    )
    return license_


# ---------------------------------------------------------------------------
# Seats
# ---------------------------------------------------------------------------


async def grant_access(
    session: AsyncSession,
    tenant_id: int,
    user_id: int,
    app_slug: str,
    role_in_app: str | None = None,
    granted_by: int | None = None,
    request_info: AccessRequestInfo | None = None,
) -> SeatChange:
    """
    Give a user one seat of a tenant's license.

    Raises:
        NotFoundError: TENANT_NOT_FOUND, APPLICATION_NOT_FOUND
        BusinessRuleError: USER_NOT_IN_TENANT, LICENSE_INACTIVE,
            NO_SEATS_AVAILABLE, INVALID_ROLE_IN_APP, PRICING_NOT_CONFIGURED
        ConflictError: ALREADY_GRANTED
    """
    await _get_tenant(session, tenant_id)
    user = await session.get(User, user_id)
    if user is None or user.tenant_id != tenant_id:
        raise BusinessRuleError(
            f"User {user_id} does not belong to tenant {tenant_id}",
            code="USER_NOT_IN_TENANT",
            details={"user_id": user_id, "tenant_id": tenant_id},
        )

    application = await get_application_by_slug(session, app_slug)

    now = _now()
    license_ = await _lock_license(session, tenant_id, application.id)
    if (
        license_ is None
        or license_.status != "active"
        or not license_.active
        or _is_expired(license_.expires_at, now)
    ):
        raise BusinessRuleError(
            f"License for '{app_slug}' is not active for this tenant",
            code="LICENSE_INACTIVE",
            details={
                "application_slug": app_slug,
                "status": license_.status if license_ is not None else "not_found",
            },
        )

    remaining = _remaining(license_)
    if remaining is not None and remaining <= 0:
        raise BusinessRuleError(
            f"No seats available for '{app_slug}'. "
            f"Currently using {license_.seats_used}/{license_.user_limit} seats.",
            code="NO_SEATS_AVAILABLE",
            details={
                "seats_used": license_.seats_used,
                "user_limit": license_.user_limit,
                "seats_available": 0,
            },
        )

    access = await _get_access(session, tenant_id, user_id, application.id)
    if access is not None and access.active:
        raise ConflictError(
            f"User already has access to '{app_slug}'",
            code="ALREADY_GRANTED",
            details={"user_id": user_id, "application_slug": app_slug},
        )

    role = role_in_app or user.role or "operations"
    if role not in APP_ROLES:
        raise BusinessRuleError(
            f"Invalid role_in_app '{role}'",
            code="INVALID_ROLE_IN_APP",
            details={"allowed": list(APP_ROLES)},
        )

    user_type_id = await _resolve_user_type_id(session, user)
    pricing = None
    if user_type_id is not None:
        pricing = await current_pricing(session, application.id, user_type_id, now)
    if pricing is None:
        raise BusinessRuleError(
            f"No pricing configured for '{app_slug}' and user type of user {user_id}",
            code="PRICING_NOT_CONFIGURED",
            details={"application_slug": app_slug, "user_type_id": user_type_id},
        )

    if access is None:
        access = UserApplicationAccess(
            tenant_id=tenant_id,
            user_id=user_id,
            application_id=application.id,
        )
        session.add(access)

    access.active = True
    access.role_in_app = role
    access.granted_at = now
    access.granted_by_id = granted_by
    access.expires_at = None
    access.price_snapshot = pricing.price
    access.currency_snapshot = pricing.currency
    access.billing_cycle_snapshot = pricing.billing_cycle
    access.user_type_id_snapshot = user_type_id

    license_.seats_used += 1

    log_access_event(
        session,
        decision="granted",
        access_type="granted",
        user_id=user_id,
        tenant_id=tenant_id,
        application_id=application.id,
        reason=f"granted_by:{granted_by}" if granted_by is not None else None,
        request_info=request_info,
    )
    await session.flush()

    logger.info(
        "Granted %s to user %d in tenant %d (seats %d/%s)",
        app_slug, user_id, tenant_id, license_.seats_used, license_.user_limit,
    )
    return SeatChange(
        access=access,
        seats_used=license_.seats_used,
        user_limit=license_.user_limit,
        seats_remaining=_remaining(license_),
    )


async def revoke_access(
    session: AsyncSession,
    tenant_id: int,
    user_id: int,
    app_slug: str,
    revoked_by: int | None = None,
    request_info: AccessRequestInfo | None = None,
) -> SeatChange:
    """
    Take a user's seat back. seats_used never drops below zero.

    Raises:
        NotFoundError: APPLICATION_NOT_FOUND, ACCESS_NOT_FOUND
    """
    application = await get_application_by_slug(session, app_slug)
    license_ = await _lock_license(session, tenant_id, application.id)

    access = await _get_access(session, tenant_id, user_id, application.id)
    if access is None or not access.active:
        raise NotFoundError(
            f"User does not have access to '{app_slug}'",
            code="ACCESS_NOT_FOUND",
            details={"user_id": user_id, "application_slug": app_slug},
        )

    access.active = False
    seats_used = 0
    user_limit = None
    remaining = None
    if license_ is not None:
        license_.seats_used = max(license_.seats_used - 1, 0)
        seats_used = license_.seats_used
        user_limit = license_.user_limit
        remaining = _remaining(license_)

    log_access_event(
        session,
        decision="granted",
        access_type="revoked",
        user_id=user_id,
        tenant_id=tenant_id,
        application_id=application.id,
        reason=f"revoked_by:{revoked_by}" if revoked_by is not None else None,
        request_info=request_info,
    )
    await session.flush()

    logger.info(
        "Revoked %s from user %d in tenant %d (seats %d/%s)",
        app_slug, user_id, tenant_id, seats_used, user_limit,
    )
    return SeatChange(
        access=access,
        seats_used=seats_used,
        user_limit=user_limit,
        seats_remaining=remaining,
        seats_freed=1,
    )


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


async def list_license_users(
    session: AsyncSession,
    tenant_id: int,
    app_slug: str,
    q: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    """
    All users of a tenant with their access state for one application,
    plus the license usage.
    """
    await _get_tenant(session, tenant_id)
    application = await get_application_by_slug(session, app_slug)

    license_result = await session.execute(
        select(TenantApplication).where(
            TenantApplication.tenant_id == tenant_id,
            TenantApplication.application_id == application.id,
        )
    )
    license_ = license_result.scalar_one_or_none()

    conditions = [User.tenant_id == tenant_id]
    if q:
        pattern = f"%{q.strip()}%"
        conditions.append(or_(
            User.email.ilike(pattern),
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
        ))

    total = await session.scalar(select(func.count(User.id)).where(*conditions)) or 0

    stmt = (
        select(User, UserApplicationAccess)
        .outerjoin(
            UserApplicationAccess,
            (UserApplicationAccess.user_id == User.id)
            & (UserApplicationAccess.application_id == application.id)
            & (UserApplicationAccess.tenant_id == tenant_id),
        )
        .where(*conditions)
        .order_by(User.first_name, User.id)
        .limit(limit)
        .offset(offset)
    )
    rows = (await session.execute(stmt)).all()

    items = []
    for user, access in rows:
        granted = access is not None and access.active
        items.append({
            "id": user.id,
            "name": user.full_name,
            "email": user.email,
            "role": user.role,
            "status": user.status,
            "granted": granted,
            "access_id": access.id if granted else None,
            "role_in_app": access.role_in_app if granted else None,
            "granted_at": access.granted_at if granted else None,
        })

    usage = {"used": 0, "total": None, "available": None}
    if license_ is not None:
        usage = {
            "used": license_.seats_used,
            "total": license_.user_limit,
            "available": _remaining(license_),
        }

    return {
        "usage": usage,
        "items": items,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(items) < total,
        },
    }


async def tenant_licenses(
    session: AsyncSession, tenant_id: int,
) -> list[TenantApplication]:
    """All licenses of a tenant, with their applications loaded."""
    stmt = (
        select(TenantApplication)
        .where(TenantApplication.tenant_id == tenant_id)
        .order_by(TenantApplication.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def user_allowed_apps(
    session: AsyncSession, user_id: int, tenant_id: int,
) -> list[str]:
    """
    Application slugs to embed in a user's token.

    The user's own active, unexpired accesses on active, unexpired licenses;
    when there are none, every application the tenant has an active license
    for.
    """
    now = _now()
    license_ok = (
        (TenantApplication.status == "active")
        & TenantApplication.active.is_(True)
        & or_(TenantApplication.expires_at.is_(None), TenantApplication.expires_at > now)
    )

    stmt = (
        select(Application.slug)
        .join(UserApplicationAccess, UserApplicationAccess.application_id == Application.id)
        .join(
            TenantApplication,
            (TenantApplication.application_id == Application.id)
            & (TenantApplication.tenant_id == UserApplicationAccess.tenant_id),
        )
        .where(
            UserApplicationAccess.user_id == user_id,
            UserApplicationAccess.tenant_id == tenant_id,
            UserApplicationAccess.active.is_(True),
            or_(
                UserApplicationAccess.expires_at.is_(None),
                UserApplicationAccess.expires_at > now,
            ),
            license_ok,
        )
        .order_by(Application.slug)
    )
    slugs = list((await session.execute(stmt)).scalars().all())
    if slugs:
        return slugs

    fallback = (
        select(Application.slug)
        .join(TenantApplication, TenantApplication.application_id == Application.id)
        .where(TenantApplication.tenant_id == tenant_id, license_ok)
        .order_by(Application.slug)
    )
    return list((await session.execute(fallback)).scalars().all())


# ---------------------------------------------------------------------------
# Runtime Access Check
# ---------------------------------------------------------------------------


def role_satisfies(current_role: str | None, required_role: str) -> bool:
    """
    Application role rule: `admin` needs admin; `manager` and `operations`
    accept either of the two; any other requirement must match exactly.
    """
    if required_role == "admin":
        return current_role == "admin"
    if required_role in ("manager", "operations"):
        return current_role in ("manager", "operations")
    return current_role == required_role


async def check_app_access(
    session: AsyncSession,
    claims: TokenClaims,
    tenant: TenantContext,
    app_slug: str,
    required_role: str | None = None,
    request_info: AccessRequestInfo | None = None,
) -> AppAccessGrant:
    """
    Decide whether the token holder may use `app_slug` in `tenant`.

    Layers: application exists → tenant license active → user access
    (token allowed_apps, then database) → role requirement. Every decision
    is written to the access log.

    Raises:
        NotFoundError: APPLICATION_NOT_FOUND
        PermissionDeniedError: NO_TENANT_LICENSE, NO_USER_ACCESS,
            ROLE_INSUFFICIENT
    """

    async def deny(application_id: int | None, reason: str, exc: Exception):
        log_access_event(
            session,
            decision="denied",
            access_type="access",
            user_id=claims.user_id,
            tenant_id=tenant.id,
            application_id=application_id,
            reason=reason,
            request_info=request_info,
        )
        await session.commit()
        logger.warning(
            "Access to %s denied for user %d in tenant %d: %s",
            app_slug, claims.user_id, tenant.id, reason,
        )
        raise exc

    result = await session.execute(select(Application).where(Application.slug == app_slug))
    application = result.scalar_one_or_none()
    if application is None:
        await deny(None, "application_not_found", NotFoundError(
            f"Application not found: {app_slug}", code="APPLICATION_NOT_FOUND",
        ))

    now = _now()
    license_result = await session.execute(
        select(TenantApplication).where(
            TenantApplication.tenant_id == tenant.id,
            TenantApplication.application_id == application.id,
        )
    )
    license_ = license_result.scalar_one_or_none()
    if (
        license_ is None
        or license_.status != "active"
        or not license_.active
        or _is_expired(license_.expires_at, now)
    ):
        await deny(application.id, "no_tenant_license", PermissionDeniedError(
            f"Tenant does not have an active license for {app_slug}",
            code="NO_TENANT_LICENSE",
        ))

    access = await _get_access(session, tenant.id, claims.user_id, application.id)
    db_access_ok = (
        access is not None
        and access.active
        and not _is_expired(access.expires_at, now)
    )

    if app_slug in claims.allowed_apps:
        source = "jwt"
    elif db_access_ok:
        source = "database"
    else:
        await deny(application.id, "no_user_access", PermissionDeniedError(
            f"User access denied for {app_slug}",
            code="NO_USER_ACCESS",
        ))

    current_role = access.role_in_app if db_access_ok else claims.role
    if required_role and not role_satisfies(current_role, required_role):
        await deny(
            application.id,
            f"role_insufficient_{required_role}",
            PermissionDeniedError(
                f"Role '{required_role}' required for {app_slug}",
                code="ROLE_INSUFFICIENT",
            ),
        )

    log_access_event(
        session,
        decision="granted",
        access_type="access",
        user_id=claims.user_id,
        tenant_id=tenant.id,
        application_id=application.id,
        request_info=request_info,
    )
    return AppAccessGrant(
        application_id=application.id,
        application_slug=app_slug,
        role_in_app=access.role_in_app if db_access_ok else "user",
        source=source,
        license=license_,
    )


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


def expire_licenses_stmt(now: datetime):
    """UPDATE marking active licenses past their expiry as expired."""
    return (
        update(TenantApplication)
        .where(
            TenantApplication.status == "active",
            TenantApplication.expires_at.is_not(None),
            TenantApplication.expires_at < now,
        )
        .values(status="expired", updated_at=now)
    )


async def expire_licenses(session: AsyncSession, now: datetime | None = None) -> int:
    """Mark expired licenses; returns the number of rows changed."""
    result = await session.execute(expire_licenses_stmt(now or _now()))
    count = result.rowcount or 0
    if count:
        logger.info("Expired %d license(s)", count)
    return count
