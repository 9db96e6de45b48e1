# =============================================================================
# Accounts Service — Login, Token Refresh, Registration & Passwords
# =============================================================================
#
# Database-backed authentication flows built on the pure helpers in
# services/auth.py.
#
# Wrong e-mail and wrong password produce the same INVALID_CREDENTIALS
# error, so the API does not reveal which e-mails are registered. Account
# state (inactive, missing platform role) is only reported after the
# password has been verified.
#
# Token contents are computed fresh on every login and refresh: tenant
# timezone/locale and the user's application entitlements may change
# between two tokens.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import (
    PLATFORM_ROLE_INTERNAL_ADMIN,
    USER_ROLES,
    Application,
    Tenant,
    User,
    UserApplicationAccess,
    UserType,
)
from paas.errors import (
    AuthenticationError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from paas.services.auth import (
    TOKEN_TYPE_PLATFORM_ADMIN,
    TokenClaims,
    create_access_token,
    dummy_password_hash,
    hash_password,
    is_valid_email,
    locale_from_timezone,
    normalize_email,
    validate_password,
    verify_password,
)
from paas.services.licensing import (
    AccessRequestInfo,
    log_access_event,
    revoke_access,
    user_allowed_apps,
)
from paas.services.tenancy import TenantContext, schema_name_for

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    user: User
    token: str
    claims: TokenClaims


def _invalid_credentials() -> AuthenticationError:
    return AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")


def _password_matches(user: User | None, password: str) -> bool:
    if user is None:
        # Same bcrypt cost as a real check; timing must not reveal known e-mails
        verify_password(password, dummy_password_hash())
        return False
    return verify_password(password, user.password_hash)


def _ensure_active(user: User) -> None:
    if user.status != "active" or not user.active:
        raise PermissionDeniedError(
            "Account is inactive or suspended", code="ACCOUNT_INACTIVE",
        )


def _user_type_claim(user_type: UserType | None) -> dict | None:
    if user_type is None:
        return None
    return {
        "id": user_type.id,
        "slug": user_type.slug,
        "hierarchy_level": user_type.hierarchy_level,
    }


async def build_tenant_claims(
    db: AsyncSession, user: User, tenant: Tenant | TenantContext,
) -> TokenClaims:
    """Claims for a tenant-user token, with fresh entitlements."""
    return TokenClaims(
        user_id=user.id,
        email=user.email,
        name=user.full_name,
        role=user.role,
        tenant_id=tenant.id,
        schema=schema_name_for(tenant.id),
        timezone=tenant.timezone,
        locale=locale_from_timezone(tenant.timezone),
        allowed_apps=await user_allowed_apps(db, user.id, tenant.id),
        user_type=_user_type_claim(user.user_type),
        platform_role=user.platform_role,
    )


async def login(
    db: AsyncSession, tenant: TenantContext, email: str, password: str,
) -> AuthResult:
    """
    Authenticate a user of `tenant`.

    Raises:
        AuthenticationError: INVALID_CREDENTIALS
        PermissionDeniedError: ACCOUNT_INACTIVE
    """
    result = await db.execute(
        select(User).where(
            User.email == normalize_email(email),
            User.tenant_id == tenant.id,
        )
    )
    user = result.scalar_one_or_none()
    if not _password_matches(user, password):
        raise _invalid_credentials()
    _ensure_active(user)

    user.last_login = datetime.now(UTC)
    claims = await build_tenant_claims(db, user, tenant)
    logger.info("User %d logged in to tenant %d", user.id, tenant.id)
    return AuthResult(user=user, token=create_access_token(claims), claims=claims)


async def platform_login(
    db: AsyncSession,
    email: str,
    password: str,
    request_info: AccessRequestInfo | None = None,
) -> AuthResult:
    """
    Authenticate a platform staff member (`platform_role = internal_admin`).

    Every attempt is written to the access log with access_type
    "platform_login".

    Raises:
        AuthenticationError: INVALID_CREDENTIALS
        PermissionDeniedError: ACCOUNT_INACTIVE, INSUFFICIENT_PLATFORM_ROLE
    """
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    user = result.scalar_one_or_none()

    async def reject(reason: str, exc: Exception):
        log_access_event(
            db,
            decision="denied",
            access_type="platform_login",
            user_id=user.id if user else None,
            tenant_id=user.tenant_id if user else None,
            application_id=None,
            reason=reason,
            request_info=request_info,
        )
        await db.commit()
        logger.warning("Platform login rejected for %s: %s", normalize_email(email), reason)
        raise exc

    if not _password_matches(user, password):
        await reject("invalid_credentials", _invalid_credentials())
    if user.status != "active" or not user.active:
        await reject("account_inactive", PermissionDeniedError(
            "Account is inactive or suspended", code="ACCOUNT_INACTIVE",
        ))
    if user.platform_role != PLATFORM_ROLE_INTERNAL_ADMIN:
        await reject("insufficient_platform_role", PermissionDeniedError(
            "internal_admin platform role required",
            code="INSUFFICIENT_PLATFORM_ROLE",
        ))

    user.last_login = datetime.now(UTC)
    log_access_event(
        db,
        decision="granted",
        access_type="platform_login",
        user_id=user.id,
        tenant_id=user.tenant_id,
        application_id=None,
        request_info=request_info,
    )
    claims = TokenClaims(
        user_id=user.id,
        email=user.email,
        name=user.full_name,
        type=TOKEN_TYPE_PLATFORM_ADMIN,
        platform_role=user.platform_role,
    )
    logger.info("Platform admin %d logged in", user.id)
    return AuthResult(user=user, token=create_access_token(claims), claims=claims)


async def refresh(db: AsyncSession, claims: TokenClaims) -> AuthResult:
    """
    Issue a new token for the holder of a valid one, with current
    entitlements and tenant timezone.

    Raises:
        AuthenticationError: USER_NOT_FOUND
        PermissionDeniedError: ACCOUNT_INACTIVE
    """
    user = await db.get(User, claims.user_id)
    if user is None:
        raise AuthenticationError("User no longer exists", code="USER_NOT_FOUND")
    _ensure_active(user)

    if claims.is_platform_admin:
        if user.platform_role != PLATFORM_ROLE_INTERNAL_ADMIN:
            raise PermissionDeniedError(
                "internal_admin platform role required",
                code="INSUFFICIENT_PLATFORM_ROLE",
            )
        new_claims = TokenClaims(
            user_id=user.id,
            email=user.email,
            name=user.full_name,
            type=TOKEN_TYPE_PLATFORM_ADMIN,
            platform_role=user.platform_role,
        )
    else:
        tenant = await db.get(Tenant, user.tenant_id)
        if tenant is None or not tenant.active:
            raise AuthenticationError("Tenant no longer active", code="TENANT_NOT_FOUND")
        new_claims = await build_tenant_claims(db, user, tenant)

    return AuthResult(user=user, token=create_access_token(new_claims), claims=new_claims)


def _check_new_password(password: str) -> None:
    errors = validate_password(password)
    if errors:
        raise BusinessRuleError(
            "Password does not meet the policy",
            code="WEAK_PASSWORD",
            details={"errors": errors},
        )


async def change_password(
    db: AsyncSession, user_id: int, current_password: str, new_password: str,
) -> User:
    """
    Raises:
        NotFoundError: USER_NOT_FOUND
        AuthenticationError: INVALID_CREDENTIALS (wrong current password)
        BusinessRuleError: WEAK_PASSWORD
    """
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect", code="INVALID_CREDENTIALS")
    _check_new_password(new_password)
    user.password_hash = hash_password(new_password)
    logger.info("User %d changed password", user.id)
    return user


async def reset_password(
    db: AsyncSession, tenant_id: int, user_id: int, new_password: str,
) -> User:
    """Administrative password reset for a user of `tenant_id`."""
    user = await db.get(User, user_id)
    if user is None or user.tenant_id != tenant_id:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    _check_new_password(new_password)
    user.password_hash = hash_password(new_password)
    logger.info("Password reset for user %d in tenant %d", user.id, tenant_id)
    return user


async def register(
    db: AsyncSession,
    tenant_id: int,
    email: str,
    password: str,
    first_name: str,
    last_name: str | None = None,
    role: str = "operations",
    user_type_id: int | None = None,
) -> User:
    """
    Create a user in a tenant.

    Raises:
        BusinessRuleError: INVALID_EMAIL, WEAK_PASSWORD, INVALID_NAME,
            INVALID_ROLE
        ConflictError: EMAIL_EXISTS
    """
    normalized = normalize_email(email)
    if not is_valid_email(normalized):
        raise BusinessRuleError("Invalid email format", code="INVALID_EMAIL")
    _check_new_password(password)
    if not first_name or len(first_name.strip()) < 2:
        raise BusinessRuleError(
            "First name must be at least 2 characters long", code="INVALID_NAME",
        )
    if role not in USER_ROLES:
        raise BusinessRuleError(
            f"Invalid role '{role}'",
            code="INVALID_ROLE",
            details={"allowed": list(USER_ROLES)},
        )

    existing = await db.execute(select(User.id).where(User.email == normalized))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(
            f"A user with email '{normalized}' already exists", code="EMAIL_EXISTS",
        )

    if user_type_id is None:
        type_result = await db.execute(select(UserType.id).where(UserType.slug == role))
        user_type_id = type_result.scalar_one_or_none()

    user = User(
        tenant_id=tenant_id,
        email=normalized,
        password_hash=hash_password(password),
        first_name=first_name.strip(),
        last_name=(last_name or "").strip() or None,
        role=role,
        status="active",
        user_type_id=user_type_id,
        active=True,
    )
    db.add(user)
    await db.flush()
    logger.info("Registered user %d in tenant %d", user.id, tenant_id)
    return user


# ---------------------------------------------------------------------------
# Tenant User Administration
# ---------------------------------------------------------------------------


async def list_users(
    db: AsyncSession,
    tenant_id: int,
    q: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[User], int]:
    conditions = [User.tenant_id == tenant_id]
    if q:
        pattern = f"%{q.strip()}%"
        conditions.append(or_(
            User.email.ilike(pattern),
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
        ))
    if status:
        conditions.append(User.status == status)

    total = await db.scalar(select(func.count(User.id)).where(*conditions)) or 0
    result = await db.execute(
        select(User)
        .where(*conditions)
        .order_by(User.first_name, User.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_user(db: AsyncSession, tenant_id: int, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None or user.tenant_id != tenant_id:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


async def update_user(
    db: AsyncSession,
    tenant_id: int,
    user_id: int,
    fields: dict,
    updated_by: int | None = None,
    request_info: AccessRequestInfo | None = None,
) -> User:
    """
    Update name, role, status or user type of a tenant user.

    Any status other than "active" revokes every seat the user holds.
    """
    user = await get_user(db, tenant_id, user_id)
    if fields.get("first_name") is not None:
        if len(fields["first_name"].strip()) < 2:
            raise BusinessRuleError(
                "First name must be at least 2 characters long", code="INVALID_NAME",
            )
        user.first_name = fields["first_name"].strip()
    if "last_name" in fields:
        user.last_name = (fields["last_name"] or "").strip() or None
    if fields.get("role") is not None:
        user.role = fields["role"]
    if fields.get("status") is not None:
        if fields["status"] != "active":
            await _revoke_all_seats(db, tenant_id, user_id, updated_by, request_info)
        user.status = fields["status"]
        user.active = fields["status"] == "active"
    if "user_type_id" in fields:
        user.user_type_id = fields["user_type_id"]
    await db.flush()
    return user


async def deactivate_user(
    db: AsyncSession,
    tenant_id: int,
    user_id: int,
    deactivated_by: int | None = None,
    request_info: AccessRequestInfo | None = None,
) -> User:
    """
    Soft-delete a user. Their application seats are revoked so the
    license counters only count active users.
    """
    user = await get_user(db, tenant_id, user_id)
    await _revoke_all_seats(db, tenant_id, user_id, deactivated_by, request_info)

    user.status = "inactive"
    user.active = False
    await db.flush()
    logger.info("Deactivated user %d in tenant %d", user_id, tenant_id)
    return user


async def _revoke_all_seats(
    db: AsyncSession,
    tenant_id: int,
    user_id: int,
    revoked_by: int | None,
    request_info: AccessRequestInfo | None,
) -> None:
    result = await db.execute(
        select(Application.slug)
        .join(UserApplicationAccess, UserApplicationAccess.application_id == Application.id)
        .where(
            UserApplicationAccess.user_id == user_id,
            UserApplicationAccess.tenant_id == tenant_id,
            UserApplicationAccess.active.is_(True),
        )
    )
    for slug in result.scalars().all():
        await revoke_access(
            db, tenant_id, user_id, slug,
            revoked_by=revoked_by, request_info=request_info,
        )
