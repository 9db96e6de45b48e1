# =============================================================================
# Unit Tests — Licenses, Seats & Application Access
# =============================================================================
#
# The licensing service only talks to the database through the AsyncSession
# it is given, so each test scripts the session: `execute` returns one
# canned result per query, in the order the service issues them.
#
# Test groups:
#   1. activate_license / adjust_license
#   2. grant_access (seat accounting, price snapshot, refusals)
#   3. revoke_access
#   4. check_app_access (layers, access log, role rule)
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from paas.db.models import Application, ApplicationAccessLog, Tenant, UserApplicationAccess
from paas.errors import (
    BadRequestError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from paas.services import licensing
from paas.services.auth import TokenClaims
from paas.services.tenancy import TenantContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@dataclass
class FakeLicense:
    """Stand-in for a TenantApplication row."""

    id: int = 10
    tenant_id: int = 3
    application_id: int = 1
    status: str = "active"
    active: bool = True
    user_limit: int | None = 5
    seats_used: int = 0
    expires_at: datetime | None = None
    activated_at: datetime | None = None
    application: object = None


@dataclass
class FakeUser:
    id: int = 7
    tenant_id: int = 3
    role: str = "operations"
    user_type_id: int | None = 1


@dataclass
class FakePricing:
    price: Decimal = Decimal("35.00")
    currency: str = "BRL"
    billing_cycle: str = "monthly"


@dataclass
class FakeAccess:
    id: int = 20
    active: bool = True
    role_in_app: str = "manager"
    expires_at: datetime | None = None


def _app(**overrides) -> Application:
    values = dict(id=1, name="TQ", slug="tq", status="active", active=True)
    values.update(overrides)
    return Application(**values)


def _result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _session(*results, get=None) -> AsyncMock:
    """AsyncSession double: `execute` yields `results` in order."""
    session = AsyncMock()
    session.add = MagicMock()
    session.execute.side_effect = [_result(r) for r in results]
    session.get.return_value = get
    return session


def _added(session: AsyncMock, cls) -> list:
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], cls)]


def _tenant() -> TenantContext:
    return TenantContext(
        id=3, slug="clinic", schema="tenant_3", name="Clinic", status="active",
        timezone="America/Sao_Paulo", source="header", input_format="numeric",
    )


def _claims(**overrides) -> TokenClaims:
    values = dict(user_id=7, email="ana@clinic.com", role="operations", tenant_id=3)
    values.update(overrides)
    return TokenClaims(**values)


# ---------------------------------------------------------------------------
# 1. License Lifecycle
# ---------------------------------------------------------------------------


class TestActivateLicense:
    def test_creates_new_license(self):
        session = _session(_app(), None, get=object())
        license_ = asyncio.run(licensing.activate_license(session, 3, "tq", user_limit=5))

        assert license_.seats_used == 0
        assert license_.user_limit == 5
        assert license_.status == "active"
        assert license_.application.slug == "tq"
        session.add.assert_called_once_with(license_)
        session.flush.assert_awaited()

    def test_reactivates_suspended_license_keeping_seats(self):
        existing = FakeLicense(status="suspended", seats_used=3, user_limit=4)
        session = _session(_app(), existing, get=object())

        license_ = asyncio.run(licensing.activate_license(session, 3, "tq", user_limit=10))

        assert license_ is existing
        assert existing.status == "active"
        assert existing.seats_used == 3
        assert existing.user_limit == 10
        session.add.assert_not_called()

    def test_already_active_conflicts(self):
        session = _session(_app(), FakeLicense(), get=object())
        with pytest.raises(ConflictError) as exc_info:
            asyncio.run(licensing.activate_license(session, 3, "tq"))
        assert exc_info.value.code == "LICENSE_ALREADY_ACTIVE"

    def test_zero_user_limit_rejected(self):
        session = _session(_app(), get=object())
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.activate_license(session, 3, "tq", user_limit=0))
        assert exc_info.value.code == "INVALID_USER_LIMIT"

    def test_inactive_application_rejected(self):
        session = _session(_app(status="deprecated", active=False), get=object())
        with pytest.raises(BadRequestError) as exc_info:
            asyncio.run(licensing.activate_license(session, 3, "tq"))
        assert exc_info.value.code == "APPLICATION_INACTIVE"

    def test_unknown_tenant(self):
        session = _session(get=None)
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(licensing.activate_license(session, 99, "tq"))
        assert exc_info.value.code == "TENANT_NOT_FOUND"


class TestAdjustLicense:
    def test_requires_a_field(self):
        with pytest.raises(BadRequestError) as exc_info:
            asyncio.run(licensing.adjust_license(AsyncMock(), 3, "tq"))
        assert exc_info.value.code == "NO_FIELDS"

    def test_limit_below_used_rejected(self):
        session = _session(_app(), FakeLicense(user_limit=10, seats_used=6))
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.adjust_license(session, 3, "tq", user_limit=5))
        assert exc_info.value.code == "TOTAL_LT_USED"
        assert exc_info.value.details["seats_used"] == 6

    def test_limit_equal_to_used_allowed(self):
        license_ = FakeLicense(user_limit=10, seats_used=6)
        session = _session(_app(), license_)
        asyncio.run(licensing.adjust_license(session, 3, "tq", user_limit=6))
        assert license_.user_limit == 6

    def test_none_makes_unlimited_and_leaves_expiry(self):
        expiry = datetime(2030, 1, 1, tzinfo=UTC)
        license_ = FakeLicense(user_limit=10, seats_used=6, expires_at=expiry)
        session = _session(_app(), license_)
        asyncio.run(licensing.adjust_license(session, 3, "tq", user_limit=None))
        assert license_.user_limit is None
        assert license_.expires_at == expiry

    def test_missing_license(self):
        session = _session(_app(), None)
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(licensing.adjust_license(session, 3, "tq", status="suspended"))
        assert exc_info.value.code == "LICENSE_NOT_FOUND"


# ---------------------------------------------------------------------------
# 2. Grant
# ---------------------------------------------------------------------------


class TestGrantAccess:
    def test_grant_takes_a_seat_and_snapshots_price(self):
        license_ = FakeLicense(user_limit=5, seats_used=2)
        session = _session(_app(), license_, None, FakePricing(), get=FakeUser())

        change = asyncio.run(licensing.grant_access(session, 3, 7, "tq", granted_by=1))

        assert license_.seats_used == 3
        assert change.seats_used == 3
        assert change.seats_remaining == 2
        access = change.access
        assert isinstance(access, UserApplicationAccess)
        assert access.active is True
        assert access.role_in_app == "operations"
        assert access.price_snapshot == Decimal("35.00")
        assert access.currency_snapshot == "BRL"
        assert access.user_type_id_snapshot == 1

        logs = _added(session, ApplicationAccessLog)
        assert len(logs) == 1
        assert logs[0].access_type == "granted"
        assert logs[0].reason == "granted_by:1"

    def test_unlimited_license_reports_no_remaining(self):
        session = _session(
            _app(), FakeLicense(user_limit=None, seats_used=40), None, FakePricing(),
            get=FakeUser(),
        )
        change = asyncio.run(licensing.grant_access(session, 3, 7, "tq"))
        assert change.seats_used == 41
        assert change.seats_remaining is None

    def test_reactivates_previous_access_row(self):
        previous = UserApplicationAccess(
            tenant_id=3, user_id=7, application_id=1, active=False, role_in_app="user",
        )
        session = _session(_app(), FakeLicense(), previous, FakePricing(), get=FakeUser())

        change = asyncio.run(licensing.grant_access(session, 3, 7, "tq", role_in_app="admin"))

        assert change.access is previous
        assert previous.active is True
        assert previous.role_in_app == "admin"
        assert _added(session, UserApplicationAccess) == []

    def test_last_seat_taken(self):
        session = _session(_app(), FakeLicense(user_limit=2, seats_used=2), get=FakeUser())
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.grant_access(session, 3, 7, "tq"))
        assert exc_info.value.code == "NO_SEATS_AVAILABLE"
        assert exc_info.value.details["seats_available"] == 0

    def test_unknown_tenant_reported_first(self):
        session = _session(get=None)
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(licensing.grant_access(session, 99, 7, "tq"))
        assert exc_info.value.code == "TENANT_NOT_FOUND"
        session.get.assert_awaited_once_with(Tenant, 99)
        session.execute.assert_not_awaited()

    def test_user_of_other_tenant(self):
        session = _session(get=FakeUser(tenant_id=4))
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.grant_access(session, 3, 7, "tq"))
        assert exc_info.value.code == "USER_NOT_IN_TENANT"

    @pytest.mark.parametrize("license_", [
        None,
        FakeLicense(status="suspended"),
        FakeLicense(expires_at=datetime.now(UTC) - timedelta(days=1)),
    ])
    def test_license_must_be_active(self, license_):
        session = _session(_app(), license_, get=FakeUser())
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.grant_access(session, 3, 7, "tq"))
        assert exc_info.value.code == "LICENSE_INACTIVE"

    def test_already_granted(self):
        session = _session(_app(), FakeLicense(), FakeAccess(active=True), get=FakeUser())
        with pytest.raises(ConflictError) as exc_info:
            asyncio.run(licensing.grant_access(session, 3, 7, "tq"))
        assert exc_info.value.code == "ALREADY_GRANTED"

    def test_invalid_role(self):
        session = _session(_app(), FakeLicense(), None, get=FakeUser())
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.grant_access(session, 3, 7, "tq", role_in_app="owner"))
        assert exc_info.value.code == "INVALID_ROLE_IN_APP"

    def test_pricing_required(self):
        license_ = FakeLicense(seats_used=1)
        session = _session(_app(), license_, None, None, get=FakeUser())
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(licensing.grant_access(session, 3, 7, "tq"))
        assert exc_info.value.code == "PRICING_NOT_CONFIGURED"
        assert license_.seats_used == 1


# ---------------------------------------------------------------------------
# 3. Revoke
# ---------------------------------------------------------------------------


class TestRevokeAccess:
    def test_revoke_frees_one_seat(self):
        license_ = FakeLicense(user_limit=5, seats_used=3)
        access = FakeAccess(active=True)
        session = _session(_app(), license_, access)

        change = asyncio.run(licensing.revoke_access(session, 3, 7, "tq", revoked_by=1))

        assert access.active is False
        assert license_.seats_used == 2
        assert change.seats_remaining == 3
        assert change.seats_freed == 1
        logs = _added(session, ApplicationAccessLog)
        assert logs[0].access_type == "revoked"

    def test_seats_never_negative(self):
        license_ = FakeLicense(seats_used=0)
        session = _session(_app(), license_, FakeAccess(active=True))
        asyncio.run(licensing.revoke_access(session, 3, 7, "tq"))
        assert license_.seats_used == 0

    def test_inactive_access_not_found(self):
        session = _session(_app(), FakeLicense(), FakeAccess(active=False))
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(licensing.revoke_access(session, 3, 7, "tq"))
        assert exc_info.value.code == "ACCESS_NOT_FOUND"


# ---------------------------------------------------------------------------
# 4. Runtime Access Check
# ---------------------------------------------------------------------------


class TestCheckAppAccess:
    def test_unknown_application_denied_and_logged(self):
        session = _session(None)
        with pytest.raises(NotFoundError):
            asyncio.run(licensing.check_app_access(session, _claims(), _tenant(), "tq"))

        logs = _added(session, ApplicationAccessLog)
        assert logs[0].decision == "denied"
        assert logs[0].reason == "application_not_found"
        session.commit.assert_awaited_once()

    def test_no_tenant_license(self):
        session = _session(_app(), FakeLicense(status="expired"))
        with pytest.raises(PermissionDeniedError) as exc_info:
            asyncio.run(licensing.check_app_access(session, _claims(), _tenant(), "tq"))
        assert exc_info.value.code == "NO_TENANT_LICENSE"

    def test_no_user_access(self):
        session = _session(_app(), FakeLicense(), None)
        with pytest.raises(PermissionDeniedError) as exc_info:
            asyncio.run(licensing.check_app_access(session, _claims(), _tenant(), "tq"))
        assert exc_info.value.code == "NO_USER_ACCESS"
        assert _added(session, ApplicationAccessLog)[0].reason == "no_user_access"

    def test_token_entitlement_is_enough(self):
        session = _session(_app(), FakeLicense(), None)
        grant = asyncio.run(licensing.check_app_access(
            session, _claims(allowed_apps=["tq"]), _tenant(), "tq",
        ))
        assert grant.source == "jwt"
        assert grant.role_in_app == "user"
        session.commit.assert_not_awaited()
        assert _added(session, ApplicationAccessLog)[0].decision == "granted"

    def test_database_grant_used_when_token_is_stale(self):
        session = _session(_app(), FakeLicense(), FakeAccess(role_in_app="manager"))
        grant = asyncio.run(licensing.check_app_access(session, _claims(), _tenant(), "tq"))
        assert grant.source == "database"
        assert grant.role_in_app == "manager"

    def test_expired_user_access_denied(self):
        access = FakeAccess(expires_at=datetime.now(UTC) - timedelta(minutes=1))
        session = _session(_app(), FakeLicense(), access)
        with pytest.raises(PermissionDeniedError):
            asyncio.run(licensing.check_app_access(session, _claims(), _tenant(), "tq"))

    def test_role_requirement(self):
        session = _session(_app(), FakeLicense(), FakeAccess(role_in_app="operations"))
        with pytest.raises(PermissionDeniedError) as exc_info:
            asyncio.run(licensing.check_app_access(
                session, _claims(), _tenant(), "tq", required_role="admin",
            ))
        assert exc_info.value.code == "ROLE_INSUFFICIENT"


class TestRoleSatisfies:
    def test_admin_only_for_admin(self):
        assert licensing.role_satisfies("admin", "admin")
        assert not licensing.role_satisfies("manager", "admin")

    def test_manager_and_operations_interchangeable(self):
        assert licensing.role_satisfies("operations", "manager")
        assert licensing.role_satisfies("manager", "operations")
        assert not licensing.role_satisfies("admin", "manager")

    def test_other_roles_match_exactly(self):
        assert licensing.role_satisfies("user", "user")
        assert not licensing.role_satisfies("admin", "user")
