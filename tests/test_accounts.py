# =============================================================================
# Unit Tests — Accounts, Tenants & Provisioning Helpers
# =============================================================================
#
# bcrypt is patched out (verify_password / hash_password) so the tests stay
# fast; DB sessions are AsyncMocks returning canned rows.
# =============================================================================

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from paas.errors import (
    AuthenticationError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from paas.services import accounts, tenants
from paas.services.auth import TOKEN_TYPE_PLATFORM_ADMIN, decode_access_token
from paas.services.provisioning import generate_temporary_password, subdomain_from_name
from paas.services.tenancy import TenantContext

TENANT = TenantContext(
    id=3, slug="sorriso", schema="tenant_3", name="Sorriso Clinic", status="active",
    timezone="America/Sao_Paulo", source="header", input_format="numeric",
)


def _user(**overrides) -> SimpleNamespace:
    values = dict(
        id=7, tenant_id=3, email="ana@sorriso.com", password_hash="hashed",
        full_name="Ana Souza", first_name="Ana", last_name="Souza", role="admin",
        status="active", active=True, platform_role=None, user_type=None,
        last_login=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _session_returning(*values) -> AsyncMock:
    results = []
    for value in values:
        result = MagicMock()
        result.scalar_one_or_none.return_value = value
        results.append(result)
    session = AsyncMock()
    session.add = MagicMock()
    session.execute.side_effect = results
    return session


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_issues_tenant_token(self):
        user = _user()
        with (
            patch.object(accounts, "verify_password", return_value=True),
            patch.object(accounts, "user_allowed_apps", AsyncMock(return_value=["tq"])),
        ):
            result = asyncio.run(accounts.login(_session_returning(user), TENANT, " Ana@Sorriso.com ", "x"))

        claims = decode_access_token(result.token)
        assert claims.user_id == 7
        assert claims.tenant_id == 3
        assert claims.schema == "tenant_3"
        assert claims.allowed_apps == ["tq"]
        assert claims.locale == "pt-BR"
        assert user.last_login is not None

    def test_unknown_email_still_checks_a_hash(self):
        with (
            patch.object(accounts, "dummy_password_hash", return_value="dummy"),
            patch.object(accounts, "verify_password", return_value=True) as verify,
        ):
            with pytest.raises(AuthenticationError) as exc_info:
                asyncio.run(accounts.login(_session_returning(None), TENANT, "x@y.com", "x"))
        assert exc_info.value.code == "INVALID_CREDENTIALS"
        verify.assert_called_once_with("x", "dummy")

    def test_wrong_password_same_error(self):
        with patch.object(accounts, "verify_password", return_value=False):
            with pytest.raises(AuthenticationError) as exc_info:
                asyncio.run(accounts.login(_session_returning(_user()), TENANT, "ana@sorriso.com", "x"))
        assert exc_info.value.code == "INVALID_CREDENTIALS"

    def test_inactive_user(self):
        with patch.object(accounts, "verify_password", return_value=True):
            with pytest.raises(PermissionDeniedError) as exc_info:
                asyncio.run(accounts.login(
                    _session_returning(_user(status="suspended")), TENANT, "ana@sorriso.com", "x",
                ))
        assert exc_info.value.code == "ACCOUNT_INACTIVE"


class TestPlatformLogin:
    def test_internal_admin(self):
        user = _user(platform_role="internal_admin")
        db = _session_returning(user)
        with (
            patch.object(accounts, "verify_password", return_value=True),
            patch.object(accounts, "log_access_event") as log_event,
        ):
            result = asyncio.run(accounts.platform_login(db, "ana@sorriso.com", "x"))

        assert result.claims.type == TOKEN_TYPE_PLATFORM_ADMIN
        assert result.claims.tenant_id is None
        assert log_event.call_args.kwargs["decision"] == "granted"
        db.commit.assert_not_awaited()

    def test_tenant_user_refused_and_logged(self):
        db = _session_returning(_user())
        with (
            patch.object(accounts, "verify_password", return_value=True),
            patch.object(accounts, "log_access_event") as log_event,
        ):
            with pytest.raises(PermissionDeniedError) as exc_info:
                asyncio.run(accounts.platform_login(db, "ana@sorriso.com", "x"))

        assert exc_info.value.code == "INSUFFICIENT_PLATFORM_ROLE"
        assert log_event.call_args.kwargs["decision"] == "denied"
        assert log_event.call_args.kwargs["reason"] == "insufficient_platform_role"
        db.commit.assert_awaited_once()

    def test_unknown_email_still_checks_a_hash(self):
        with (
            patch.object(accounts, "dummy_password_hash", return_value="dummy"),
            patch.object(accounts, "verify_password", return_value=False) as verify,
            patch.object(accounts, "log_access_event") as log_event,
        ):
            with pytest.raises(AuthenticationError):
                asyncio.run(accounts.platform_login(_session_returning(None), "ghost@simplia.com", "x"))
        verify.assert_called_once_with("x", "dummy")
        assert log_event.call_args.kwargs["user_id"] is None

    def test_password_checked_before_role(self):
        db = _session_returning(_user())
        with (
            patch.object(accounts, "verify_password", return_value=False),
            patch.object(accounts, "log_access_event") as log_event,
        ):
            with pytest.raises(AuthenticationError):
                asyncio.run(accounts.platform_login(db, "ana@sorriso.com", "x"))
        assert log_event.call_args.kwargs["reason"] == "invalid_credentials"


# ---------------------------------------------------------------------------
# Registration & Passwords
# ---------------------------------------------------------------------------


class TestRegister:
    def _register(self, db, **overrides):
        kwargs = dict(email="joao@sorriso.com", password="Secret123", first_name="João")
        kwargs.update(overrides)
        return asyncio.run(accounts.register(db, 3, **kwargs))

    def test_creates_active_user(self):
        db = _session_returning(None, 2)  # no existing email, user type id 2
        with patch.object(accounts, "hash_password", return_value="hashed"):
            user = self._register(db, email=" Joao@Sorriso.com ", last_name="  ")

        assert user.email == "joao@sorriso.com"
        assert user.last_name is None
        assert user.role == "operations"
        assert user.user_type_id == 2
        assert user.active is True
        db.add.assert_called_once_with(user)

    def test_duplicate_email(self):
        with pytest.raises(ConflictError) as exc_info:
            self._register(_session_returning(11))
        assert exc_info.value.code == "EMAIL_EXISTS"

    @pytest.mark.parametrize("overrides, code", [
        ({"email": "not-an-email"}, "INVALID_EMAIL"),
        ({"password": "short"}, "WEAK_PASSWORD"),
        ({"first_name": "J"}, "INVALID_NAME"),
        ({"role": "owner"}, "INVALID_ROLE"),
    ])
    def test_validation(self, overrides, code):
        db = _session_returning()
        with pytest.raises(BusinessRuleError) as exc_info:
            self._register(db, **overrides)
        assert exc_info.value.code == code
        db.execute.assert_not_awaited()


class TestPasswordChanges:
    def test_change_requires_current_password(self):
        db = AsyncMock()
        db.get.return_value = _user()
        with patch.object(accounts, "verify_password", return_value=False):
            with pytest.raises(AuthenticationError):
                asyncio.run(accounts.change_password(db, 7, "wrong", "Secret123"))

    def test_weak_new_password_details(self):
        db = AsyncMock()
        db.get.return_value = _user()
        with patch.object(accounts, "verify_password", return_value=True):
            with pytest.raises(BusinessRuleError) as exc_info:
                asyncio.run(accounts.change_password(db, 7, "Secret123", "password"))
        assert exc_info.value.code == "WEAK_PASSWORD"
        assert len(exc_info.value.details["errors"]) == 2

    def test_reset_other_tenant_user_not_found(self):
        db = AsyncMock()
        db.get.return_value = _user(tenant_id=99)
        with pytest.raises(NotFoundError):
            asyncio.run(accounts.reset_password(db, 3, 7, "Secret123"))


class TestUpdateUser:
    def test_short_first_name(self):
        db = AsyncMock()
        db.get.return_value = _user()
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(accounts.update_user(db, 3, 7, {"first_name": " A "}))
        assert exc_info.value.code == "INVALID_NAME"

    def _held_seats_db(self, user, *slugs) -> AsyncMock:
        result = MagicMock()
        result.scalars.return_value.all.return_value = list(slugs)
        db = AsyncMock()
        db.get.return_value = user
        db.execute.return_value = result
        return db

    def test_status_drives_active_flag(self):
        user = _user()
        db = self._held_seats_db(user)
        with patch.object(accounts, "revoke_access", AsyncMock()):
            asyncio.run(accounts.update_user(db, 3, 7, {"status": "suspended", "last_name": None}))
        assert user.active is False
        assert user.last_name is None

    @pytest.mark.parametrize("status", ["inactive", "suspended"])
    def test_leaving_active_revokes_every_seat(self, status):
        db = self._held_seats_db(_user(), "tq", "crm")
        with patch.object(accounts, "revoke_access", AsyncMock()) as revoke:
            asyncio.run(accounts.update_user(db, 3, 7, {"status": status}, updated_by=1))

        assert [c.args[3] for c in revoke.await_args_list] == ["tq", "crm"]
        assert all(c.kwargs["revoked_by"] == 1 for c in revoke.await_args_list)

    def test_reactivation_keeps_seats_untouched(self):
        user = _user(status="inactive", active=False)
        db = self._held_seats_db(user, "tq")
        with patch.object(accounts, "revoke_access", AsyncMock()) as revoke:
            asyncio.run(accounts.update_user(db, 3, 7, {"status": "active", "role": "admin"}))

        revoke.assert_not_awaited()
        db.execute.assert_not_awaited()
        assert user.active is True


# ---------------------------------------------------------------------------
# Tenants & Provisioning Helpers
# ---------------------------------------------------------------------------


class TestTenants:
    def test_valid_timezone(self):
        assert tenants.validate_timezone("America/Sao_Paulo") == "America/Sao_Paulo"

    def test_invalid_timezone(self):
        with pytest.raises(BusinessRuleError) as exc_info:
            tenants.validate_timezone("Mars/Olympus_Mons")
        assert exc_info.value.code == "INVALID_TIMEZONE"

    def test_invalid_subdomain(self):
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(tenants.create_tenant(AsyncMock(), "Acme", "acme.dental"))
        assert exc_info.value.code == "INVALID_SUBDOMAIN"

    def test_duplicate_subdomain(self):
        with pytest.raises(ConflictError) as exc_info:
            asyncio.run(tenants.create_tenant(_session_returning(1), "Acme", "ACME"))
        assert exc_info.value.code == "TENANT_EXISTS"


class TestProvisioningHelpers:
    def test_subdomain_from_name(self):
        assert subdomain_from_name("Clínica Bem Estar") == "clinica-bem-estar"
        assert subdomain_from_name("  Dr. Smith & Sons ") == "dr-smith-sons"

    def test_subdomain_fallback(self):
        assert subdomain_from_name("???") == "tenant"

    def test_temporary_password_meets_policy(self):
        from paas.services.auth import validate_password

        for _ in range(20):
            assert validate_password(generate_temporary_password()) == []
