# =============================================================================
# API Tests — Routing, Guards & Error Bodies
# =============================================================================
#
# Runs requests through the real FastAPI app with the database, Redis and
# LLM dependencies overridden. Audit logging is switched off so no request
# tries to reach PostgreSQL.
# =============================================================================

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from paas.api import deps
from paas.config import settings
from paas.db.engine import get_async_session
from paas.errors import ConflictError, PermissionDeniedError, setup_exception_handlers
from paas.main import INTERNAL_PREFIX, TQ_PREFIX, app
from paas.services.auth import TOKEN_TYPE_PLATFORM_ADMIN, TokenClaims
from paas.services.tenancy import TenantContext

TENANT = TenantContext(
    id=3, slug="sorriso", schema="tenant_3", name="Sorriso Clinic", status="active",
    timezone="America/Sao_Paulo", source="header", input_format="numeric",
)
TENANT_USER = TokenClaims(user_id=7, email="ana@sorriso.com", role="operations", tenant_id=3)


@pytest.fixture
def tenant_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.get.return_value = None
    return session


@pytest.fixture
def client(tenant_session):
    async def session_override():
        yield tenant_session

    app.dependency_overrides[deps.get_token_claims] = lambda: TENANT_USER
    app.dependency_overrides[deps.get_tenant_context] = lambda: TENANT
    app.dependency_overrides[deps.get_tenant_session] = session_override

    with (
        patch.object(settings, "audit_logging_enabled", False),
        patch.object(deps, "check_app_access", AsyncMock()) as access,
        patch.object(deps, "check_rate_limit", AsyncMock()),
    ):
        test_client = TestClient(app)
        test_client.check_app_access = access
        yield test_client

    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["version"] == settings.app_version


class TestAdminGuard:
    def test_tenant_token_refused(self, client):
        response = client.get(f"{INTERNAL_PREFIX}/admin/keys")
        assert response.status_code == 403

    def test_platform_admin_lists_keys(self, client):
        admin = TokenClaims(user_id=1, email="root@simplia.com", type=TOKEN_TYPE_PLATFORM_ADMIN)
        app.dependency_overrides[deps.get_token_claims] = lambda: admin

        platform_session = AsyncMock()
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        platform_session.execute.return_value = result

        async def platform_session_override():
            yield platform_session

        app.dependency_overrides[get_async_session] = platform_session_override

        response = client.get(f"{INTERNAL_PREFIX}/admin/keys")
        assert response.status_code == 200
        assert response.json() == {"keys": [], "total": 0}

    def test_key_patch_ignores_nulls(self, client):
        from datetime import datetime, timezone
        from types import SimpleNamespace

        admin = TokenClaims(user_id=1, email="root@simplia.com", type=TOKEN_TYPE_PLATFORM_ADMIN)
        app.dependency_overrides[deps.get_token_claims] = lambda: admin

        key = SimpleNamespace(
            id=4, name="Website signup", key_prefix="sk_ab12", scopes=["provisioning"],
            rate_limit_rpm=None, is_active=True, created_by_id=1,
            created_at=datetime(2026, 1, 5, tzinfo=timezone.utc), expires_at=None,
            last_used_at=None,
        )
        platform_session = AsyncMock()
        platform_session.get.return_value = key

        async def platform_session_override():
            yield platform_session

        app.dependency_overrides[get_async_session] = platform_session_override

        response = client.patch(
            f"{INTERNAL_PREFIX}/admin/keys/4",
            json={"is_active": False, "name": None},
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert key.name == "Website signup"


class TestTQAccess:
    def test_access_denied_body(self, client):
        client.check_app_access.side_effect = PermissionDeniedError(
            "User has no access to application 'tq'", code="NO_USER_ACCESS",
        )
        response = client.get(f"{TQ_PREFIX}/templates/{uuid.uuid4()}")
        assert response.status_code == 403
        assert response.json()["code"] == "NO_USER_ACCESS"

    def test_access_checked_for_tq(self, client):
        client.get(f"{TQ_PREFIX}/templates/{uuid.uuid4()}")
        args = client.check_app_access.await_args.args
        assert args[3] == "tq"


class TestTemplateRoutes:
    def test_validate_variables(self, client):
        response = client.post(
            f"{TQ_PREFIX}/templates/validate-variables",
            json={"content": "<p>$patient.fullName$ $patient.age$</p>"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is False
        assert body["unsupported_variables"] == ["patient.age"]
        assert "me.clinic" in body["supported_variables"]

    def test_create_rejects_unsupported_variables(self, client, tenant_session):
        response = client.post(
            f"{TQ_PREFIX}/templates",
            json={"title": "Anamnesis", "content": "<p>$patient.fullname$</p>"},
        )
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "UNSUPPORTED_VARIABLES"
        assert body["details"]["unsupported_variables"] == ["patient.fullname"]
        tenant_session.add.assert_not_called()

    def test_missing_template_is_404(self, client):
        response = client.get(f"{TQ_PREFIX}/templates/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["code"] == "TEMPLATE_NOT_FOUND"


class TestAIAgentRoutes:
    def test_missing_template_reported_before_llm(self, client):
        factory = MagicMock()
        app.dependency_overrides[deps.get_llm_factory] = lambda: factory

        response = client.post(
            f"{TQ_PREFIX}/ai-agent/fill-template",
            json={"template_id": str(uuid.uuid4()), "session_id": str(uuid.uuid4())},
        )

        assert response.status_code == 404
        assert response.json()["code"] == "TEMPLATE_NOT_FOUND"
        factory.assert_not_called()

    def test_configuration_update_requires_admin(self, client):
        response = client.put(
            f"{TQ_PREFIX}/ai-agent/configuration",
            json={"system_message": "You are helpful."},
        )
        assert response.status_code == 403
        assert response.json()["code"] == "INSUFFICIENT_ROLE"


class TestErrorHandlers:
    @pytest.fixture
    def error_client(self):
        error_app = FastAPI()
        setup_exception_handlers(error_app)

        @error_app.get("/conflict")
        async def conflict():
            raise ConflictError(
                "User already has access to 'tq'",
                code="ALREADY_GRANTED",
                details={"user_id": 7},
            )

        @error_app.get("/boom")
        async def boom():
            raise RuntimeError("db password=hunter2")

        return TestClient(error_app, raise_server_exceptions=False)

    def test_platform_error_body(self, error_client):
        response = error_client.get("/conflict")
        assert response.status_code == 409
        assert response.json() == {
            "error": "Conflict",
            "message": "User already has access to 'tq'",
            "code": "ALREADY_GRANTED",
            "details": {"user_id": 7},
        }

    def test_unhandled_error_hides_detail(self, error_client):
        response = error_client.get("/boom")
        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text
        assert len(body["error_id"]) == 12

    def test_default_code_from_title(self):
        assert ConflictError("x").code == "CONFLICT"
        assert ConflictError("x").to_dict() == {"error": "Conflict", "message": "x", "code": "CONFLICT"}
