# =============================================================================
# Unit Tests — Authentication & Authorization
# =============================================================================
#
# Tests auth components without requiring Redis, PostgreSQL or a running API.
# Uses mocking for external dependencies (Redis, DB sessions).
#
# Test groups:
#   1. API key generation & hashing (pure functions)
#   2. Passwords, e-mail, roles, locale
#   3. Access tokens (JWT)
#   4. Bearer token dependency (get_token_claims, get_platform_admin)
#   5. API key dependency (get_api_key_with_scope)
#   6. Tenant user & role dependencies
#   7. Request/response model validation
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from fastapi import HTTPException

from paas.errors import PermissionDeniedError
from paas.services.auth import (
    TOKEN_TYPE_PLATFORM_ADMIN,
    TokenClaims,
    create_access_token,
    decode_access_token,
    dummy_password_hash,
    generate_api_key,
    has_role,
    hash_api_key,
    hash_password,
    is_valid_email,
    locale_from_timezone,
    normalize_email,
    validate_password,
    verify_password,
)
from paas.services.tenancy import TenantContext


# ---------------------------------------------------------------------------
# 1. Key Generation & Hashing
# ---------------------------------------------------------------------------


class TestKeyGeneration:
    """Tests for API key generation and hashing."""

    def test_key_format_has_prefix(self):
        raw_key, prefix, key_hash = generate_api_key()
        assert raw_key.startswith("sk-")

    def test_key_length(self):
        """Generated key is 'sk-' + 64 hex chars = 67 chars total."""
        raw_key, prefix, key_hash = generate_api_key()
        assert len(raw_key) == 67

    def test_prefix_is_first_8_chars(self):
        raw_key, prefix, key_hash = generate_api_key()
        assert prefix == raw_key[:8]

    def test_hash_is_64_hex(self):
        raw_key, prefix, key_hash = generate_api_key()
        assert len(key_hash) == 64
        int(key_hash, 16)

    def test_keys_are_unique(self):
        raw1, _, hash1 = generate_api_key()
        raw2, _, hash2 = generate_api_key()
        assert raw1 != raw2
        assert hash1 != hash2

    def test_hash_is_deterministic(self):
        assert hash_api_key("sk-abc123") == hash_api_key("sk-abc123")


# ---------------------------------------------------------------------------
# 2. Passwords, E-mail, Roles, Locale
# ---------------------------------------------------------------------------


class TestPasswords:
    def test_hash_and_verify(self):
        with patch("paas.services.auth.settings") as mock_settings:
            mock_settings.bcrypt_rounds = 4
            hashed = hash_password("Secret123")
        assert hashed != "Secret123"
        assert verify_password("Secret123", hashed)
        assert not verify_password("Secret124", hashed)

    def test_dummy_hash_is_real_bcrypt_and_cached(self):
        dummy_password_hash.cache_clear()
        with patch("paas.services.auth.settings") as mock_settings:
            mock_settings.bcrypt_rounds = 4
            hashed = dummy_password_hash()
        assert hashed.startswith("$2b$04$")
        assert dummy_password_hash() is hashed
        assert not verify_password("Secret123", hashed)

    def test_malformed_hash_does_not_verify(self):
        assert verify_password("Secret123", "not-a-bcrypt-hash") is False

    def test_policy_accepts_strong_password(self):
        assert validate_password("Str0ngPass") == []

    def test_policy_lists_every_violation(self):
        errors = validate_password("abc")
        assert len(errors) == 3  # length, upper-case, digit

    def test_email_helpers(self):
        assert normalize_email("  Ana@Clinic.COM ") == "ana@clinic.com"
        assert is_valid_email("ana@clinic.com")
        assert not is_valid_email("ana@clinic")
        assert not is_valid_email("")


class TestRoles:
    def test_hierarchy(self):
        assert has_role("admin", "manager")
        assert has_role("manager", "manager")
        assert not has_role("operations", "manager")

    def test_unknown_role_has_no_rights(self):
        assert not has_role(None, "operations")
        assert not has_role("guest", "operations")


class TestLocale:
    def test_brazilian_zone(self):
        assert locale_from_timezone("America/Sao_Paulo") == "pt-BR"

    def test_other_zone(self):
        assert locale_from_timezone("Europe/Lisbon") == "en-US"

    def test_missing_zone_defaults_to_pt_br(self):
        assert locale_from_timezone(None) == "pt-BR"


# ---------------------------------------------------------------------------
# 3. Access Tokens
# ---------------------------------------------------------------------------


def _claims(**overrides) -> TokenClaims:
    values = dict(
        user_id=7,
        email="ana@clinic.com",
        name="Ana Souza",
        role="admin",
        tenant_id=3,
        schema="tenant_3",
        timezone="America/Sao_Paulo",
        locale="pt-BR",
        allowed_apps=["tq"],
    )
    values.update(overrides)
    return TokenClaims(**values)


class TestAccessTokens:
    def test_round_trip_keeps_tenant_claims(self):
        decoded = decode_access_token(create_access_token(_claims()))
        assert decoded.user_id == 7
        assert decoded.tenant_id == 3
        assert decoded.schema == "tenant_3"
        assert decoded.allowed_apps == ["tq"]
        assert decoded.exp - decoded.iat > 0

    def test_platform_token_omits_tenant_fields(self):
        claims = TokenClaims(
            user_id=1, email="ops@example.com", type=TOKEN_TYPE_PLATFORM_ADMIN,
            platform_role="super_admin", tenant_id=99,
        )
        decoded = decode_access_token(create_access_token(claims))
        assert decoded.is_platform_admin
        assert decoded.tenant_id is None
        assert decoded.platform_role == "super_admin"

    def test_expired_token_rejected(self):
        token = create_access_token(_claims(), now=datetime.now(UTC) - timedelta(days=30))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"user_id": 1, "iss": "simplia-paas"}, "other-secret", algorithm="HS256")
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)


# ---------------------------------------------------------------------------
# Helpers — lightweight fakes for dependency tests
# ---------------------------------------------------------------------------


@dataclass
class FakeApiKey:
    """Lightweight stand-in for the ApiKey ORM model."""

    id: int = 1
    name: str = "website-signup"
    key_prefix: str = "sk-test0"
    key_hash: str = ""
    scopes: list[str] | None = None
    rate_limit_rpm: int | None = None
    is_active: bool = True
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class FakeCredentials:
    """Stand-in for HTTPAuthorizationCredentials."""

    credentials: str = "token"


class FakeRequestState:
    """Writable request.state."""

    pass


class FakeRequest:
    """Minimal Request stand-in."""

    def __init__(self, headers: dict | None = None):
        self.state = FakeRequestState()
        self.headers = headers or {}
        self.client = MagicMock(host="10.0.0.1")


def _session_returning(value) -> AsyncMock:
    mock_session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = value
    mock_session.execute.return_value = mock_result
    return mock_session


# ---------------------------------------------------------------------------
# 4. Bearer Token Dependency
# ---------------------------------------------------------------------------


class TestGetTokenClaims:
    def test_missing_credentials_raises_401(self):
        from paas.api.deps import get_token_claims

        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(get_token_claims(request=FakeRequest(), credentials=None))
        assert exc_info.value.status_code == 401

    def test_garbage_token_raises_401(self):
        from paas.api.deps import get_token_claims

        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(get_token_claims(
                request=FakeRequest(), credentials=FakeCredentials("not-a-jwt"),
            ))
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid access token."

    def test_expired_token_raises_401(self):
        from paas.api.deps import get_token_claims

        token = create_access_token(_claims(), now=datetime.now(UTC) - timedelta(days=30))
        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(get_token_claims(request=FakeRequest(), credentials=FakeCredentials(token)))
        assert "expired" in exc_info.value.detail

    def test_valid_token_sets_state_and_counts_request(self):
        from paas.api.deps import get_token_claims

        request = FakeRequest()
        token = create_access_token(_claims())
        with patch("paas.api.deps.check_rate_limit", new_callable=AsyncMock) as mock_limit:
            claims = asyncio.run(get_token_claims(request=request, credentials=FakeCredentials(token)))

        assert claims.user_id == 7
        assert request.state.claims is claims
        identity, bucket = mock_limit.call_args.args
        assert identity == "user:7"
        assert bucket.name == "default"


class TestGetPlatformAdmin:
    def test_tenant_token_refused(self):
        from paas.api.deps import get_platform_admin

        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(get_platform_admin(claims=_claims()))
        assert exc_info.value.status_code == 403

    def test_platform_token_accepted(self):
        from paas.api.deps import get_platform_admin

        claims = TokenClaims(user_id=1, email="ops@example.com", type=TOKEN_TYPE_PLATFORM_ADMIN)
        assert asyncio.run(get_platform_admin(claims=claims)) is claims


# ---------------------------------------------------------------------------
# 5. API Key Dependency
# ---------------------------------------------------------------------------


class TestGetApiKeyWithScope:
    def _run(self, raw_key, session, request=None):
        from paas.api.deps import get_api_key_with_scope

        dependency = get_api_key_with_scope("provisioning")
        return asyncio.run(dependency(
            request=request or FakeRequest(), raw_key=raw_key, session=session,
        ))

    def test_missing_key_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            self._run(None, AsyncMock())
        assert exc_info.value.status_code == 401

    def test_unknown_key_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            self._run("sk-unknown", _session_returning(None))
        assert exc_info.value.status_code == 401

    def test_inactive_key_raises_403(self):
        with pytest.raises(HTTPException) as exc_info:
            self._run("sk-key", _session_returning(FakeApiKey(is_active=False)))
        assert exc_info.value.status_code == 403
        assert "deactivated" in exc_info.value.detail

    def test_expired_key_raises_403(self):
        fake_key = FakeApiKey(expires_at=datetime.now(UTC) - timedelta(hours=1))
        with pytest.raises(HTTPException) as exc_info:
            self._run("sk-key", _session_returning(fake_key))
        assert "expired" in exc_info.value.detail

    def test_missing_scope_raises_403(self):
        with pytest.raises(HTTPException) as exc_info:
            self._run("sk-key", _session_returning(FakeApiKey(scopes=["reports"])))
        assert exc_info.value.status_code == 403
        assert "provisioning" in exc_info.value.detail

    def test_null_scopes_means_full_access(self):
        fake_key = FakeApiKey(scopes=None, rate_limit_rpm=5)
        request = FakeRequest()
        with patch("paas.api.deps.check_rate_limit", new_callable=AsyncMock) as mock_limit:
            result = self._run("sk-key", _session_returning(fake_key), request)

        assert result is fake_key
        assert request.state.api_key is fake_key
        assert fake_key.last_used_at is not None
        identity, bucket = mock_limit.call_args.args
        assert identity == "key:1"
        assert bucket.limit == 5


# ---------------------------------------------------------------------------
# 6. Tenant User & Role
# ---------------------------------------------------------------------------


def _tenant(tenant_id: int = 3) -> TenantContext:
    return TenantContext(
        id=tenant_id, slug="clinic", schema=f"tenant_{tenant_id}", name="Clinic",
        status="active", timezone="America/Sao_Paulo", source="header",
        input_format="numeric",
    )


class TestTenantUser:
    def test_matching_tenant_passes(self):
        from paas.api.deps import get_tenant_user

        claims = _claims()
        assert asyncio.run(get_tenant_user(claims=claims, tenant=_tenant(3))) is claims

    def test_other_tenant_refused(self):
        from paas.api.deps import get_tenant_user

        with pytest.raises(PermissionDeniedError) as exc_info:
            asyncio.run(get_tenant_user(claims=_claims(), tenant=_tenant(4)))
        assert exc_info.value.code == "TENANT_MISMATCH"

    def test_platform_token_refused_on_tenant_routes(self):
        from paas.api.deps import get_tenant_user

        claims = TokenClaims(user_id=1, email="ops@example.com", type=TOKEN_TYPE_PLATFORM_ADMIN)
        with pytest.raises(PermissionDeniedError):
            asyncio.run(get_tenant_user(claims=claims, tenant=_tenant(3)))


class TestRequireRole:
    def test_lower_role_refused(self):
        from paas.api.deps import require_role

        dependency = require_role("admin")
        with pytest.raises(PermissionDeniedError) as exc_info:
            asyncio.run(dependency(claims=_claims(role="operations")))
        assert exc_info.value.code == "INSUFFICIENT_ROLE"
        assert exc_info.value.status_code == 403

    def test_higher_role_passes(self):
        from paas.api.deps import require_role

        claims = _claims(role="admin")
        assert asyncio.run(require_role("manager")(claims=claims)) is claims


class TestTenantContext:
    def test_missing_header_raises(self):
        from paas.api.deps import get_tenant_context
        from paas.errors import BadRequestError

        with patch("paas.api.deps.settings") as mock_settings:
            mock_settings.tenant_header_name = "x-tenant-id"
            mock_settings.tenant_subdomain_resolution = False
            with pytest.raises(BadRequestError) as exc_info:
                asyncio.run(get_tenant_context(request=FakeRequest(), session=AsyncMock()))
        assert exc_info.value.code == "TENANT_HEADER_REQUIRED"

    def test_header_resolved_and_stored(self):
        from paas.api.deps import get_tenant_context

        request = FakeRequest(headers={"x-tenant-id": "3"})
        with patch(
            "paas.api.deps.resolve_tenant", new_callable=AsyncMock, return_value=_tenant(3),
        ) as mock_resolve:
            tenant = asyncio.run(get_tenant_context(request=request, session=AsyncMock()))

        assert tenant.id == 3
        assert request.state.tenant is tenant
        assert mock_resolve.call_args.args[1] == "3"
        assert mock_resolve.call_args.kwargs["source"] == "header"


# ---------------------------------------------------------------------------
# 7. Request/Response Model Validation
# ---------------------------------------------------------------------------


class TestRequestModels:
    def test_create_key_requires_name(self):
        from pydantic import ValidationError

        from paas.models.requests import CreateApiKeyRequest

        with pytest.raises(ValidationError):
            CreateApiKeyRequest()

    def test_update_key_all_optional(self):
        from paas.models.requests import UpdateApiKeyRequest

        req = UpdateApiKeyRequest()
        assert req.name is None
        assert req.is_active is None


class TestResponseModels:
    def test_api_key_response_excludes_hash(self):
        from paas.models.responses import ApiKeyResponse

        schema = ApiKeyResponse.model_json_schema()
        assert "key_hash" not in schema.get("properties", {})

    def test_api_key_created_response_includes_raw_key(self):
        from paas.models.responses import ApiKeyCreatedResponse

        schema = ApiKeyCreatedResponse.model_json_schema()
        assert "raw_key" in schema.get("properties", {})

    def test_user_response_excludes_password_hash(self):
        from paas.models.responses import UserResponse

        assert "password_hash" not in UserResponse.model_json_schema()["properties"]
