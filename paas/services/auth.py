# =============================================================================
# Auth Service — Passwords, Tokens, Roles & API Keys
# =============================================================================
#
# Pure functions for credential handling. No FastAPI or database
# dependency: used by the auth flows (services/accounts.py), the request
# dependencies (api/deps.py), admin endpoints and tests.
#
# - Passwords: bcrypt. Human passwords are low-entropy, so the deliberate
#   slowness of bcrypt is what defends them against brute force.
# - Access tokens: HS256 JWTs signed with settings.jwt_secret (PyJWT).
# - API keys: `sk-` + 64 hex chars, stored as a SHA-256 digest. Random keys
#   carry 256 bits of entropy, so a fast deterministic hash is sufficient
#   and lets us look the key up by hash.
# =============================================================================

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

import bcrypt
import jwt

from paas.config import settings

# ---------------------------------------------------------------------------
# Passwords & E-mail
# ---------------------------------------------------------------------------

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash a password with bcrypt using `settings.bcrypt_rounds`."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


@lru_cache
def dummy_password_hash() -> str:
    """Hash to verify against when no account matches the e-mail."""
    return hash_password(secrets.token_urlsafe(16))


def validate_password(password: str) -> list[str]:
    """
    Return the list of password policy violations (empty when valid).

    Policy: at least 8 characters, with upper-case, lower-case and a digit.
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    return errors


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

ROLE_HIERARCHY = {
    "operations": 1,
    "manager": 2,
    "admin": 3,
}


def has_role(user_role: str | None, required_role: str) -> bool:
    """True when `user_role` is at or above `required_role` in the hierarchy."""
    user_level = ROLE_HIERARCHY.get(user_role or "", 0)
    required_level = ROLE_HIERARCHY.get(required_role, 0)
    return user_level >= required_level


# ---------------------------------------------------------------------------
# Locale
# ---------------------------------------------------------------------------

BRAZIL_TIMEZONES = frozenset({
    "America/Sao_Paulo",
    "America/Bahia",
    "America/Fortaleza",
    "America/Recife",
    "America/Manaus",
    "America/Belem",
    "America/Rio_Branco",
    "America/Campo_Grande",
    "America/Cuiaba",
    "America/Boa_Vista",
    "America/Porto_Velho",
    "America/Eirunepe",
    "America/Maceio",
    "America/Araguaina",
    "America/Santarem",
    "America/Noronha",
})


def locale_from_timezone(timezone: str | None) -> str:
    """pt-BR for Brazilian zones (and when no zone is known), else en-US."""
    if not timezone:
        return "pt-BR"
    return "pt-BR" if timezone.strip() in BRAZIL_TIMEZONES else "en-US"


# ---------------------------------------------------------------------------
# Access Tokens (JWT)
# ---------------------------------------------------------------------------

TOKEN_TYPE_TENANT_USER = "tenant_user"
TOKEN_TYPE_PLATFORM_ADMIN = "platform_admin"


@dataclass
class TokenClaims:
    """
    Decoded access token.

    Tenant-user tokens carry tenant, schema and entitlements; platform admin
    tokens carry only identity and `platform_role`.
    """

    user_id: int
    email: str
    type: str = TOKEN_TYPE_TENANT_USER
    name: str = ""
    role: str | None = None
    tenant_id: int | None = None
    schema: str | None = None
    timezone: str | None = None
    locale: str | None = None
    allowed_apps: list[str] = field(default_factory=list)
    user_type: dict[str, Any] | None = None
    platform_role: str | None = None
    iat: int | None = None
    exp: int | None = None

    @property
    def is_platform_admin(self) -> bool:
        return self.type == TOKEN_TYPE_PLATFORM_ADMIN

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "type": self.type,
            "platform_role": self.platform_role,
        }
        if self.type == TOKEN_TYPE_TENANT_USER:
            payload.update({
                "tenant_id": self.tenant_id,
                "role": self.role,
                "schema": self.schema,
                "timezone": self.timezone,
                "locale": self.locale,
                "allowed_apps": list(self.allowed_apps),
                "user_type": self.user_type,
            })
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TokenClaims:
        tenant_id = payload.get("tenant_id")
        return cls(
            user_id=int(payload["user_id"]),
            email=payload.get("email", ""),
            type=payload.get("type", TOKEN_TYPE_TENANT_USER),
            name=payload.get("name", ""),
            role=payload.get("role"),
            tenant_id=int(tenant_id) if tenant_id is not None else None,
            schema=payload.get("schema"),
            timezone=payload.get("timezone"),
            locale=payload.get("locale"),
            allowed_apps=list(payload.get("allowed_apps") or []),
            user_type=payload.get("user_type"),
            platform_role=payload.get("platform_role"),
            iat=payload.get("iat"),
            exp=payload.get("exp"),
        )


def create_access_token(claims: TokenClaims, now: datetime | None = None) -> str:
    """Sign `claims` into a JWT that expires after `jwt_expires_minutes`."""
    now = now or datetime.now(UTC)
    payload = claims.to_payload()
    payload["iat"] = int(now.timestamp())
    payload["exp"] = int((now + timedelta(minutes=settings.jwt_expires_minutes)).timestamp())
    payload["iss"] = settings.jwt_issuer
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenClaims:
    """
    Verify signature, expiry and issuer and return the claims.

    Raises:
        jwt.ExpiredSignatureError: Token has expired
        jwt.InvalidTokenError: Any other verification failure
    """
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
    )
    if "user_id" not in payload:
        raise jwt.InvalidTokenError("Token has no user_id claim")
    return TokenClaims.from_payload(payload)


# ---------------------------------------------------------------------------
# API Keys
# ---------------------------------------------------------------------------


def generate_api_key() -> tuple[str, str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_prefix, key_hash):
        - raw_key: Full key to return to the caller (only visible once)
        - key_prefix: First 8 chars for identification in logs/admin
        - key_hash: SHA-256 hex digest for storage in the database
    """
    raw_key = f"sk-{secrets.token_hex(32)}"
    key_prefix = raw_key[:8]
    key_hash = hash_api_key(raw_key)
    return raw_key, key_prefix, key_hash


def hash_api_key(raw_key: str) -> str:
    """Hash an API key using SHA-256. Returns 64-char hex digest."""
    return hashlib.sha256(raw_key.encode()).hexdigest()
