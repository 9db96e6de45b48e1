"""Tests for tenant identifier parsing and resolution."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from paas.errors import BadRequestError, NotFoundError
from paas.services.tenancy import (
    parse_identifier,
    resolve_tenant,
    schema_name_for,
    subdomain_from_host,
)


def _session_returning(value) -> AsyncMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    session = AsyncMock()
    session.execute.return_value = result
    return session


class TestParseIdentifier:
    def test_numeric(self):
        assert parse_identifier("42") == ("numeric", 42)

    def test_numeric_with_whitespace(self):
        assert parse_identifier(" 7 ") == ("numeric", 7)

    def test_slug(self):
        assert parse_identifier("acme-dental") == ("slug", "acme-dental")

    @pytest.mark.parametrize("raw", [
        "0", "", "a", "acme.dental", "x" * 51, "drop table;", "²", "٣", "2147483648",
    ])
    def test_invalid(self, raw):
        with pytest.raises(BadRequestError) as exc_info:
            parse_identifier(raw)
        assert exc_info.value.code == "INVALID_TENANT_ID"

    def test_largest_int4_id(self):
        assert parse_identifier("2147483647") == ("numeric", 2147483647)


class TestSubdomainFromHost:
    def test_tenant_subdomain(self):
        assert subdomain_from_host("acme.example.com") == "acme"

    def test_port_and_case_ignored(self):
        assert subdomain_from_host("ACME.example.com:8443") == "acme"

    @pytest.mark.parametrize("host", [
        None,
        "",
        "example.com",
        "localhost:8000",
        "127.0.0.1:8000",
        "www.example.com",
        "api.example.com",
    ])
    def test_no_tenant(self, host):
        assert subdomain_from_host(host) is None


class TestResolveTenant:
    def test_schema_derived_from_id(self):
        assert schema_name_for(12) == "tenant_12"

    def test_resolves_active_tenant(self):
        tenant = SimpleNamespace(
            id=3, subdomain="sorriso", name="Sorriso Clinic", status="active",
            timezone="America/Sao_Paulo",
        )
        context = asyncio.run(resolve_tenant(_session_returning(tenant), "sorriso", source="subdomain"))
        assert context.id == 3
        assert context.schema == "tenant_3"
        assert context.input_format == "slug"
        assert context.source == "subdomain"

    def test_unknown_tenant(self):
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(resolve_tenant(_session_returning(None), "99"))
        assert exc_info.value.code == "TENANT_NOT_FOUND"

    def test_invalid_identifier_skips_lookup(self):
        session = _session_returning(None)
        with pytest.raises(BadRequestError):
            asyncio.run(resolve_tenant(session, "not a slug"))
        session.execute.assert_not_awaited()
