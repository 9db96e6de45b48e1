# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy Engine
# FastAPI is an async framework, so the API uses SQLAlchemy's async engine
# (asyncpg driver). Sessions are created per-request via FastAPI's
# dependency injection.
#
# IMPORTANT: Celery workers are SYNCHRONOUS and cannot use the async engine.
# Maintenance tasks use a separate, lazily created sync engine (psycopg2).
#
# SESSION LIFECYCLE:
# 1. FastAPI request arrives
# 2. `get_async_session` dependency creates a new session
# 3. Route handler and services use the session for DB operations
# 4. Session commits on exit and is closed when the request completes
# 5. On exception, the transaction is rolled back
#
# The request-scoped transaction is also the lock scope for license rows:
# `SELECT ... FOR UPDATE` taken by the licensing service is held until the
# dependency commits or rolls back.
#
# TENANT SCHEMAS:
# Tenant-owned tables are declared against the placeholder schema "tenant"
# (see TenantBase in db/models.py). A tenant session maps the placeholder to
# the real schema `tenant_<id>` through SQLAlchemy's schema_translate_map,
# so the same ORM classes serve every tenant.
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from paas.config import settings

# Placeholder schema used by every tenant-owned table definition.
TENANT_SCHEMA = "tenant"

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo=True (debug mode): logs all SQL statements.
# - pool_size / max_overflow: tune for expected concurrency in production.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# expire_on_commit=False: loaded objects stay readable after commit, which
# matters in async code where lazy refresh is not possible.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def schema_map(schema: str) -> dict[str, str]:
    """Translate map pointing the tenant placeholder at a concrete schema."""
    return {TENANT_SCHEMA: schema}


# Session factories per tenant schema, built on first use.
_tenant_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def tenant_session_factory(schema: str) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory whose connections resolve the "tenant"
    placeholder schema to `schema`.

    Platform tables (schema None / public) are unaffected by the map, so a
    tenant session can still read tenants, users and licenses.
    """
    factory = _tenant_session_factories.get(schema)
    if factory is None:
        engine = async_engine.execution_options(
            schema_translate_map=schema_map(schema),
        )
        factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        _tenant_session_factories[schema] = factory
    return factory


# ---------------------------------------------------------------------------
# Sync Engine — For Celery Workers (Lazy Initialization)
# ---------------------------------------------------------------------------
# DESIGN DECISION: Lazy initialization (not module-level like async_engine).
# psycopg2 is only needed by Celery workers; the API process never
# touches it.
# ---------------------------------------------------------------------------

_sync_engine = None
_sync_session_factory = None


def _get_sync_engine():
    """Lazily create and cache the sync SQLAlchemy engine."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            settings.database_url_sync,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _sync_engine


def _get_sync_session_factory():
    """Lazily create and cache the sync session factory."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            bind=_get_sync_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _sync_session_factory


@contextmanager
def get_sync_session(schema: str | None = None) -> Generator[Session, None, None]:
    """
    Context manager that provides a sync database session for Celery workers.

    Usage in Celery tasks:
        with get_sync_session() as session:
            session.execute(update(TenantApplication)...)

        with get_sync_session("tenant_7") as session:
            session.execute(update(Quote)...)

    When `schema` is given, the session's connection maps the tenant
    placeholder schema to it. Commits on exit, rolls back on exception.
    """
    factory = _get_sync_session_factory()
    if schema is None:
        session = factory()
    else:
        bind = _get_sync_engine().execution_options(
            schema_translate_map=schema_map(schema),
        )
        session = factory(bind=bind)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Usage in route handlers:
        @router.get("/tenants")
        async def list_tenants(session: AsyncSession = Depends(get_async_session)):
            result = await session.execute(select(Tenant))
            return result.scalars().all()

    The session commits when the handler returns. If an exception occurs,
    the transaction is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def open_tenant_session(schema: str) -> AsyncGenerator[AsyncSession, None]:
    """
    Same lifecycle as `get_async_session`, bound to a tenant schema.

    Used by the `get_tenant_session` dependency in api/deps.py, which
    resolves the schema from the request's tenant context:

        async with open_tenant_session("tenant_7") as session:
            ...
    """
    async with tenant_session_factory(schema)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
