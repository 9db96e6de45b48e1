"""Human-readable record numbers (SES000001, QUO000001, CLN000001)."""

from __future__ import annotations

from sqlalchemy import Sequence, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import clinical_note_number_seq, quote_number_seq, session_number_seq

SESSION_PREFIX = "SES"
QUOTE_PREFIX = "QUO"
CLINICAL_NOTE_PREFIX = "CLN"


def format_number(prefix: str, value: int) -> str:
    return f"{prefix}{value:06d}"


async def _next(db: AsyncSession, sequence: Sequence, prefix: str) -> str:
    value = await db.scalar(select(sequence.next_value()))
    return format_number(prefix, int(value))


async def next_session_number(db: AsyncSession) -> str:
    return await _next(db, session_number_seq, SESSION_PREFIX)


async def next_quote_number(db: AsyncSession) -> str:
    return await _next(db, quote_number_seq, QUOTE_PREFIX)


async def next_clinical_note_number(db: AsyncSession) -> str:
    return await _next(db, clinical_note_number_seq, CLINICAL_NOTE_PREFIX)
