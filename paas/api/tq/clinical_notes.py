"""
TQ clinical notes: numbered free-text notes attached to a session.

    GET    /clinical-notes?session_id=
    POST   /clinical-notes
    GET    /clinical-notes/{id}
    PUT    /clinical-notes/{id}
    DELETE /clinical-notes/{id}
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_session
from paas.api.tq.sessions import get_session_or_404
from paas.db.models import ClinicalNote
from paas.errors import NotFoundError
from paas.models.requests import CreateClinicalNoteRequest, UpdateClinicalNoteRequest
from paas.models.responses import ClinicalNoteListResponse, ClinicalNoteResponse, paginate
from paas.services.numbering import next_clinical_note_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clinical-notes", tags=["TQ Clinical Notes"])


async def _get_note_or_404(session: AsyncSession, note_id: uuid.UUID) -> ClinicalNote:
    note = await session.get(ClinicalNote, note_id)
    if note is None:
        raise NotFoundError("Clinical note not found", code="CLINICAL_NOTE_NOT_FOUND")
    return note


@router.get("", response_model=ClinicalNoteListResponse)
async def list_clinical_notes(
    session_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_tenant_session),
) -> ClinicalNoteListResponse:
    conditions = []
    if session_id is not None:
        conditions.append(ClinicalNote.session_id == session_id)

    total = await session.scalar(select(func.count(ClinicalNote.id)).where(*conditions)) or 0
    result = await session.execute(
        select(ClinicalNote)
        .where(*conditions)
        .order_by(ClinicalNote.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    notes = list(result.scalars().all())
    return ClinicalNoteListResponse(
        items=[ClinicalNoteResponse.model_validate(n) for n in notes],
        pagination=paginate(total, limit, offset, len(notes)),
    )


@router.post("", response_model=ClinicalNoteResponse, status_code=201)
async def create_clinical_note(
    request: CreateClinicalNoteRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> ClinicalNoteResponse:
    await get_session_or_404(session, request.session_id)
    note = ClinicalNote(
        number=await next_clinical_note_number(session),
        session_id=request.session_id,
        content=request.content,
    )
    session.add(note)
    await session.flush()
    logger.info("Clinical note %s created for session %s", note.number, note.session_id)
    return ClinicalNoteResponse.model_validate(note)


@router.get("/{note_id}", response_model=ClinicalNoteResponse)
async def get_clinical_note(
    note_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> ClinicalNoteResponse:
    return ClinicalNoteResponse.model_validate(await _get_note_or_404(session, note_id))


@router.put("/{note_id}", response_model=ClinicalNoteResponse)
async def update_clinical_note(
    note_id: uuid.UUID,
    request: UpdateClinicalNoteRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> ClinicalNoteResponse:
    note = await _get_note_or_404(session, note_id)
    note.content = request.content
    await session.flush()
    return ClinicalNoteResponse.model_validate(note)


@router.delete("/{note_id}", status_code=204)
async def delete_clinical_note(
    note_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> None:
    await session.delete(await _get_note_or_404(session, note_id))
