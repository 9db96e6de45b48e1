# =============================================================================
# TQ Sessions — Consultations with Patient & Transcription
# =============================================================================
#
#   GET    /sessions?status=&patient_id=&limit=&offset=
#   POST   /sessions                 — number taken from the tenant sequence
#   GET    /sessions/{id}            — includes patient and transcription
#   PUT    /sessions/{id}            — status, patient, transcript text
#   DELETE /sessions/{id}            — 409 while quotes reference it
#
# Relationships are assigned as objects (not only ids) so the response can
# be rendered without an extra lazy load on the async session.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_session, get_tenant_user
from paas.api.tq.patients import get_patient_or_404
from paas.db.models import ClinicalSession, Quote, Transcription
from paas.errors import ConflictError, NotFoundError
from paas.models.requests import CreateSessionRequest, UpdateSessionRequest
from paas.models.responses import SessionListResponse, SessionResponse, paginate
from paas.services.auth import TokenClaims
from paas.services.numbering import next_session_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["TQ Sessions"])


async def get_session_or_404(session: AsyncSession, session_id: uuid.UUID) -> ClinicalSession:
    clinical_session = await session.get(ClinicalSession, session_id)
    if clinical_session is None:
        raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
    return clinical_session


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    status: Literal["draft", "pending", "completed", "cancelled"] | None = Query(default=None),
    patient_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_tenant_session),
) -> SessionListResponse:
    conditions = []
    if status is not None:
        conditions.append(ClinicalSession.status == status)
    if patient_id is not None:
        conditions.append(ClinicalSession.patient_id == patient_id)

    total = await session.scalar(
        select(func.count(ClinicalSession.id)).where(*conditions)
    ) or 0
    result = await session.execute(
        select(ClinicalSession)
        .where(*conditions)
        .order_by(ClinicalSession.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    sessions = list(result.scalars().all())
    return SessionListResponse(
        items=[SessionResponse.model_validate(s) for s in sessions],
        pagination=paginate(total, limit, offset, len(sessions)),
    )


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    request: CreateSessionRequest,
    claims: TokenClaims = Depends(get_tenant_user),
    session: AsyncSession = Depends(get_tenant_session),
) -> SessionResponse:
    patient = None
    if request.patient_id is not None:
        patient = await get_patient_or_404(session, request.patient_id)

    transcription = None
    if request.transcript is not None or request.audio_url is not None:
        transcription = Transcription(
            audio_url=request.audio_url,
            transcript=request.transcript,
            transcript_status="completed" if request.transcript else "pending",
        )

    clinical_session = ClinicalSession(
        number=await next_session_number(session),
        status=request.status,
        patient=patient,
        transcription=transcription,
        created_by_user_id=claims.user_id,
    )
    session.add(clinical_session)
    await session.flush()

    logger.info(
        "Session created: id=%s, number=%s, by user %d",
        clinical_session.id, clinical_session.number, claims.user_id,
    )
    return SessionResponse.model_validate(clinical_session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> SessionResponse:
    return SessionResponse.model_validate(await get_session_or_404(session, session_id))


@router.put("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: uuid.UUID,
    request: UpdateSessionRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> SessionResponse:
    clinical_session = await get_session_or_404(session, session_id)
    fields = request.model_dump(exclude_unset=True)

    if "patient_id" in fields:
        clinical_session.patient = (
            await get_patient_or_404(session, fields["patient_id"])
            if fields["patient_id"] is not None
            else None
        )
    if fields.get("status") is not None:
        clinical_session.status = fields["status"]
    if "transcript" in fields:
        if clinical_session.transcription is None:
            clinical_session.transcription = Transcription()
        clinical_session.transcription.transcript = fields["transcript"]
        clinical_session.transcription.transcript_status = (
            "completed" if fields["transcript"] else "pending"
        )

    await session.flush()
    return SessionResponse.model_validate(clinical_session)


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> None:
    """Clinical notes go with the session; quotes must be removed first."""
    clinical_session = await get_session_or_404(session, session_id)

    quote_count = await session.scalar(
        select(func.count(Quote.id)).where(Quote.session_id == session_id)
    ) or 0
    if quote_count:
        raise ConflictError(
            "Session has quotes and cannot be deleted",
            code="SESSION_HAS_QUOTES",
            details={"quotes": quote_count},
        )

    transcription = clinical_session.transcription
    await session.delete(clinical_session)
    if transcription is not None:
        await session.delete(transcription)
    logger.info("Session deleted: id=%s", session_id)
