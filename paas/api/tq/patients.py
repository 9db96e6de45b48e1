# =============================================================================
# TQ Patients
# =============================================================================
#
#   GET    /patients?q=&limit=&offset=
#   POST   /patients
#   GET    /patients/{id}
#   PUT    /patients/{id}
#   DELETE /patients/{id}
#
# Search matches first name, last name or email (case-insensitive).
# =============================================================================

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_session
from paas.db.models import Patient
from paas.errors import NotFoundError
from paas.models.requests import PatientRequest
from paas.models.responses import PatientListResponse, PatientResponse, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["TQ Patients"])


async def get_patient_or_404(session: AsyncSession, patient_id: uuid.UUID) -> Patient:
    patient = await session.get(Patient, patient_id)
    if patient is None:
        raise NotFoundError("Patient not found", code="PATIENT_NOT_FOUND")
    return patient


@router.get("", response_model=PatientListResponse)
async def list_patients(
    q: str | None = Query(default=None, description="Search by name or email"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_tenant_session),
) -> PatientListResponse:
    conditions = []
    if q:
        pattern = f"%{q.strip()}%"
        conditions.append(
            or_(
                Patient.first_name.ilike(pattern),
                Patient.last_name.ilike(pattern),
                Patient.email.ilike(pattern),
            )
        )

    total = await session.scalar(select(func.count(Patient.id)).where(*conditions)) or 0
    result = await session.execute(
        select(Patient)
        .where(*conditions)
        .order_by(Patient.first_name, Patient.last_name)
        .limit(limit)
        .offset(offset)
    )
    patients = list(result.scalars().all())
    return PatientListResponse(
        items=[PatientResponse.model_validate(p) for p in patients],
        pagination=paginate(total, limit, offset, len(patients)),
    )


@router.post("", response_model=PatientResponse, status_code=201)
async def create_patient(
    request: PatientRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> PatientResponse:
    patient = Patient(**request.model_dump())
    session.add(patient)
    await session.flush()
    logger.info("Patient created: id=%s", patient.id)
    return PatientResponse.model_validate(patient)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> PatientResponse:
    return PatientResponse.model_validate(await get_patient_or_404(session, patient_id))


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: uuid.UUID,
    request: PatientRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> PatientResponse:
    patient = await get_patient_or_404(session, patient_id)
    for name, value in request.model_dump(exclude_unset=True).items():
        setattr(patient, name, value)
    await session.flush()
    return PatientResponse.model_validate(patient)


@router.delete("/{patient_id}", status_code=204)
async def delete_patient(
    patient_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> None:
    """Sessions of the patient are kept and lose their patient link."""
    patient = await get_patient_or_404(session, patient_id)
    await session.delete(patient)
    logger.info("Patient deleted: id=%s", patient_id)
