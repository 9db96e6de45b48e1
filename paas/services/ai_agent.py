# =============================================================================
# AI Agent Service — Template Filling & Clinical Chat
# =============================================================================
#
# FILL-TEMPLATE PIPELINE:
#
#   template + session (+ patient) ──▶ resolve $variables$
#       ──▶ system message + user prompt (transcript, template HTML)
#       ──▶ one LLM call
#       ──▶ strip markdown code fences from the answer
#       ──▶ template.usage_count += 1
#
# There is no retry and no streaming: a failed or empty completion is
# reported to the caller as HTTP 502.
#
# The LLM provider is obtained through a factory that is called only after
# the template and session have been found, so a missing API key (503)
# never hides a 404.
# =============================================================================

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import AIAgentConfiguration, ClinicalSession, Patient, Template, User
from paas.errors import BadRequestError, NotFoundError, PlatformError, UpstreamServiceError
from paas.services.auth import TokenClaims
from paas.services.llm import LLMProvider
from paas.services.template_variables import (
    VariableContext,
    resolve_variables,
    variable_values,
)
from paas.services.tenancy import TenantContext

logger = logging.getLogger(__name__)

LLMFactory = Callable[[], LLMProvider]

FILL_TEMPLATE_SYSTEM_MESSAGE = """\
You are a clinical documentation assistant. Fill the provided HTML template using ONLY information from the dialogue/transcription. The transcription may not be formatted as a clean dialogue; infer the speakers, there are at least 2 personas.

CRITICAL HTML PRESERVATION RULES:
1. Return the COMPLETE HTML exactly as provided, with ALL tags preserved (<p>, <strong>, <br>, etc.)
2. DO NOT modify, add, or remove ANY HTML tags
3. DO NOT escape HTML (no &lt; or &gt;)
4. DO NOT add markdown formatting (**, ##, -, etc.)
5. Keep ALL empty paragraphs <p></p> for spacing
6. Keep ALL <strong> tags and other formatting tags

CRITICAL CONTENT RULES - WHAT YOU CAN AND CANNOT CHANGE:

YOU CAN ONLY CHANGE:
- Content inside [square brackets] - these are placeholders to fill with transcription data
- Content inside (round brackets) - these are instructions, follow them and remove the brackets

YOU MUST NEVER CHANGE:
- Any text OUTSIDE of [brackets] or (parentheses)
- Patient names, doctor names, dates, or any other data already filled in the template
- These are REAL DATA from the system database, NOT from the transcription
- Even if the transcription mentions different names, DO NOT change what's already in the template

Example:
Template: "<strong>Patient Name:</strong> John Smith <strong>Doctor:</strong> Dr. Jane Doe [Chief Complaint]"
Transcription: "Hi, I'm Bob. Dr. Sarah told me to come in. I have tooth pain."
Correct Output: "<strong>Patient Name:</strong> John Smith <strong>Doctor:</strong> Dr. Jane Doe tooth pain"
WRONG Output: "<strong>Patient Name:</strong> Bob <strong>Doctor:</strong> Dr. Sarah tooth pain"

Template Syntax:
- Placeholders are wrapped in square brackets [ ]. Replace ONLY the content inside brackets with real information from the dialogue.
- Instructions are wrapped in round brackets ( ). Follow the instruction, then REMOVE the parentheses and instruction text from output.
- System variables like $variable$ are already replaced, leave any remaining as-is.

Rules:
- Never invent or assume medical information
- Only include content explicitly found in the dialogue or contextual notes
- If a placeholder cannot be filled, leave it as-is or remove just that placeholder (keep surrounding HTML)
- Do not say "this was not mentioned" or "no data available"
- Use structured, complete sentences when replacing placeholders
- Maintain ALL HTML structure exactly as given

CRITICAL: Return ONLY the filled HTML template. No explanations, no code blocks, no wrapping."""

FILL_TEMPLATE_USER_PROMPT = '''\
Session Transcription:
"""
{transcript}
"""

HTML Template to fill:
"""
{template}
"""

Note: You may receive dialogue and template in languages other than English, so do not assume all input will be in English. Always process the content exactly as written in the original input.

Please fill this HTML template using only the information from the transcription above. Return the complete filled HTML.'''

NO_TRANSCRIPTION = "No transcription available"

DEFAULT_CHAT_SYSTEM_MESSAGES = {
    "en-US": (
        "You are a clinical assistant for $me.clinic$. You help $me.fullName$ "
        "review consultations with $patient.fullName$. Answer only from the "
        "session transcription and the conversation; never invent clinical "
        "facts. Be concise and use clear, professional language."
    ),
    "pt-BR": (
        "Você é um assistente clínico da $me.clinic$. Você ajuda "
        "$me.fullName$ a revisar consultas com $patient.fullName$. Responda "
        "apenas com base na transcrição da sessão e na conversa; nunca invente "
        "fatos clínicos. Seja conciso e use linguagem clara e profissional."
    ),
}

# Opening message used when a chat starts from a session with no history.
SESSION_OPENING_MESSAGE = "Summarize the session transcription."

_FENCE_OPEN_RE = re.compile(r"^\s*```[\w-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```lang ... ``` markdown fence and trim."""
    stripped = _FENCE_OPEN_RE.sub("", text, count=1)
    stripped = _FENCE_CLOSE_RE.sub("", stripped, count=1)
    return stripped.strip()


def build_fill_prompt(transcript: str | None, template_html: str) -> str:
    return FILL_TEMPLATE_USER_PROMPT.format(
        transcript=transcript or NO_TRANSCRIPTION,
        template=template_html,
    )


def default_chat_system_message(locale: str | None) -> str:
    return DEFAULT_CHAT_SYSTEM_MESSAGES.get(locale or "", DEFAULT_CHAT_SYSTEM_MESSAGES["en-US"])


def _tenant_now(timezone: str | None) -> datetime:
    try:
        return datetime.now(ZoneInfo(timezone)) if timezone else datetime.now()
    except ZoneInfoNotFoundError:
        return datetime.now()


@dataclass
class FillResult:
    original_template: str
    filled_template: str
    variables: dict[str, str]
    ai_prompt: str
    system_message: str
    model: str | None = None


@dataclass
class ChatResult:
    response: str
    system_message_used: str
    model: str | None = None


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class _Subject:
    """Session, transcript and patient a request refers to."""

    session: ClinicalSession | None = None
    patient: Patient | None = None
    transcript: str | None = None
    extra: dict[str, str] = field(default_factory=dict)


async def _load_patient(
    db: AsyncSession, patient_id: uuid.UUID | None,
) -> Patient | None:
    if patient_id is None:
        return None
    patient = await db.get(Patient, patient_id)
    if patient is None:
        logger.warning("Patient %s not found; variables left blank", patient_id)
    return patient


async def _variables_for(
    db: AsyncSession,
    claims: TokenClaims,
    tenant: TenantContext,
    subject: _Subject,
) -> dict[str, str]:
    me = await db.get(User, claims.user_id)
    patient = subject.patient
    context = VariableContext(
        patient_first_name=patient.first_name if patient else None,
        patient_last_name=patient.last_name if patient else None,
        has_patient=patient is not None,
        session_created_at=subject.session.created_at if subject.session else None,
        me_first_name=me.first_name if me else None,
        me_last_name=me.last_name if me else None,
        clinic=tenant.name,
        now=_tenant_now(tenant.timezone),
    )
    return variable_values(context)


async def _complete(
    llm_factory: LLMFactory,
    messages: list[dict[str, str]],
    system: str,
) -> tuple[str, str | None]:
    """One LLM call. Returns (text, model)."""
    llm = llm_factory()
    try:
        response = await llm.complete(messages=messages, system=system)
    except PlatformError:
        raise
    except Exception as exc:
        logger.exception("LLM call failed")
        raise UpstreamServiceError(
            "Failed to get a response from the language model",
            code="LLM_ERROR",
            details={"reason": str(exc)},
        ) from exc

    if not response.content or not response.content.strip():
        raise UpstreamServiceError(
            "The language model returned an empty response",
            code="EMPTY_LLM_RESPONSE",
        )
    return response.content, response.model


# ---------------------------------------------------------------------------
# Fill Template
# ---------------------------------------------------------------------------


async def fill_template(
    db: AsyncSession,
    llm_factory: LLMFactory,
    tenant: TenantContext,
    claims: TokenClaims,
    template_id: uuid.UUID,
    session_id: uuid.UUID,
    patient_id: uuid.UUID | None = None,
) -> FillResult:
    """
    Fill an HTML template from a session's transcription.

    Raises:
        NotFoundError: TEMPLATE_NOT_FOUND, SESSION_NOT_FOUND
        UpstreamServiceError: LLM_ERROR, EMPTY_LLM_RESPONSE
        ServiceConfigurationError: LLM_NOT_CONFIGURED
    """
    template = await db.get(Template, template_id)
    if template is None:
        raise NotFoundError("Template not found", code="TEMPLATE_NOT_FOUND")

    clinical_session = await db.get(ClinicalSession, session_id)
    if clinical_session is None:
        raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")

    patient = await _load_patient(db, patient_id or clinical_session.patient_id)
    transcription = clinical_session.transcription
    subject = _Subject(
        session=clinical_session,
        patient=patient,
        transcript=transcription.transcript if transcription else None,
    )

    variables = await _variables_for(db, claims, tenant, subject)
    template_html = resolve_variables(template.content, variables)
    user_prompt = build_fill_prompt(subject.transcript, template_html)

    answer, model = await _complete(
        llm_factory,
        messages=[{"role": "user", "content": user_prompt}],
        system=FILL_TEMPLATE_SYSTEM_MESSAGE,
    )
    filled = strip_code_fences(answer)

    await db.execute(
        update(Template)
        .where(Template.id == template.id)
        .values(usage_count=Template.usage_count + 1)
    )

    logger.info(
        "Filled template %s for session %s in tenant %d (%d chars)",
        template.id, clinical_session.id, tenant.id, len(filled),
    )
    return FillResult(
        original_template=template.content,
        filled_template=filled,
        variables=variables,
        ai_prompt=user_prompt,
        system_message=FILL_TEMPLATE_SYSTEM_MESSAGE,
        model=model,
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


async def get_system_message(db: AsyncSession, locale: str | None) -> str:
    """The tenant's configured chat system message, or the locale default."""
    result = await db.execute(select(AIAgentConfiguration).limit(1))
    config = result.scalar_one_or_none()
    if config is not None and config.system_message:
        return config.system_message
    return default_chat_system_message(locale)


async def save_system_message(db: AsyncSession, system_message: str) -> AIAgentConfiguration:
    result = await db.execute(select(AIAgentConfiguration).limit(1))
    config = result.scalar_one_or_none()
    if config is None:
        config = AIAgentConfiguration(system_message=system_message)
        db.add(config)
    else:
        config.system_message = system_message
    await db.flush()
    return config


async def chat(
    db: AsyncSession,
    llm_factory: LLMFactory,
    tenant: TenantContext,
    claims: TokenClaims,
    messages: list[ChatMessage],
    session_id: uuid.UUID | None = None,
    patient_id: uuid.UUID | None = None,
) -> ChatResult:
    """
    Continue a conversation with the clinical assistant.

    An empty history is only accepted for a session, in which case the
    assistant is asked to summarize the transcript.

    Raises:
        BadRequestError: MESSAGES_REQUIRED, INVALID_MESSAGE
        UpstreamServiceError: LLM_ERROR, EMPTY_LLM_RESPONSE
    """
    if not messages and session_id is None:
        raise BadRequestError(
            "Messages are required when no session is given",
            code="MESSAGES_REQUIRED",
        )
    for message in messages:
        if message.role not in ("user", "assistant") or not message.content:
            raise BadRequestError(
                'Each message must have role "user" or "assistant" and content',
                code="INVALID_MESSAGE",
            )

    subject = _Subject()
    if session_id is not None:
        subject.session = await db.get(ClinicalSession, session_id)
        if subject.session is None:
            logger.warning("Chat session %s not found; continuing without it", session_id)
        else:
            subject.patient = subject.session.patient
            if subject.session.transcription is not None:
                subject.transcript = subject.session.transcription.transcript
    if subject.patient is None:
        subject.patient = await _load_patient(db, patient_id)

    variables = await _variables_for(db, claims, tenant, subject)
    system_message = resolve_variables(
        await get_system_message(db, claims.locale), variables,
    )
    if subject.transcript:
        system_message = (
            f'{system_message}\n\nSession Transcription:\n"""\n{subject.transcript}\n"""'
        )

    history = [{"role": m.role, "content": m.content} for m in messages]
    if not history:
        history = [{"role": "user", "content": SESSION_OPENING_MESSAGE}]

    answer, model = await _complete(llm_factory, messages=history, system=system_message)
    return ChatResult(
        response=answer.strip(),
        system_message_used=system_message,
        model=model,
    )
