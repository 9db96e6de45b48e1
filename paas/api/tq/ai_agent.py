# =============================================================================
# TQ AI Agent — Template Filling & Clinical Chat
# =============================================================================
#
#   POST /ai-agent/fill-template   — fill an HTML template from a transcript
#   POST /ai-agent/chat            — conversation about a session
#   GET  /ai-agent/configuration   — the tenant's chat system message
#   PUT  /ai-agent/configuration   — replace it (tenant admins)
#
# The LLM routes count against the "ai" rate-limit bucket
# (ai_rate_limit_per_15min). The bucket dependency is declared on the route
# so it runs after the router's access check and is keyed by user.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import (
    get_llm_factory,
    get_tenant_context,
    get_tenant_session,
    get_tenant_user,
    rate_limit,
    require_role,
)
from paas.models.requests import AgentConfigurationRequest, ChatRequest, FillTemplateRequest
from paas.models.responses import AgentConfigurationResponse, ChatResponse, FillTemplateResponse
from paas.services import ai_agent
from paas.services.ai_agent import ChatMessage, LLMFactory
from paas.services.auth import TokenClaims
from paas.services.tenancy import TenantContext

router = APIRouter(prefix="/ai-agent", tags=["TQ AI Agent"])


@router.post(
    "/fill-template",
    response_model=FillTemplateResponse,
    dependencies=[Depends(rate_limit("ai"))],
    summary="Fill a template from a session transcript",
)
async def fill_template(
    request: FillTemplateRequest,
    claims: TokenClaims = Depends(get_tenant_user),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
    llm_factory: LLMFactory = Depends(get_llm_factory),
) -> FillTemplateResponse:
    result = await ai_agent.fill_template(
        session,
        llm_factory,
        tenant,
        claims,
        template_id=request.template_id,
        session_id=request.session_id,
        patient_id=request.patient_id,
    )
    return FillTemplateResponse(
        original_template=result.original_template,
        filled_template=result.filled_template,
        variables=result.variables,
        ai_prompt=result.ai_prompt,
        system_message=result.system_message,
        model=result.model,
    )


@router.post(
    "/chat",
    response_model=ChatResponse,
    dependencies=[Depends(rate_limit("ai"))],
    summary="Chat with the clinical assistant",
)
async def chat(
    request: ChatRequest,
    claims: TokenClaims = Depends(get_tenant_user),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
    llm_factory: LLMFactory = Depends(get_llm_factory),
) -> ChatResponse:
    result = await ai_agent.chat(
        session,
        llm_factory,
        tenant,
        claims,
        [ChatMessage(role=m.role, content=m.content) for m in request.messages],
        session_id=request.session_id,
        patient_id=request.patient_id,
    )
    return ChatResponse(
        response=result.response,
        system_message_used=result.system_message_used,
        model=result.model,
    )


@router.get("/configuration", response_model=AgentConfigurationResponse)
async def get_configuration(
    claims: TokenClaims = Depends(get_tenant_user),
    session: AsyncSession = Depends(get_tenant_session),
) -> AgentConfigurationResponse:
    system_message = await ai_agent.get_system_message(session, claims.locale)
    return AgentConfigurationResponse(
        system_message=system_message,
        is_default=system_message == ai_agent.default_chat_system_message(claims.locale),
    )


@router.put("/configuration", response_model=AgentConfigurationResponse)
async def update_configuration(
    request: AgentConfigurationRequest,
    claims: TokenClaims = Depends(require_role("admin")),
    session: AsyncSession = Depends(get_tenant_session),
) -> AgentConfigurationResponse:
    config = await ai_agent.save_system_message(session, request.system_message)
    return AgentConfigurationResponse(system_message=config.system_message, is_default=False)
