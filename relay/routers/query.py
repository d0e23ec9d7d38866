"""Direct query API returning the structured reply decision."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..answers.citations import build_citation_blocks
from ..answers.client import AnswerClient
from ..answers.gate import decide
from ..config import get_settings
from ..core.auth import TenantTokenPayload, get_tenant_context
from ..core.limits import limiter, query_rate_limit
from ..dependencies import get_answer_client, get_audit_writer, get_resolver
from ..errors import BackendUnavailable, ErrorKind
from ..events.models import Error
from ..formatting import format_api
from ..records.audit import AuditWriter
from ..tenants.resolver import TenantResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["query"])

QUERY_MAX_LENGTH = 5000


class QueryIn(BaseModel):
    query: str = Field(..., min_length=1, max_length=QUERY_MAX_LENGTH)


@router.post("/query")
@limiter.limit(query_rate_limit)
def run_query(
    request: Request,
    payload: QueryIn,
    claims: Annotated[TenantTokenPayload, Depends(get_tenant_context)],
    answers: Annotated[AnswerClient, Depends(get_answer_client)],
    resolver: Annotated[TenantResolver, Depends(get_resolver)],
    audit: Annotated[AuditWriter, Depends(get_audit_writer)],
):
    """Answer ``query`` for the token's tenant, gated like the chat channels."""

    settings = get_settings()
    tenant_id = str(claims["tenant_id"])
    user_id = str(claims["user_id"])
    try:
        result = answers.query(
            payload.query,
            user_id=user_id,
            system_prompt_override=resolver.persona_for(tenant_id),
        )
    except BackendUnavailable as exc:
        logger.error("Direct query for tenant %s failed: %s", tenant_id, exc)
        return JSONResponse(status_code=502, content=format_api(Error(ErrorKind.UPSTREAM_FAILURE)))

    blocks = build_citation_blocks(
        result.citations,
        query=payload.query,
        response_text=result.text,
        fallback_score=result.confidence_score,
        green=settings.citation_green_threshold,
        amber=settings.citation_amber_threshold,
        document_base_url=settings.document_base_url,
    )
    decision = decide(
        result.confidence_score,
        result.explicit_silence,
        settings.silence_threshold,
        text=result.text,
        citation_blocks=blocks,
        suggestions=result.suggestions,
    )
    body = format_api(decision)
    audit.record_query(
        tenant_id=tenant_id,
        actor_id=user_id,
        channel="api",
        query=payload.query,
        response=body.get("answer") or "",
        confidence=decision.confidence,
        decision=decision.kind,
        delivered=True,
    )
    return body
