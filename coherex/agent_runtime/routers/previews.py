"""Public preview endpoints, addressed by link token.

These are what a preview link's visitor calls.  Thin HTTP adapter --
delegates to the previews manager.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status

from coherex.agent_runtime.deps import DbSession
from coherex.agent_runtime.managers import previews as preview_manager
from coherex.agent_runtime.models.api import (
    ApiResponse,
    FeedbackCreate,
    FeedbackResponse,
    FeedbackSummary,
    PreviewInfo,
    PreviewVerifyRequest,
)

router = APIRouter(prefix="/preview/{token}", tags=["previews"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("", response_model=ApiResponse[PreviewInfo])
async def open_preview(token: str, db: DbSession) -> ApiResponse[PreviewInfo]:
    """Describe the previewed agent version."""
    return ApiResponse(data=await preview_manager.open_preview(db, token))


@router.post("/verify", response_model=ApiResponse[None])
async def verify_password(token: str, body: PreviewVerifyRequest, db: DbSession) -> ApiResponse[None]:
    await preview_manager.verify_password(db, token, body.password)
    return ApiResponse(message="Password verified")


@router.post("/feedback", response_model=ApiResponse[FeedbackResponse], status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    token: str,
    body: FeedbackCreate,
    request: Request,
    db: DbSession,
) -> ApiResponse[FeedbackResponse]:
    feedback = await preview_manager.submit_feedback(
        db,
        token,
        body,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ApiResponse(data=FeedbackResponse.model_validate(feedback), message="Thank you for your feedback")


@router.get("/feedback", response_model=ApiResponse[FeedbackSummary])
async def list_feedback(token: str, db: DbSession) -> ApiResponse[FeedbackSummary]:
    """All feedback left through the link, with rating statistics."""
    return ApiResponse(data=await preview_manager.summarize_feedback(db, token))
