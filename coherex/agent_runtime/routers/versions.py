"""Agent version endpoints and the owner side of preview links.

Thin HTTP adapter -- delegates to the versions and previews managers.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status

from coherex.agent_runtime.deps import AppSettings, DbSession
from coherex.agent_runtime.managers import agents as agent_manager
from coherex.agent_runtime.managers import previews as preview_manager
from coherex.agent_runtime.managers import versions as version_manager
from coherex.agent_runtime.models.api import (
    ApiResponse,
    PreviewLinkCreate,
    PreviewLinkResponse,
    VersionResponse,
    VersionUpdate,
)
from coherex.agent_runtime.settings import CoherexSettings

router = APIRouter(prefix="/agents/{agent_id}/versions", tags=["versions"])


def _base_url(request: Request, settings: CoherexSettings) -> str:
    return settings.public_base_url or str(request.base_url)


@router.get("", response_model=ApiResponse[list[VersionResponse]])
async def list_versions(agent_id: str, db: DbSession) -> ApiResponse[list[VersionResponse]]:
    """All versions of the agent, highest number first."""
    await agent_manager.get_agent(db, agent_id)
    versions = await version_manager.list_versions(db, agent_id)
    return ApiResponse(data=[VersionResponse.model_validate(v) for v in versions])


@router.post("", response_model=ApiResponse[VersionResponse], status_code=status.HTTP_201_CREATED)
async def create_draft(agent_id: str, db: DbSession) -> ApiResponse[VersionResponse]:
    """Snapshot the agent's configuration as a draft, or return the existing draft."""
    version = await version_manager.create_draft_version(db, agent_id)
    return ApiResponse(data=VersionResponse.model_validate(version))


@router.get("/{version_id}", response_model=ApiResponse[VersionResponse])
async def get_version(agent_id: str, version_id: str, db: DbSession) -> ApiResponse[VersionResponse]:
    version = await version_manager.get_version(db, agent_id, version_id)
    return ApiResponse(data=VersionResponse.model_validate(version))


@router.put("/{version_id}", response_model=ApiResponse[VersionResponse])
async def update_draft(
    agent_id: str,
    version_id: str,
    body: VersionUpdate,
    db: DbSession,
) -> ApiResponse[VersionResponse]:
    version = await version_manager.update_draft_version(db, agent_id, version_id, body)
    return ApiResponse(data=VersionResponse.model_validate(version), message="Draft updated")


@router.delete("/{version_id}", response_model=ApiResponse[None])
async def delete_draft(agent_id: str, version_id: str, db: DbSession) -> ApiResponse[None]:
    await version_manager.delete_draft_version(db, agent_id, version_id)
    return ApiResponse(message="Draft deleted")


@router.post("/{version_id}/publish", response_model=ApiResponse[VersionResponse])
async def publish_version(agent_id: str, version_id: str, db: DbSession) -> ApiResponse[VersionResponse]:
    """Promote the version to production and apply it to the agent."""
    version = await version_manager.publish_version(db, agent_id, version_id)
    return ApiResponse(
        data=VersionResponse.model_validate(version),
        message=f"Version {version.version_number} published",
    )


@router.post("/{version_id}/rollback", response_model=ApiResponse[VersionResponse])
async def rollback_to_version(agent_id: str, version_id: str, db: DbSession) -> ApiResponse[VersionResponse]:
    """Create a new draft from this version's configuration."""
    source = await version_manager.get_version(db, agent_id, version_id)
    source_number = source.version_number
    draft = await version_manager.rollback_to_version(db, agent_id, version_id)
    return ApiResponse(
        data=VersionResponse.model_validate(draft),
        message=f"Created draft version {draft.version_number} based on version {source_number}",
    )


# -- Preview links -------------------------------------------------------------


@router.post(
    "/{version_id}/previews",
    response_model=ApiResponse[PreviewLinkResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_preview_link(
    agent_id: str,
    version_id: str,
    body: PreviewLinkCreate,
    request: Request,
    db: DbSession,
    settings: AppSettings,
) -> ApiResponse[PreviewLinkResponse]:
    link = await preview_manager.create_preview_link(db, agent_id, version_id, body)
    return ApiResponse(data=preview_manager.link_response(link, _base_url(request, settings)))


@router.get("/{version_id}/previews", response_model=ApiResponse[list[PreviewLinkResponse]])
async def list_preview_links(
    agent_id: str,
    version_id: str,
    request: Request,
    db: DbSession,
    settings: AppSettings,
) -> ApiResponse[list[PreviewLinkResponse]]:
    """Unrevoked links of the version, expired ones included, newest first."""
    links = await preview_manager.list_preview_links(db, agent_id, version_id)
    base_url = _base_url(request, settings)
    return ApiResponse(data=[preview_manager.link_response(link, base_url) for link in links])


@router.delete("/{version_id}/previews/{link_id}", response_model=ApiResponse[PreviewLinkResponse])
async def revoke_preview_link(
    agent_id: str,
    version_id: str,
    link_id: str,
    request: Request,
    db: DbSession,
    settings: AppSettings,
) -> ApiResponse[PreviewLinkResponse]:
    link = await preview_manager.revoke_preview_link(db, agent_id, version_id, link_id)
    return ApiResponse(
        data=preview_manager.link_response(link, _base_url(request, settings)),
        message="Preview link revoked",
    )
