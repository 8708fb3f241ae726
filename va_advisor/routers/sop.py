"""SOP generator router: generate, saved list, edits, versions and download."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from va_advisor.auth.dependencies import get_current_user, require_organization_id
from va_advisor.db.supabase import get_async_supabase_client_async
from va_advisor.models.sop import (
    GenerateSOPRequest,
    GenerateSOPResponse,
    RestoreSOPResponse,
    SavedSOPList,
    SOPDownloadRequest,
    SOPGroupList,
    SOPVersionHistory,
    UpdateSOPRequest,
    UpdateSOPResponse,
)
from va_advisor.services.analysis_store import AnalysisStore
from va_advisor.services.enrichment_worker import get_enrichment_worker
from va_advisor.services.knowledge_base_store import KnowledgeBaseStore
from va_advisor.services.llm import LLMError, get_llm_client
from va_advisor.services.pdf_report import render_sop_pdf, sop_filename
from va_advisor.services.sop_generation import SOPGenerationError, markdown_to_html
from va_advisor.services.sop_service import SOPService, SOPStateError
from va_advisor.services.sop_store import SOPAccessError, SOPNotFoundError, SOPStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sop", tags=["sop"])


async def _service(with_llm: bool = True) -> SOPService:
    supabase = await get_async_supabase_client_async()
    return SOPService(
        get_llm_client() if with_llm else None,
        SOPStore(supabase),
        KnowledgeBaseStore(supabase),
        get_enrichment_worker(),
        analysis_store=AnalysisStore(supabase),
    )


def _not_found_or_forbidden(e: Exception) -> HTTPException:
    if isinstance(e, SOPAccessError):
        return HTTPException(status_code=403, detail="You do not have access to this SOP.")
    return HTTPException(status_code=404, detail="SOP not found.")


# ------------------------------------------------------------------
# Generate and edit
# ------------------------------------------------------------------


@router.post("/generate", response_model=None)
async def generate_sop(
    request: GenerateSOPRequest,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> GenerateSOPResponse | JSONResponse:
    """
    Generate an SOP from a process description.

    Nothing is stored unless ``save_as_draft`` or ``save_and_publish`` is
    set. With ``existing_sop_html`` only the title is required and the
    HTML is saved as given.
    """
    has_html = bool(request.existing_sop_html and request.existing_sop_html.strip())
    missing = request.form_data.missing_field(title_only=has_html)
    if missing:
        raise HTTPException(status_code=400, detail=f"{missing} is required.")

    try:
        service = await _service()
        return await service.generate(request, organization_id, current_user["user_id"])
    except LLMError as e:
        return JSONResponse(status_code=500, content=e.to_dict())
    except SOPGenerationError as e:
        logger.error(f"SOP generation failed for org {organization_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to generate SOP", "details": str(e)},
        )


@router.post("/update", response_model=None)
async def update_sop(
    request: UpdateSOPRequest,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> UpdateSOPResponse | JSONResponse:
    """Save edited SOP markdown as a new version, optionally with AI suggestions."""
    try:
        service = await _service()
        return await service.update(request, organization_id, current_user["user_id"])
    except (SOPNotFoundError, SOPAccessError) as e:
        raise _not_found_or_forbidden(e)
    except SOPGenerationError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to convert SOP to HTML", "details": str(e)},
        )
    except LLMError as e:
        return JSONResponse(status_code=500, content=e.to_dict())


# ------------------------------------------------------------------
# Saved SOPs
# ------------------------------------------------------------------


@router.get("/saved", response_model=None)
async def list_saved(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    include_all_versions: bool = Query(False),
    group_by_sop: bool = Query(False),
    sort_by: Literal["recent", "oldest"] = Query("recent"),
    organization_id: str = Depends(require_organization_id),
) -> SavedSOPList | SOPGroupList:
    """Current versions and drafts, every version, or one group per SOP chain."""
    store = SOPStore(await get_async_supabase_client_async())
    if group_by_sop:
        return await store.list_grouped(organization_id, page=page, limit=limit, sort=sort_by)
    return await store.list_sops(
        organization_id,
        page=page,
        limit=limit,
        include_all_versions=include_all_versions,
        sort=sort_by,
    )


@router.get("/{sop_id}/versions")
async def list_versions(
    sop_id: str,
    organization_id: str = Depends(require_organization_id),
) -> SOPVersionHistory:
    service = await _service(with_llm=False)
    try:
        return await service.versions(sop_id, organization_id)
    except (SOPNotFoundError, SOPAccessError) as e:
        raise _not_found_or_forbidden(e)


@router.post("/{sop_id}/restore")
async def restore_version(
    sop_id: str,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> RestoreSOPResponse:
    """Make an earlier version current again by copying it into a new version."""
    service = await _service(with_llm=False)
    try:
        return await service.restore(sop_id, organization_id, current_user["user_id"])
    except (SOPNotFoundError, SOPAccessError) as e:
        raise _not_found_or_forbidden(e)
    except SOPStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ------------------------------------------------------------------
# Download
# ------------------------------------------------------------------


@router.post("/download")
async def download(
    request: SOPDownloadRequest,
    current_user: dict = Depends(get_current_user),
) -> Response:
    """Render SOP HTML (or markdown) to PDF."""
    content = request.sop_content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="SOP content is required.")
    html = content if "<" in content else markdown_to_html(content)

    title = request.title.strip() or "Standard Operating Procedure"
    pdf = render_sop_pdf(html, title)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{sop_filename(title)}"'},
    )
