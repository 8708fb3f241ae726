"""Job description analysis router."""

import json
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from va_advisor.auth.dependencies import (
    get_current_user,
    get_optional_user,
    get_user_organization_id,
    require_organization_id,
)
from va_advisor.config import get_settings
from va_advisor.db.supabase import get_async_supabase_client_async
from va_advisor.models.analysis import (
    ClarificationResponse,
    DownloadRequest,
    RefineRequest,
    RefineResponse,
    SaveAnalysisRequest,
    SavedAnalysis,
    SavedAnalysisList,
)
from va_advisor.models.intake import IntakeForm
from va_advisor.models.knowledge_base import KnowledgeBaseUsage
from va_advisor.models.learning import SourceType
from va_advisor.services.analysis_store import (
    AnalysisAccessError,
    AnalysisNotFoundError,
    AnalysisStore,
)
from va_advisor.services.enrichment_worker import EnrichmentRequest, get_enrichment_worker
from va_advisor.services.jd_analysis import JDAnalysisService, SOPUpload
from va_advisor.services.knowledge_base_store import KnowledgeBaseStore
from va_advisor.services.llm import LLMError, get_llm_client
from va_advisor.services.pdf_report import render_analysis_pdf, report_filename
from va_advisor.services.refinement import (
    FeedbackRejectedError,
    MissingPackageError,
    RefinementError,
    RefinementService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jd", tags=["jd"])


async def _owned_analysis(
    store: AnalysisStore, analysis_id: str, organization_id: str
) -> SavedAnalysis:
    try:
        return await store.get_owned(analysis_id, organization_id)
    except AnalysisNotFoundError:
        raise HTTPException(status_code=404, detail="Analysis not found")
    except AnalysisAccessError:
        raise HTTPException(status_code=403, detail="You do not have access to this analysis.")


def _source_id(knowledge_base_id: str) -> str:
    return f"jd-analysis-{int(time.time() * 1000)}-{knowledge_base_id[:8]}"


# ------------------------------------------------------------------
# Analysis
# ------------------------------------------------------------------


@router.post("/analyze")
async def analyze(
    intake_json: str = Form(..., description="Intake form as JSON"),
    sop_file: Optional[UploadFile] = File(None, description="Optional SOP document"),
    current_user: Optional[dict] = Depends(get_optional_user),
):
    """
    Run the analysis pipeline and stream NDJSON progress.

    Each line is ``{"type": "progress", "message"}`` until exactly one
    ``{"type": "result", "data"}`` or ``{"type": "error", ...}`` line.
    Anonymous callers get an analysis without knowledge-base context.
    """
    try:
        intake = IntakeForm.model_validate(json.loads(intake_json))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.info(f"Rejected intake: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid intake data"})
    if not intake.is_valid:
        return JSONResponse(status_code=400, content={"error": "Invalid intake data"})

    try:
        llm = get_llm_client()
    except LLMError as e:
        return JSONResponse(status_code=500, content=e.to_dict())

    organization_id = None
    kb_store = None
    if current_user:
        try:
            organization_id = await get_user_organization_id(current_user["user_id"])
            kb_store = KnowledgeBaseStore(await get_async_supabase_client_async())
        except Exception as e:
            logger.error(f"Organization lookup failed, analyzing without KB: {e}")
            organization_id = None
            kb_store = None

    sop = None
    if sop_file is not None and sop_file.filename:
        sop = SOPUpload(
            content=await sop_file.read(),
            filename=sop_file.filename,
            content_type=sop_file.content_type,
        )

    service = JDAnalysisService(llm, kb_store, agency_name=get_settings().agency_name)
    return StreamingResponse(
        service.stream(intake, organization_id=organization_id, sop=sop),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache"},
    )


@router.patch("/analyze", response_model=None)
async def refine(
    request: RefineRequest,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> RefineResponse | ClarificationResponse | JSONResponse:
    """
    Refine a saved analysis from client feedback.

    Vague feedback returns ``clarification_needed`` questions; spam or
    irrelevant feedback is rejected with 400.
    """
    if not request.feedback.strip() or not request.analysis_id:
        raise HTTPException(status_code=400, detail="Feedback and analysisId are required")
    if not request.refinement_areas:
        raise HTTPException(
            status_code=400, detail="At least one refinement area must be selected"
        )

    store = AnalysisStore(await get_async_supabase_client_async())
    analysis = await _owned_analysis(store, request.analysis_id, organization_id)

    try:
        service = RefinementService(get_llm_client(), store, agency_name=get_settings().agency_name)
        return await service.refine(
            analysis,
            request.feedback,
            request.refinement_areas,
            user_id=current_user["user_id"],
        )
    except MissingPackageError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FeedbackRejectedError as e:
        return JSONResponse(status_code=400, content=e.to_dict())
    except RefinementError as e:
        logger.error(f"Refinement of {analysis.id} failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to refine analysis", "details": str(e)},
        )
    except LLMError as e:
        return JSONResponse(status_code=500, content=e.to_dict())


# ------------------------------------------------------------------
# Saved analyses
# ------------------------------------------------------------------


@router.post("/save", status_code=201)
async def save_analysis(
    request: SaveAnalysisRequest,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> SavedAnalysis:
    """Save an analysis result as version 1 of a new chain."""
    supabase = await get_async_supabase_client_async()
    store = AnalysisStore(supabase)

    kb_block = request.analysis.get("knowledgeBase") or {}
    usage = KnowledgeBaseUsage(
        used=bool(kb_block.get("used")),
        version=kb_block.get("version"),
        snapshot=kb_block.get("snapshot"),
        organization_id=kb_block.get("organizationId"),
    )
    try:
        kb = await KnowledgeBaseStore(supabase).get_for_organization(organization_id)
    except Exception as e:
        logger.error(f"KB lookup failed for org {organization_id}, saving without KB: {e}")
        kb = None

    saved = await store.create(
        organization_id,
        current_user["user_id"],
        request.title,
        request.intake_data,
        request.analysis,
        knowledge_base_id=kb.id if kb else None,
        knowledge_base=usage,
    )

    if kb is not None:
        get_enrichment_worker().publish(
            EnrichmentRequest(
                source_type=SourceType.JOB_DESCRIPTION,
                source_id=_source_id(kb.id),
                knowledge_base_id=kb.id,
                triggered_by=current_user["user_id"],
                payload={"analysis": request.analysis},
            )
        )
    return saved


@router.get("/saved")
async def list_saved(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    finalized: Optional[bool] = Query(None, description="Filter by finalized state"),
    organization_id: str = Depends(require_organization_id),
) -> SavedAnalysisList:
    """Latest version of each analysis chain, newest first."""
    store = AnalysisStore(await get_async_supabase_client_async())
    return await store.list_latest(organization_id, page=page, limit=limit, finalized=finalized)


@router.get("/analysis/{analysis_id}")
async def get_analysis(
    analysis_id: str,
    organization_id: str = Depends(require_organization_id),
) -> dict:
    """A saved analysis with its chain's refinement conversation."""
    store = AnalysisStore(await get_async_supabase_client_async())
    analysis = await _owned_analysis(store, analysis_id, organization_id)
    refinements = await store.list_refinements(analysis.chain_root_id)
    return {
        "analysis": analysis.model_dump(mode="json"),
        "refinements": [m.model_dump(mode="json") for m in refinements],
    }


@router.delete("/analysis/{analysis_id}")
async def delete_analysis(
    analysis_id: str,
    organization_id: str = Depends(require_organization_id),
) -> dict:
    store = AnalysisStore(await get_async_supabase_client_async())
    await _owned_analysis(store, analysis_id, organization_id)
    await store.delete(analysis_id)
    return {"message": "Analysis deleted successfully"}


@router.post("/analysis/{analysis_id}/finalize")
async def finalize_analysis(
    analysis_id: str,
    organization_id: str = Depends(require_organization_id),
) -> SavedAnalysis:
    store = AnalysisStore(await get_async_supabase_client_async())
    await _owned_analysis(store, analysis_id, organization_id)
    return await store.finalize(analysis_id)


# ------------------------------------------------------------------
# Download
# ------------------------------------------------------------------


@router.post("/download")
async def download(
    request: DownloadRequest,
    current_user: dict = Depends(get_current_user),
) -> Response:
    """Render an analysis result to PDF."""
    pdf = render_analysis_pdf(request.analysis, subtitle=request.title)
    filename = report_filename(request.analysis)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
