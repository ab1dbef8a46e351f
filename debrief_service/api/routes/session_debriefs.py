"""API routes for session debriefs."""
from fastapi import APIRouter, Depends, Query

from debrief_service.api.routes.dependencies import (
    get_current_user_id,
    get_debrief_service,
    get_request_id,
)
from debrief_service.models.enums import DebriefTrigger
from debrief_service.schemas.debrief import (
    BulkDebriefErrorResponse,
    BulkGenerateDebriefRequest,
    BulkGenerateDebriefResponse,
    DebriefInteractionRequest,
    GenerateDebriefRequest,
    GenerateDebriefResponse,
    SessionDebriefResponse,
    UpdateDebriefMetadataRequest,
)
from debrief_service.services.session_debrief import DebriefResult, SessionDebriefService

router = APIRouter()


def _to_generate_response(result: DebriefResult) -> GenerateDebriefResponse:
    return GenerateDebriefResponse(
        debrief=SessionDebriefResponse.model_validate(result.debrief),
        content=result.content,
    )


@router.post("/generate", response_model=GenerateDebriefResponse)
async def generate_debrief(
    body: GenerateDebriefRequest,
    user_id: str = Depends(get_current_user_id),
    request_id: str | None = Depends(get_request_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    """Generate a debrief for a session, or return the active one with skipIfActive."""
    result = await service.generate_and_persist(
        user_id,
        body.session_id,
        locale=body.locale,
        timezone=body.timezone,
        skip_if_active=body.skip_if_active,
        trigger=DebriefTrigger.MANUAL,
        request_id=request_id,
    )
    return _to_generate_response(result)


@router.post("/regenerate", response_model=GenerateDebriefResponse)
async def regenerate_debrief(
    body: GenerateDebriefRequest,
    user_id: str = Depends(get_current_user_id),
    request_id: str | None = Depends(get_request_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    """Always produce a new version; skipIfActive is ignored."""
    result = await service.generate_and_persist(
        user_id,
        body.session_id,
        locale=body.locale,
        timezone=body.timezone,
        skip_if_active=False,
        trigger=DebriefTrigger.REGENERATE,
        request_id=request_id,
    )
    return _to_generate_response(result)


@router.post("/bulk-generate", response_model=BulkGenerateDebriefResponse)
async def bulk_generate_debriefs(
    body: BulkGenerateDebriefRequest,
    user_id: str = Depends(get_current_user_id),
    request_id: str | None = Depends(get_request_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    result = await service.bulk_generate_and_persist(
        user_id,
        body.session_ids,
        locale=body.locale,
        timezone=body.timezone,
        skip_if_active=body.skip_if_active,
        trigger=DebriefTrigger.MANUAL,
        request_id=request_id,
    )
    return BulkGenerateDebriefResponse(
        debriefs=[SessionDebriefResponse.model_validate(d) for d in result.debriefs],
        errors=[
            BulkDebriefErrorResponse(session_id=e.session_id, error=e.error, retryable=e.retryable)
            for e in result.errors
        ],
        skipped=result.skipped,
    )


@router.get("/sessions/{session_id}", response_model=list[SessionDebriefResponse])
async def list_session_debriefs(
    session_id: int,
    include_inactive: bool = Query(False),
    limit: int = Query(10, ge=1, le=25),
    user_id: str = Depends(get_current_user_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    """Versions for one session, active first, then newest."""
    debriefs = await service.list_by_session(user_id, session_id, include_inactive, limit)
    return [SessionDebriefResponse.model_validate(d) for d in debriefs]


@router.get("/recent", response_model=list[SessionDebriefResponse])
async def list_recent_debriefs(
    limit: int = Query(10, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    debriefs = await service.list_recent(user_id, limit)
    return [SessionDebriefResponse.model_validate(d) for d in debriefs]


@router.post("/view", response_model=SessionDebriefResponse)
async def mark_debrief_viewed(
    body: DebriefInteractionRequest,
    user_id: str = Depends(get_current_user_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    debrief = await service.mark_viewed(user_id, body.session_id, body.debrief_id)
    return SessionDebriefResponse.model_validate(debrief)


@router.post("/pin", response_model=SessionDebriefResponse)
async def toggle_debrief_pinned(
    body: DebriefInteractionRequest,
    user_id: str = Depends(get_current_user_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    debrief = await service.toggle_pinned(user_id, body.session_id, body.debrief_id)
    return SessionDebriefResponse.model_validate(debrief)


@router.post("/dismiss", response_model=SessionDebriefResponse)
async def dismiss_debrief(
    body: DebriefInteractionRequest,
    user_id: str = Depends(get_current_user_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    debrief = await service.dismiss(user_id, body.session_id, body.debrief_id)
    return SessionDebriefResponse.model_validate(debrief)


@router.post("/metadata", response_model=SessionDebriefResponse)
async def update_debrief_metadata(
    body: UpdateDebriefMetadataRequest,
    user_id: str = Depends(get_current_user_id),
    service: SessionDebriefService = Depends(get_debrief_service),
):
    debrief = await service.update_metadata(
        user_id, body.session_id, body.metadata, body.debrief_id
    )
    return SessionDebriefResponse.model_validate(debrief)
