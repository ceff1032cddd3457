"""Estimate agent API routes (FastAPI).

Buffered endpoints answer with one JSON document. ``/prompt`` and
``/range-action`` switch to NDJSON when the client sends
``Accept: application/x-ndjson``; ``/stream`` and ``/stream/progress``
always stream.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from ...core.auth import AuthUser
from ..core.streaming import stream_events, wants_stream
from ..deps import get_current_user, get_estimate_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])


# ── Request models ───────────────────────────────────────────────────────

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class EstimateRequest(_Body):
    prompt: Any = None
    project_id: Any = Field(default=None, alias="projectId")
    project_details: Optional[dict] = Field(default=None, alias="projectDetails")
    response_structure: Optional[dict] = Field(default=None, alias="responseStructure")
    additional_requirements: Optional[dict] = Field(default=None, alias="additionalRequirements")


class AdditionalPromptRequest(_Body):
    project_id: Any = Field(default=None, alias="projectId")
    prompt: Any = None
    offset: int = 0
    allow_web_browsing: bool = Field(default=False, alias="allowWebBrowsing")


class RangeActionRequest(_Body):
    project_id: Any = Field(default=None, alias="projectId")
    action: Optional[str] = None
    range: Any = None
    data: Any = None
    prompt: Optional[str] = None
    xml_response: Optional[str] = Field(default=None, alias="xmlResponse")


class ProgressRequest(_Body):
    project_id: Any = Field(default=None, alias="projectId")
    instructions: Any = None
    currency: Optional[str] = None


# ── Routes ───────────────────────────────────────────────────────────────

@router.post("")
async def generate_estimate(
    body: EstimateRequest,
    user: AuthUser = Depends(get_current_user),
    service=Depends(get_estimate_service),
):
    """Create a project from a prompt (markup) or from project details (JSON)."""
    if body.prompt is None and body.project_details is not None:
        return await service.generate_from_details(
            user,
            body.project_details,
            response_structure=body.response_structure,
            additional_requirements=body.additional_requirements,
            project_id=body.project_id,
        )
    return await service.generate_estimate(user, body.prompt)


@router.post("/prompt")
async def additional_prompt(
    body: AdditionalPromptRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    service=Depends(get_estimate_service),
):
    """Apply a follow-up prompt to an existing project."""
    if wants_stream(request):
        events = service.stream_additional_prompt(
            user, body.project_id, body.prompt, body.offset, body.allow_web_browsing
        )
        return stream_events(request, events, user.id)

    return await service.additional_prompt(
        user, body.project_id, body.prompt, body.offset, body.allow_web_browsing
    )


@router.post("/range-action")
async def range_action(
    body: RangeActionRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    service=Depends(get_estimate_service),
):
    """Update, delete or duplicate a row range, or let the model rewrite it."""
    args = (user, body.project_id, body.action, body.range, body.data, body.prompt, body.xml_response)
    if wants_stream(request):
        return stream_events(request, service.stream_range_action(*args), user.id)
    return await service.range_action(*args)


@router.post("/stream")
async def stream_estimate(
    body: EstimateRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    service=Depends(get_estimate_service),
):
    """Streamed estimate generation."""
    events = service.stream_estimate(
        user,
        prompt=body.prompt,
        project_details=body.project_details,
        response_structure=body.response_structure,
        additional_requirements=body.additional_requirements,
    )
    return stream_events(request, events, user.id)


@router.post("/stream/progress")
async def stream_progress(
    body: ProgressRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    service=Depends(get_estimate_service),
):
    """Apply the given instructions, streaming progress after each batch."""
    events = service.stream_apply_instructions(user, body.project_id, body.instructions, body.currency)
    return stream_events(request, events, user.id)


@router.get("/stream/health")
async def stream_health():
    return {
        "status": "ok",
        "streaming": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
