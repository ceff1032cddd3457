"""Project read API routes (FastAPI).

Read access to the caller's projects, their line items and the
conversation history written by the estimate agent.
"""

import logging

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from ...core.auth import AuthUser
from ...core.constants import DEFAULT_PAGE_SIZE
from ..deps import get_current_user, get_project_for_user, get_project_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("")
async def list_projects(
    user: AuthUser = Depends(get_current_user),
    pm=Depends(get_project_manager),
):
    """List the caller's projects, newest first."""
    projects = await run_in_threadpool(pm.list_projects, user.id)
    return {"projects": projects, "count": len(projects)}


@router.get("/{project_id}")
async def get_project(project: dict = Depends(get_project_for_user)):
    return project


@router.get("/{project_id}/items")
async def get_items(
    project: dict = Depends(get_project_for_user),
    pm=Depends(get_project_manager),
    offset: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=DEFAULT_PAGE_SIZE),
):
    """Page through line items in creation order."""
    items = await run_in_threadpool(pm.get_line_items, project["id"], offset, limit)
    total = await run_in_threadpool(pm.count_line_items, project["id"])
    next_offset = offset + len(items) if offset + len(items) < total else None
    return {
        "projectId": project["id"],
        "items": items,
        "total": total,
        "offset": offset,
        "nextOffset": next_offset,
    }


@router.get("/{project_id}/conversations")
async def get_conversations(
    project: dict = Depends(get_project_for_user),
    pm=Depends(get_project_manager),
):
    conversations = await run_in_threadpool(pm.get_conversations, project["id"])
    return {"projectId": project["id"], "conversations": conversations}
