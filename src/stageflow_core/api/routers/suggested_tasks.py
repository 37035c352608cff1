"""Suggested task API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from stageflow_core import schemas
from stageflow_core.errors import NotFoundError, WorkflowError
from stageflow_core.workflow_service import WorkflowService

from ..dependencies import get_actor_id, get_workflow_service, to_http_exception
from .tasks import task_response

logger = logging.getLogger("stageflow-core.suggested_tasks")

router = APIRouter(tags=["suggested-tasks"])


@router.get("/{suggestion_id}", response_model=schemas.SuggestedTaskResponse)
def get_suggested_task(
    suggestion_id: UUID,
    service: WorkflowService = Depends(get_workflow_service),
):
    """Get a suggestion from the pool."""
    suggestion = service.suggestions.get(suggestion_id)
    if suggestion is None:
        raise to_http_exception(NotFoundError("suggested task", suggestion_id))
    return suggestion


@router.post("/{suggestion_id}/promote", response_model=schemas.TaskResponse, status_code=201)
def promote_suggested_task(
    suggestion_id: UUID,
    body: Optional[schemas.PromoteRequest] = None,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Promote a suggestion into a live task.

    The task is created pending, unassigned and tagged "AI Suggestion"; the
    suggestion leaves the pool. A stage from another project returns 400.

    - **target_stage_id**: Destination stage (defaults to the suggestion's default stage)
    """
    target_stage_id = body.target_stage_id if body else None
    try:
        task = service.promote_suggestion(suggestion_id, actor_id, target_stage_id)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)
