"""Task API endpoints: creation, manual transitions and the review sub-flow."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stageflow_core import crud, schemas
from stageflow_core.errors import WorkflowError
from stageflow_core.stage_graph import is_terminal
from stageflow_core.workflow_service import WorkflowService

from ...database import get_db
from ..dependencies import get_actor_id, get_workflow_service, to_http_exception

logger = logging.getLogger("stageflow-core.tasks")

router = APIRouter(tags=["tasks"])


def _task_to_response(task: schemas.TaskSnapshot, stages: list) -> schemas.TaskResponse:
    """Convert TaskSnapshot to TaskResponse schema."""
    return schemas.TaskResponse(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        stage_id=task.stage_id,
        assignee_id=task.assignee_id,
        co_assignees=[schemas.CoAssigneeResponse.model_validate(c) for c in task.co_assignees],
        status=task.status,
        priority=task.priority,
        tags=sorted(task.tags),
        review_state=task.review_state,
        is_in_specific_stage=task.is_in_specific_stage,
        is_completed=is_terminal(stages, task.stage_id),
        previous_stage_id=task.previous_stage_id,
        original_assignee_id=task.original_assignee_id,
        revision_comment=task.revision_comment,
        revision_history=[schemas.RevisionEntryResponse.model_validate(r) for r in task.revision_history],
        parent_id=task.parent_id,
        is_assignee_locked=task.is_assignee_locked,
        start_stage_id=task.start_stage_id,
        start_date=task.start_date,
        due_date=task.due_date,
        completed_at=task.completed_at,
        version=task.version,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def task_response(service: WorkflowService, task: schemas.TaskSnapshot) -> schemas.TaskResponse:
    return _task_to_response(task, service.project_stages(task.project_id))


def _patch_from_update(service: WorkflowService, task_update: schemas.TaskUpdate) -> schemas.TaskPatch:
    """Build the engine patch from the fields the client actually sent."""
    update_data = task_update.model_dump(exclude_unset=True)
    update_data.pop("expected_version", None)

    assignee_name = update_data.pop("assignee_name", None)
    if assignee_name is not None and "assignee_id" not in update_data:
        update_data["assignee_id"] = service.resolve_user(assignee_name)
    elif update_data.get("assignee_id") is not None:
        service.check_user(update_data["assignee_id"])

    assignee_ids = update_data.pop("assignee_ids", None)
    if assignee_ids is not None:
        for user_id in assignee_ids:
            service.check_user(user_id)
        update_data["co_assignee_ids"] = tuple(assignee_ids)
    if update_data.get("tags") is not None:
        update_data["tags"] = frozenset(update_data["tags"])

    return schemas.TaskPatch(**update_data)


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    task_data: schemas.TaskCreate,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
    db: Session = Depends(get_db),
):
    """
    Create a new task.

    - **project_id**: Project UUID
    - **title**: Task title
    - **stage_id**: Stage UUID (defaults to the project's Pending stage)
    - **assignee_ids**: Assignees; the first one is the primary assignee
    - **parent_id**: Parent task for subtasks (optional)
    - **start_stage_id** / **start_date**: Scheduled start (optional)
    """
    if crud.get_project(db, task_data.project_id) is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {task_data.project_id}")

    try:
        task = service.create_task(
            project_id=task_data.project_id,
            title=task_data.title,
            actor_id=actor_id,
            stage_id=task_data.stage_id,
            assignee_ids=task_data.assignee_ids,
            description=task_data.description,
            priority=task_data.priority,
            tags=task_data.tags,
            due_date=task_data.due_date,
            parent_id=task_data.parent_id,
            is_assignee_locked=task_data.is_assignee_locked,
            start_stage_id=task_data.start_stage_id,
            start_date=task_data.start_date,
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: UUID,
    service: WorkflowService = Depends(get_workflow_service),
):
    """Get a task by ID."""
    try:
        task = service.get_task(task_id)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.patch("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: UUID,
    task_update: schemas.TaskUpdate,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Update or move a task.

    Moving to another stage without an assignee assigns the stage's main
    responsible and resets the status to pending. Setting status to complete
    without a stage auto-advances the task (possibly into a review stage).

    - **expected_version**: Version the client read; a stale write returns 409
    """
    try:
        patch = _patch_from_update(service, task_update)
        task = service.update_task(task_id, patch, actor_id, task_update.expected_version)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.post("/{task_id}/complete", response_model=schemas.TaskResponse)
def complete_task(
    task_id: UUID,
    body: Optional[schemas.TaskActionRequest] = None,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Mark a task as complete.

    Equivalent to updating status to 'complete' without a target stage.
    """
    expected_version = body.expected_version if body else None
    try:
        task = service.complete_task(task_id, actor_id, expected_version)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.post("/{task_id}/start", response_model=schemas.TaskResponse)
def start_task(
    task_id: UUID,
    body: Optional[schemas.TaskActionRequest] = None,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Move a task to its start stage (or the next stage)."""
    expected_version = body.expected_version if body else None
    try:
        task = service.start_task(task_id, actor_id, expected_version)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.post("/{task_id}/submit-review", response_model=schemas.TaskResponse)
def submit_for_review(
    task_id: UUID,
    body: Optional[schemas.SubmitReviewRequest] = None,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Park a task in a review stage.

    - **review_stage_id**: Review stage (defaults to the stage's linked review stage)
    """
    body = body or schemas.SubmitReviewRequest()
    try:
        task = service.submit_for_review(task_id, actor_id, body.review_stage_id, body.expected_version)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.post("/{task_id}/approve", response_model=schemas.TaskResponse)
def approve_task(
    task_id: UUID,
    body: Optional[schemas.ApproveRequest] = None,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Approve a task in review.

    - **target_stage_id**: Destination (defaults to the review stage's approval target)
    - **comment**: Optional reviewer comment
    """
    body = body or schemas.ApproveRequest()
    try:
        task = service.approve(task_id, actor_id, body.target_stage_id, body.comment, body.expected_version)
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.post("/{task_id}/request-revision", response_model=schemas.TaskResponse)
def request_revision(
    task_id: UUID,
    body: schemas.RevisionRequest,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Send a task back for rework.

    - **target_stage_id**: Stage to return to (defaults to the stage the task came from)
    - **comment**: Reason for the revision (required)
    """
    try:
        task = service.request_revision(
            task_id,
            body.comment,
            actor_id,
            body.target_stage_id,
            body.expected_version,
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return task_response(service, task)


@router.get("/{task_id}/history", response_model=list[schemas.HistoryEntryResponse])
def get_task_history(
    task_id: UUID,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Get the history of a task, newest first. Works for deleted tasks too."""
    return crud.get_history(db, task_id, entity_type="task", limit=limit)


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: UUID,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Soft-delete a task. Its history is kept."""
    try:
        service.delete_task(task_id, actor_id)
    except WorkflowError as e:
        raise to_http_exception(e)
