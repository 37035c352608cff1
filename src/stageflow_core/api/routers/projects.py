"""Projects API endpoints: projects, their stages, tasks, review queue and suggestion pool."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stageflow_core import crud, schemas
from stageflow_core.errors import WorkflowError
from stageflow_core.workflow_service import WorkflowService

from ...database import get_db
from ..dependencies import get_actor_id, get_workflow_service, to_http_exception
from .tasks import _task_to_response

logger = logging.getLogger("stageflow-core.projects")

router = APIRouter(tags=["projects"])


def _get_project_or_404(db: Session, project_id: UUID):
    project = crud.get_project(db, project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


@router.post("/", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """
    Create a new project.

    The Suggested Task, Pending and Archive stages are created with it.
    """
    result = crud.create_project(db, name=project.name, description=project.description, user_id=actor_id)
    logger.info(f"Created project '{result.name}' (ID: {result.id})")
    return result


@router.get("/", response_model=list[schemas.ProjectResponse])
def list_projects(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """List projects."""
    return crud.get_projects(db, skip=skip, limit=limit)


@router.get("/{project_id}", response_model=schemas.ProjectResponse)
def get_project(project_id: UUID, db: Session = Depends(get_db)):
    """Get a project by ID."""
    return _get_project_or_404(db, project_id)


@router.get("/{project_id}/stages", response_model=list[schemas.StageResponse])
def list_project_stages(project_id: UUID, db: Session = Depends(get_db)):
    """
    Get the stages of a project in workflow order.

    Suggestion and intake stages always come first, terminal stages last.
    """
    _get_project_or_404(db, project_id)
    return crud.get_project_stages(db, project_id)


@router.post("/{project_id}/stages/defaults", response_model=list[schemas.StageResponse])
def ensure_default_stages(
    project_id: UUID,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Create whichever of the Suggested Task, Pending and Archive stages the project lacks."""
    _get_project_or_404(db, project_id)
    return crud.ensure_default_stages(db, project_id, user_id=actor_id)


@router.get("/{project_id}/tasks", response_model=list[schemas.TaskResponse])
def list_project_tasks(
    project_id: UUID,
    stage_id: Optional[UUID] = Query(None, description="Only tasks in this stage"),
    service: WorkflowService = Depends(get_workflow_service),
    db: Session = Depends(get_db),
):
    """List the live tasks of a project."""
    _get_project_or_404(db, project_id)
    stages = service.project_stages(project_id)
    return [_task_to_response(t, stages) for t in service.list_tasks(project_id, stage_id)]


@router.get("/{project_id}/review-queue", response_model=list[schemas.TaskResponse])
def get_review_queue(
    project_id: UUID,
    service: WorkflowService = Depends(get_workflow_service),
    db: Session = Depends(get_db),
):
    """Tasks parked in a review stage waiting for approval or revision."""
    _get_project_or_404(db, project_id)
    stages = service.project_stages(project_id)
    return [_task_to_response(t, stages) for t in service.pending_review(project_id)]


@router.get("/{project_id}/suggested-tasks", response_model=list[schemas.SuggestedTaskResponse])
def list_suggested_tasks(project_id: UUID, db: Session = Depends(get_db)):
    """List the suggestion pool of a project."""
    _get_project_or_404(db, project_id)
    return crud.get_suggested_tasks(db, project_id)


@router.post("/{project_id}/suggested-tasks", response_model=schemas.SuggestedTaskResponse, status_code=201)
def create_suggested_task(
    project_id: UUID,
    suggestion: schemas.SuggestedTaskCreate,
    db: Session = Depends(get_db),
):
    """Add a suggestion to the project's pool."""
    try:
        return crud.create_suggested_task(db, project_id, suggestion)
    except WorkflowError as e:
        raise to_http_exception(e)
