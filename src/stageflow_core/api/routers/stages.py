"""Stages API endpoints (managers create, edit and delete workflow stages)."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stageflow_core import crud, schemas
from stageflow_core.errors import WorkflowError

from ...database import get_db
from ..dependencies import get_actor_id, to_http_exception

logger = logging.getLogger("stageflow-core.stages")

router = APIRouter(tags=["stages"])


@router.post("/", response_model=schemas.StageResponse, status_code=201)
def create_stage(
    stage: schemas.StageCreate,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """
    Create a stage.

    - **title**: Stage title ("Pending", "Archive"/"Completed" get their special kind)
    - **is_review_stage**: Mark as a review stage
    - **kind**: Explicit kind (overrides the title-derived one)
    - **order**: Display order (defaults to after the last work stage)
    - **linked_review_stage_id**: Review stage tasks enter on completion
    - **approved_target_stage_id**: Default destination when approving from this stage
    - **main_responsible_id**: Default assignee for tasks entering this stage
    """
    try:
        return crud.create_stage(db, stage, user_id=actor_id)
    except WorkflowError as e:
        raise to_http_exception(e)


@router.get("/{stage_id}", response_model=schemas.StageResponse)
def get_stage(stage_id: UUID, db: Session = Depends(get_db)):
    """Get a stage by ID."""
    stage = crud.get_stage(db, stage_id)
    if not stage:
        raise HTTPException(status_code=404, detail=f"Stage not found: {stage_id}")
    return stage


@router.patch("/{stage_id}", response_model=schemas.StageResponse)
def update_stage(
    stage_id: UUID,
    stage_update: schemas.StageUpdate,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Update a stage. Renaming re-derives its kind unless ``kind`` is given."""
    try:
        stage = crud.update_stage(db, stage_id, stage_update, user_id=actor_id)
    except WorkflowError as e:
        raise to_http_exception(e)
    if not stage:
        raise HTTPException(status_code=404, detail=f"Stage not found: {stage_id}")
    return stage


@router.delete("/{stage_id}", status_code=204)
def delete_stage(
    stage_id: UUID,
    actor_id: Optional[UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """
    Delete a stage.

    Refused with 409 while tasks or other stages still reference it.
    """
    try:
        deleted = crud.delete_stage(db, stage_id, user_id=actor_id)
    except WorkflowError as e:
        raise to_http_exception(e)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Stage not found: {stage_id}")
