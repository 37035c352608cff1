"""Users API endpoints (directory of assignees; authentication lives upstream)."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stageflow_core import crud, schemas
from stageflow_core.errors import WorkflowError

from ...database import get_db
from ..dependencies import to_http_exception

logger = logging.getLogger("stageflow-core.users")

router = APIRouter(tags=["users"])


@router.post("/", response_model=schemas.UserResponse, status_code=201)
def create_user(user: schemas.UserCreate, db: Session = Depends(get_db)):
    """Create a user."""
    try:
        return crud.create_user(db, user)
    except WorkflowError as e:
        raise to_http_exception(e)


@router.get("/", response_model=list[schemas.UserResponse])
def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """List users."""
    return crud.get_users(db, skip=skip, limit=limit)


@router.get("/{user_id}", response_model=schemas.UserResponse)
def get_user(user_id: UUID, db: Session = Depends(get_db)):
    """Get a user by ID."""
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return user
