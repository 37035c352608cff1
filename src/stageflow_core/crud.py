"""CRUD operations for projects, stages, users and suggested tasks.

Task mutations do not live here: every change to a task goes through the
workflow service so the transition rules are applied.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFoundError, StageInUseError, ValidationError
from .stage_graph import classify_stage_title, missing_default_stages, next_stage_order, ordered_stages

logger = logging.getLogger("stageflow-core.crud")


def _create_history_entry(
    db: Session,
    action: models.HistoryAction,
    entity_id: UUID,
    entity_type: str,
    project_id: Optional[UUID] = None,
    actor_id: Optional[UUID] = None,
    details: Optional[dict] = None,
) -> None:
    """Create a history entry for a project or stage change."""
    history_entry = models.HistoryEntry(
        action=action.value,
        entity_id=entity_id,
        entity_type=entity_type,
        project_id=project_id,
        actor_id=actor_id,
        details=details or {},
    )
    db.add(history_entry)
    db.commit()


def get_history(
    db: Session,
    entity_id: UUID,
    entity_type: str = "task",
    limit: int = 100
) -> list[models.HistoryEntry]:
    """
    Get history entries for an entity, newest first.

    Args:
        db: Database session
        entity_id: Task or stage UUID
        entity_type: Entity type
        limit: Maximum number of entries

    Returns:
        List of history entries
    """
    return (
        db.query(models.HistoryEntry)
        .filter(models.HistoryEntry.entity_id == entity_id, models.HistoryEntry.entity_type == entity_type)
        .order_by(models.HistoryEntry.timestamp.desc())
        .limit(limit)
        .all()
    )


# ============================================================================
# Project CRUD Operations
# ============================================================================

def create_project(
    db: Session,
    name: str,
    description: Optional[str] = None,
    user_id: Optional[UUID] = None,
) -> models.Project:
    """
    Create a new project with its default stages.

    Args:
        db: Database session
        name: Project name
        description: Optional description
        user_id: Optional user ID (creator)

    Returns:
        Created project instance
    """
    db_project = models.Project(name=name, description=description)
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    logger.debug(f"Created project {db_project.id} ({db_project.name})")

    ensure_default_stages(db, db_project.id, user_id=user_id)
    return db_project


def get_project(db: Session, project_id: UUID) -> Optional[models.Project]:
    """
    Get a project by ID.

    Args:
        db: Database session
        project_id: Project UUID

    Returns:
        Project instance or None if not found
    """
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def get_projects(db: Session, skip: int = 0, limit: int = 100) -> list[models.Project]:
    """List projects, oldest first."""
    return db.query(models.Project).order_by(models.Project.created_at).offset(skip).limit(limit).all()


def ensure_default_stages(
    db: Session,
    project_id: UUID,
    user_id: Optional[UUID] = None
) -> list[models.Stage]:
    """
    Create the Suggested Task, Pending and Archive stages a project lacks.

    Args:
        db: Database session
        project_id: Project UUID
        user_id: Optional user ID (for history)

    Returns:
        List of stages created (empty when the project already had them all)
    """
    existing = db.query(models.Stage).filter(models.Stage.project_id == project_id).all()
    created = []
    for title, order, color, kind in missing_default_stages(existing):
        stage = models.Stage(project_id=project_id, title=title, order=order, color=color, kind=kind)
        db.add(stage)
        created.append(stage)

    if not created:
        return []

    db.commit()
    for stage in created:
        db.refresh(stage)
        _create_history_entry(
            db,
            models.HistoryAction.CREATED,
            entity_id=stage.id,
            entity_type="stage",
            project_id=project_id,
            actor_id=user_id,
            details={"title": stage.title, "kind": stage.kind.value, "default": True},
        )
    logger.info(f"Created {len(created)} default stage(s) for project {project_id}")
    return created


# ============================================================================
# Stage CRUD Operations
# ============================================================================

def get_stage(db: Session, stage_id: UUID) -> Optional[models.Stage]:
    """Get a stage by ID."""
    return db.query(models.Stage).filter(models.Stage.id == stage_id).first()


def get_project_stages(db: Session, project_id: UUID) -> list[models.Stage]:
    """
    Get the stages of a project in workflow order.

    Args:
        db: Database session
        project_id: Project UUID

    Returns:
        Stages sorted by rank, then order
    """
    stages = db.query(models.Stage).filter(models.Stage.project_id == project_id).all()
    return ordered_stages(stages)


def _validate_stage_references(
    db: Session,
    project_id: UUID,
    stage_id: Optional[UUID],
    linked_review_stage_id: Optional[UUID],
    approved_target_stage_id: Optional[UUID],
    parent_stage_id: Optional[UUID],
    main_responsible_id: Optional[UUID],
) -> None:
    """Ensure referenced stages live in the same project and users exist."""
    references = {
        "linked_review_stage_id": linked_review_stage_id,
        "approved_target_stage_id": approved_target_stage_id,
        "parent_stage_id": parent_stage_id,
    }
    for field, referenced_id in references.items():
        if referenced_id is None:
            continue
        if stage_id is not None and referenced_id == stage_id:
            raise ValidationError(f"A stage cannot reference itself via {field}", field=field)
        referenced = get_stage(db, referenced_id)
        if referenced is None or referenced.project_id != project_id:
            raise ValidationError(
                f"Stage {referenced_id} does not belong to project {project_id}",
                field=field
            )
        if field == "linked_review_stage_id" and referenced.kind != models.StageKind.REVIEW:
            raise ValidationError(f"Linked stage '{referenced.title}' is not a review stage", field=field)
        if field == "approved_target_stage_id" and referenced.kind == models.StageKind.REVIEW:
            raise ValidationError(
                f"Approval target '{referenced.title}' cannot be a review stage",
                field=field
            )

    if main_responsible_id is not None and get_user(db, main_responsible_id) is None:
        raise NotFoundError("user", main_responsible_id)


def create_stage(
    db: Session,
    stage_data: schemas.StageCreate,
    user_id: Optional[UUID] = None
) -> models.Stage:
    """
    Create a stage. Its kind is derived from the title unless given.

    Args:
        db: Database session
        stage_data: Stage creation data
        user_id: Optional user ID (for history)

    Returns:
        Created stage instance

    Raises:
        NotFoundError: If the project or main responsible does not exist
        ValidationError: If a referenced stage belongs to another project
    """
    if get_project(db, stage_data.project_id) is None:
        raise NotFoundError("project", stage_data.project_id)

    _validate_stage_references(
        db,
        stage_data.project_id,
        None,
        stage_data.linked_review_stage_id,
        stage_data.approved_target_stage_id,
        stage_data.parent_stage_id,
        stage_data.main_responsible_id,
    )

    kind = stage_data.kind or classify_stage_title(stage_data.title, stage_data.is_review_stage)
    order = stage_data.order
    if order is None:
        order = next_stage_order(db.query(models.Stage).filter(models.Stage.project_id == stage_data.project_id).all())

    db_stage = models.Stage(
        project_id=stage_data.project_id,
        title=stage_data.title.strip(),
        color=stage_data.color,
        order=order,
        kind=kind,
        linked_review_stage_id=stage_data.linked_review_stage_id,
        approved_target_stage_id=stage_data.approved_target_stage_id,
        main_responsible_id=stage_data.main_responsible_id,
        parent_stage_id=stage_data.parent_stage_id,
    )
    db.add(db_stage)
    db.commit()
    db.refresh(db_stage)

    _create_history_entry(
        db,
        models.HistoryAction.CREATED,
        entity_id=db_stage.id,
        entity_type="stage",
        project_id=db_stage.project_id,
        actor_id=user_id,
        details={"title": db_stage.title, "kind": db_stage.kind.value, "order": db_stage.order},
    )
    logger.info(f"Created stage '{db_stage.title}' ({db_stage.kind.value}) in project {db_stage.project_id}")
    return db_stage


def update_stage(
    db: Session,
    stage_id: UUID,
    stage_update: schemas.StageUpdate,
    user_id: Optional[UUID] = None
) -> Optional[models.Stage]:
    """
    Update a stage.

    A new title or review flag re-derives the kind unless ``kind`` is given.

    Args:
        db: Database session
        stage_id: Stage UUID
        stage_update: Fields to update
        user_id: Optional user ID (for history)

    Returns:
        Updated stage instance or None if not found
    """
    db_stage = get_stage(db, stage_id)
    if not db_stage:
        return None

    update_data = stage_update.model_dump(exclude_unset=True)
    is_review_stage = update_data.pop("is_review_stage", None)

    _validate_stage_references(
        db,
        db_stage.project_id,
        db_stage.id,
        update_data.get("linked_review_stage_id"),
        update_data.get("approved_target_stage_id"),
        update_data.get("parent_stage_id"),
        update_data.get("main_responsible_id"),
    )

    if update_data.get("kind") is None:
        update_data.pop("kind", None)
        if "title" in update_data or is_review_stage is not None:
            title = update_data.get("title") or db_stage.title
            review_flag = is_review_stage if is_review_stage is not None else db_stage.is_review_stage
            update_data["kind"] = classify_stage_title(title, review_flag)

    changed = {}
    for field, value in update_data.items():
        if field == "title" and value is not None:
            value = value.strip()
        if getattr(db_stage, field) != value:
            old = getattr(db_stage, field)
            changed[field] = {
                "from": old.value if hasattr(old, "value") else (str(old) if old is not None else None),
                "to": value.value if hasattr(value, "value") else (str(value) if value is not None else None),
            }
            setattr(db_stage, field, value)

    if not changed:
        logger.debug(f"No-op update for stage {stage_id}")
        return db_stage

    db.commit()
    db.refresh(db_stage)
    _create_history_entry(
        db,
        models.HistoryAction.STAGE_CHANGED,
        entity_id=db_stage.id,
        entity_type="stage",
        project_id=db_stage.project_id,
        actor_id=user_id,
        details=changed,
    )
    logger.info(f"Updated stage {stage_id}: {', '.join(sorted(changed))}")
    return db_stage


def delete_stage(db: Session, stage_id: UUID, user_id: Optional[UUID] = None) -> bool:
    """
    Delete a stage that holds no tasks and has no dependent stages.

    Soft-deleted tasks still count: their history references the stage. So do
    tasks parked in review that will return to it.

    Args:
        db: Database session
        stage_id: Stage UUID
        user_id: Optional user ID (for history)

    Returns:
        True if deleted, False if not found

    Raises:
        StageInUseError: If tasks or other stages still reference the stage
    """
    db_stage = get_stage(db, stage_id)
    if not db_stage:
        return False

    task_count = (
        db.query(models.Task)
        .filter(
            or_(
                models.Task.stage_id == stage_id,
                models.Task.start_stage_id == stage_id,
                models.Task.previous_stage_id == stage_id,
            )
        )
        .count()
    )
    dependents = (
        db.query(models.Stage.id)
        .filter(
            models.Stage.id != stage_id,
            or_(
                models.Stage.parent_stage_id == stage_id,
                models.Stage.linked_review_stage_id == stage_id,
                models.Stage.approved_target_stage_id == stage_id,
            ),
        )
        .all()
    )
    dependent_ids = [row[0] for row in dependents]

    if task_count or dependent_ids:
        raise StageInUseError(
            f"Stage '{db_stage.title}' is in use by {task_count} task(s) "
            f"and {len(dependent_ids)} dependent stage(s)",
            stage_id=stage_id,
            task_count=task_count,
            dependent_stage_ids=dependent_ids,
        )

    project_id = db_stage.project_id
    title = db_stage.title
    db.delete(db_stage)
    db.commit()
    _create_history_entry(
        db,
        models.HistoryAction.DELETED,
        entity_id=stage_id,
        entity_type="stage",
        project_id=project_id,
        actor_id=user_id,
        details={"title": title},
    )
    logger.info(f"Deleted stage '{title}' from project {project_id}")
    return True


# ============================================================================
# User CRUD Operations
# ============================================================================

def create_user(db: Session, user_data: schemas.UserCreate) -> models.User:
    """
    Create a new user.

    Raises:
        ValidationError: If the name is already taken
    """
    existing = db.query(models.User).filter(models.User.name == user_data.name).first()
    if existing:
        raise ValidationError(f"User name already taken: {user_data.name}", field="name")

    db_user = models.User(name=user_data.name, email=user_data.email, role=user_data.role)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.debug(f"Created user {db_user.id} ({db_user.name})")
    return db_user


def get_user(db: Session, user_id: UUID) -> Optional[models.User]:
    """Get a user by ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_users(db: Session, skip: int = 0, limit: int = 100) -> list[models.User]:
    """List users by name."""
    return db.query(models.User).order_by(models.User.name).offset(skip).limit(limit).all()


# ============================================================================
# Suggested Task CRUD Operations
# ============================================================================

def create_suggested_task(
    db: Session,
    project_id: UUID,
    suggestion_data: schemas.SuggestedTaskCreate
) -> models.SuggestedTask:
    """
    Add a suggestion to a project's pool.

    Args:
        db: Database session
        project_id: Project UUID
        suggestion_data: Suggestion fields

    Returns:
        Created suggestion

    Raises:
        NotFoundError: If the project does not exist
        ValidationError: If the default stage belongs to another project
    """
    if get_project(db, project_id) is None:
        raise NotFoundError("project", project_id)

    if suggestion_data.default_stage_id is not None:
        stage = get_stage(db, suggestion_data.default_stage_id)
        if stage is None or stage.project_id != project_id:
            raise ValidationError(
                f"Stage {suggestion_data.default_stage_id} does not belong to project {project_id}",
                field="default_stage_id"
            )

    db_suggestion = models.SuggestedTask(project_id=project_id, **suggestion_data.model_dump())
    db.add(db_suggestion)
    db.commit()
    db.refresh(db_suggestion)
    logger.debug(f"Added suggestion {db_suggestion.id} to project {project_id}")
    return db_suggestion


def get_suggested_tasks(db: Session, project_id: UUID) -> list[models.SuggestedTask]:
    """List the suggestion pool of a project, oldest first."""
    return (
        db.query(models.SuggestedTask)
        .filter(models.SuggestedTask.project_id == project_id)
        .order_by(models.SuggestedTask.suggested_at)
        .all()
    )
