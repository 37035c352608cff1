"""SQLAlchemy implementations of the workflow collaborators."""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from . import models
from .errors import ConcurrentModificationError, NotFoundError
from .history import HistoryEntryDraft
from .interfaces import HistorySink, StageStore, SuggestionPool, TaskStore, UserDirectory
from .schemas import (
    CoAssigneeSnapshot,
    Resolution,
    RevisionEntrySnapshot,
    StageSnapshot,
    SuggestedTaskSnapshot,
    TaskDraft,
    TaskSnapshot,
)
from .stage_graph import ordered_stages

logger = logging.getLogger("stageflow-core.stores")


def stage_to_snapshot(stage: models.Stage) -> StageSnapshot:
    """Convert Stage model to StageSnapshot."""
    return StageSnapshot.model_validate(stage)


def task_to_snapshot(task: models.Task) -> TaskSnapshot:
    """Convert Task model to TaskSnapshot."""
    return TaskSnapshot(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        stage_id=task.stage_id,
        assignee_id=task.assignee_id,
        co_assignees=tuple(CoAssigneeSnapshot.model_validate(a) for a in task.co_assignees),
        status=task.status,
        priority=task.priority,
        tags=frozenset(task.tags or []),
        review_state=task.review_state,
        previous_stage_id=task.previous_stage_id,
        original_assignee_id=task.original_assignee_id,
        revision_comment=task.revision_comment,
        revision_history=tuple(RevisionEntrySnapshot.model_validate(r) for r in task.revision_history),
        completed_at=task.completed_at,
        parent_id=task.parent_id,
        is_assignee_locked=task.is_assignee_locked,
        start_stage_id=task.start_stage_id,
        start_date=task.start_date,
        due_date=task.due_date,
        version=task.version,
        created_at=task.created_at,
        updated_at=task.updated_at,
        deleted_at=task.deleted_at,
    )


def _column_values(changes: dict) -> dict:
    values = dict(changes)
    if "tags" in values:
        values["tags"] = sorted(values["tags"])
    return values


class SqlTaskStore(TaskStore):
    """Task store backed by the ``tasks`` table, one commit per write."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return (
            self.db.query(models.Task)
            .options(selectinload(models.Task.co_assignees), selectinload(models.Task.revision_history))
            .filter(models.Task.deleted_at.is_(None))
        )

    def get(self, task_id: UUID) -> Optional[TaskSnapshot]:
        task = self._query().filter(models.Task.id == task_id).first()
        return task_to_snapshot(task) if task else None

    def save(self, task_id: UUID, expected_version: int, resolution: Resolution) -> TaskSnapshot:
        """
        Commit a resolution with an optimistic version check.

        Args:
            task_id: Task UUID
            expected_version: Version the resolution was computed from
            resolution: Resolved changes

        Returns:
            Snapshot of the stored task after the commit

        Raises:
            ConcurrentModificationError: If the task changed (or was deleted) since it was read
        """
        values = _column_values(resolution.changes)
        values["version"] = models.Task.version + 1
        values["updated_at"] = models.utcnow()

        try:
            result = self.db.execute(
                update(models.Task)
                .where(
                    models.Task.id == task_id,
                    models.Task.version == expected_version,
                    models.Task.deleted_at.is_(None),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.warning(f"Version conflict on task {task_id} (expected version {expected_version})")
                raise ConcurrentModificationError(
                    f"Task {task_id} was modified concurrently; refetch and retry",
                    task_id=task_id,
                    expected_version=expected_version
                )

            if resolution.co_assignees is not None:
                self.db.execute(delete(models.TaskAssignee).where(models.TaskAssignee.task_id == task_id))
                for position, co_assignee in enumerate(resolution.co_assignees):
                    self.db.add(models.TaskAssignee(
                        task_id=task_id,
                        user_id=co_assignee.user_id,
                        status=co_assignee.status,
                        position=position,
                    ))

            if resolution.resolve_revisions_at is not None:
                self.db.execute(
                    update(models.RevisionEntry)
                    .where(
                        models.RevisionEntry.task_id == task_id,
                        models.RevisionEntry.resolved_at.is_(None),
                    )
                    .values(resolved_at=resolution.resolve_revisions_at)
                    .execution_options(synchronize_session=False)
                )

            if resolution.new_revision is not None:
                revision = resolution.new_revision
                self.db.add(models.RevisionEntry(
                    task_id=task_id,
                    comment=revision.comment,
                    requested_by_id=revision.requested_by_id,
                    requested_at=revision.requested_at,
                    resolved_at=revision.resolved_at,
                ))

            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.expire_all()
        saved = self.get(task_id)
        if saved is None:
            raise NotFoundError("task", task_id)
        return saved

    def create(self, draft: TaskDraft, consumed_suggestion_id: Optional[UUID] = None) -> TaskSnapshot:
        """
        Insert a task.

        Raises:
            NotFoundError: If the consumed suggestion no longer exists (nothing is created)
        """
        task = models.Task(
            id=draft.id,
            project_id=draft.project_id,
            parent_id=draft.parent_id,
            title=draft.title,
            description=draft.description,
            status=draft.status,
            priority=draft.priority,
            tags=sorted(draft.tags),
            due_date=draft.due_date,
            stage_id=draft.stage_id,
            assignee_id=draft.assignee_id,
            is_assignee_locked=draft.is_assignee_locked,
            start_stage_id=draft.start_stage_id,
            start_date=draft.start_date,
            created_by=draft.created_by,
            version=1,
        )
        user_ids = list(draft.co_assignee_ids)
        if draft.assignee_id is not None and draft.assignee_id not in user_ids:
            user_ids.insert(0, draft.assignee_id)
        for position, user_id in enumerate(user_ids):
            task.co_assignees.append(models.TaskAssignee(user_id=user_id, position=position))

        try:
            self.db.add(task)
            if consumed_suggestion_id is not None:
                removed = (
                    self.db.query(models.SuggestedTask)
                    .filter(models.SuggestedTask.id == consumed_suggestion_id)
                    .delete(synchronize_session=False)
                )
                if removed != 1:
                    self.db.rollback()
                    raise NotFoundError("suggested task", consumed_suggestion_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(task)
        return task_to_snapshot(task)

    def list_by_project(self, project_id: UUID) -> list[TaskSnapshot]:
        tasks = self._query().filter(models.Task.project_id == project_id).order_by(models.Task.created_at).all()
        return [task_to_snapshot(t) for t in tasks]

    def list_by_stage(self, stage_id: UUID) -> list[TaskSnapshot]:
        tasks = self._query().filter(models.Task.stage_id == stage_id).order_by(models.Task.created_at).all()
        return [task_to_snapshot(t) for t in tasks]

    def list_subtasks(self, parent_id: UUID) -> list[TaskSnapshot]:
        tasks = self._query().filter(models.Task.parent_id == parent_id).order_by(models.Task.created_at).all()
        return [task_to_snapshot(t) for t in tasks]

    def list_awaiting_review(self, project_id: UUID) -> list[TaskSnapshot]:
        tasks = (
            self._query()
            .filter(
                models.Task.project_id == project_id,
                models.Task.review_state == models.ReviewState.AWAITING_REVIEW,
            )
            .order_by(models.Task.updated_at)
            .all()
        )
        return [task_to_snapshot(t) for t in tasks]

    def list_scheduled(self, due_before: datetime) -> list[TaskSnapshot]:
        tasks = (
            self._query()
            .filter(models.Task.start_date.isnot(None), models.Task.start_date <= due_before)
            .order_by(models.Task.start_date)
            .all()
        )
        return [task_to_snapshot(t) for t in tasks]

    def soft_delete(self, task_id: UUID, deleted_at: datetime) -> bool:
        try:
            result = self.db.execute(
                update(models.Task)
                .where(models.Task.id == task_id, models.Task.deleted_at.is_(None))
                .values(deleted_at=deleted_at, version=models.Task.version + 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.expire_all()
        return result.rowcount == 1


class SqlStageStore(StageStore):
    """Stage store backed by the ``stages`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, stage_id: UUID) -> Optional[StageSnapshot]:
        stage = self.db.query(models.Stage).filter(models.Stage.id == stage_id).first()
        return stage_to_snapshot(stage) if stage else None

    def list_by_project(self, project_id: UUID) -> list[StageSnapshot]:
        stages = self.db.query(models.Stage).filter(models.Stage.project_id == project_id).all()
        return [stage_to_snapshot(s) for s in ordered_stages(stages)]


class SqlSuggestionPool(SuggestionPool):
    """Suggestion pool backed by the ``suggested_tasks`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, suggestion_id: UUID) -> Optional[SuggestedTaskSnapshot]:
        suggestion = self.db.query(models.SuggestedTask).filter(models.SuggestedTask.id == suggestion_id).first()
        return SuggestedTaskSnapshot.model_validate(suggestion) if suggestion else None

    def list_by_project(self, project_id: UUID) -> list[SuggestedTaskSnapshot]:
        suggestions = (
            self.db.query(models.SuggestedTask)
            .filter(models.SuggestedTask.project_id == project_id)
            .order_by(models.SuggestedTask.suggested_at)
            .all()
        )
        return [SuggestedTaskSnapshot.model_validate(s) for s in suggestions]


class SqlHistorySink(HistorySink):
    """History sink writing to the ``history_entries`` table."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, entry: HistoryEntryDraft) -> None:
        try:
            self.db.add(models.HistoryEntry(
                action=entry.action.value,
                entity_id=entry.entity_id,
                entity_type=entry.entity_type,
                project_id=entry.project_id,
                actor_id=entry.actor_id,
                details=entry.details,
                timestamp=entry.timestamp,
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class SqlUserDirectory(UserDirectory):
    """User lookups against the ``users`` table."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_name(self, name: str) -> Optional[UUID]:
        user = (
            self.db.query(models.User)
            .filter(func.lower(models.User.name) == name.strip().lower(), models.User.is_active.is_(True))
            .first()
        )
        return user.id if user else None

    def find_by_id(self, user_id: UUID) -> Optional[UUID]:
        user = self.db.query(models.User).filter(models.User.id == user_id).first()
        return user.id if user else None
