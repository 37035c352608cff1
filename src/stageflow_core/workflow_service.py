"""Workflow service: load, resolve, commit, then emit history and events.

Every task mutation follows the same path:
1. load the task snapshot and its project's stages
2. resolve the requested change (transition resolver / review sub-flow)
3. commit the resolution with an optimistic version check
4. append history entries and publish events (best-effort, logged on failure)

The service holds no ambient user or project context: the acting user is an
explicit parameter of every operation (None for scheduled/system actions).
"""
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional
from uuid import UUID

from . import review
from .errors import ConcurrentModificationError, NotFoundError, ValidationError, WorkflowError
from .events import publish_events
from .history import HistoryEntryDraft, emit_history, history_details
from .interfaces import EventPublisher, HistorySink, StageStore, SuggestionPool, TaskStore, UserDirectory
from .models import HistoryAction, StageKind, TaskPriority, TaskStatus, utcnow
from .promotion import promote
from .schemas import Resolution, TaskDraft, TaskPatch, TaskSnapshot
from .stage_graph import intake_stage, is_terminal, next_stage, ordered_stages
from .transitions import COMPLETED_TAG, DERIVED_TAGS, require_stage, resolve_transition

logger = logging.getLogger("stageflow-core.workflow")


class WorkflowService:
    """Applies workflow transitions to stored tasks."""

    def __init__(
        self,
        tasks: TaskStore,
        stages: StageStore,
        history: Optional[HistorySink] = None,
        events: Optional[EventPublisher] = None,
        suggestions: Optional[SuggestionPool] = None,
        users: Optional[UserDirectory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tasks = tasks
        self.stages = stages
        self.history = history
        self.events = events
        self.suggestions = suggestions
        self.users = users
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_task(self, task_id: UUID) -> TaskSnapshot:
        """
        Load a task.

        Raises:
            NotFoundError: If the task does not exist or was deleted
        """
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def project_stages(self, project_id: UUID) -> list:
        """Stages of a project in workflow order."""
        return ordered_stages(self.stages.list_by_project(project_id))

    def is_completed(self, task: TaskSnapshot, stages: Optional[list] = None) -> bool:
        """Whether the task sits in its project's terminal stage."""
        if stages is None:
            stages = self.project_stages(task.project_id)
        return is_terminal(stages, task.stage_id)

    def list_tasks(self, project_id: UUID, stage_id: Optional[UUID] = None) -> list[TaskSnapshot]:
        """Live tasks of a project, optionally restricted to one stage."""
        if stage_id is not None:
            return [t for t in self.tasks.list_by_stage(stage_id) if t.project_id == project_id]
        return self.tasks.list_by_project(project_id)

    def pending_review(self, project_id: UUID) -> list[TaskSnapshot]:
        """Tasks parked in a review stage waiting for a decision."""
        return self.tasks.list_awaiting_review(project_id)

    def resolve_user(self, name: str) -> UUID:
        """
        Resolve a user name to an id through the user directory.

        Raises:
            NotFoundError: If no active user has that name
        """
        user_id = self.users.find_by_name(name) if self.users is not None else None
        if user_id is None:
            raise NotFoundError("user", name)
        return user_id

    def check_user(self, user_id: UUID) -> UUID:
        """
        Ensure a user id refers to an existing user.

        Raises:
            NotFoundError: If the user directory does not know the id
        """
        if self.users is not None and self.users.find_by_id(user_id) is None:
            raise NotFoundError("user", user_id)
        return user_id

    # ------------------------------------------------------------------
    # Commit path
    # ------------------------------------------------------------------

    def _check_version(self, task: TaskSnapshot, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != task.version:
            logger.warning(
                f"Stale write rejected for task {task.id}: client has version {expected_version}, "
                f"stored version is {task.version}"
            )
            raise ConcurrentModificationError(
                f"Task {task.id} is at version {task.version}, not {expected_version}; refetch and retry",
                task_id=task.id,
                expected_version=expected_version
            )

    def _commit(self, task: TaskSnapshot, resolution: Resolution, description: str) -> TaskSnapshot:
        if resolution.is_noop:
            logger.debug(f"No-op {description} for task {task.id}")
            # Review decisions still leave their audit entry and event
            if resolution.history or resolution.events:
                self._emit(resolution.history, resolution)
            return task

        saved = self.tasks.save(task.id, task.version, resolution)
        logger.info(
            f"{description.capitalize()} task {task.id}: {', '.join(sorted(resolution.changes)) or 'assignees'}"
            f" (v{task.version} -> v{saved.version})"
        )
        self._emit(resolution.history, resolution)
        if saved.parent_id is not None and saved.status == TaskStatus.COMPLETE and task.status != TaskStatus.COMPLETE:
            self._complete_parent_if_done(saved.parent_id)
        return saved

    def _emit(self, history: Iterable[HistoryEntryDraft], resolution: Optional[Resolution] = None) -> None:
        emit_history(self.history, history)
        if resolution is not None:
            publish_events(self.events, resolution.events)

    def _complete_parent_if_done(self, parent_id: UUID) -> None:
        """Complete (and auto-advance) a parent once all its subtasks are complete."""
        parent = self.tasks.get(parent_id)
        if parent is None or parent.status == TaskStatus.COMPLETE:
            return
        subtasks = self.tasks.list_subtasks(parent_id)
        if not subtasks or any(s.status != TaskStatus.COMPLETE for s in subtasks):
            return

        stages = self.project_stages(parent.project_id)
        resolution = resolve_transition(parent, TaskPatch(status=TaskStatus.COMPLETE), stages, None, self.clock())
        try:
            self._commit(parent, resolution, "auto-completed")
        except ConcurrentModificationError:
            logger.warning(f"Parent task {parent_id} changed while completing its subtasks; left as is")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_task(
        self,
        project_id: UUID,
        title: str,
        actor_id: Optional[UUID] = None,
        stage_id: Optional[UUID] = None,
        assignee_ids: Iterable[UUID] = (),
        description: Optional[str] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        tags: Iterable[str] = (),
        due_date: Optional[datetime] = None,
        parent_id: Optional[UUID] = None,
        is_assignee_locked: bool = False,
        start_stage_id: Optional[UUID] = None,
        start_date: Optional[datetime] = None,
    ) -> TaskSnapshot:
        """
        Create a task.

        Without ``stage_id`` the task lands in the intake stage. Without
        assignees it takes the stage's main responsible.

        Raises:
            ValidationError: If a stage or parent task belongs to another project
        """
        stages = self.project_stages(project_id)
        if stage_id is None:
            intake = intake_stage(stages)
            if intake is None:
                raise ValidationError(f"Project {project_id} has no intake stage; pass stage_id", field="stage_id")
            stage = intake
        else:
            stage = require_stage(stages, stage_id, project_id)
        if start_stage_id is not None:
            require_stage(stages, start_stage_id, project_id, field="start_stage_id")

        if parent_id is not None:
            parent = self.get_task(parent_id)
            if parent.project_id != project_id:
                raise ValidationError(f"Parent task {parent_id} belongs to another project", field="parent_id")

        user_ids = tuple(dict.fromkeys(assignee_ids))
        assignee_id = user_ids[0] if user_ids else stage.main_responsible_id

        task_tags = set(tags) - DERIVED_TAGS
        if is_terminal(stages, stage.id):
            task_tags.add(COMPLETED_TAG)

        now = self.clock()
        draft = TaskDraft(
            project_id=project_id,
            title=title,
            description=description,
            stage_id=stage.id,
            assignee_id=assignee_id,
            co_assignee_ids=user_ids,
            status=TaskStatus.PENDING,
            priority=priority,
            tags=frozenset(task_tags),
            parent_id=parent_id,
            is_assignee_locked=is_assignee_locked,
            start_stage_id=start_stage_id,
            start_date=start_date,
            due_date=due_date,
            created_by=actor_id,
        )
        task = self.tasks.create(draft)
        logger.info(f"Created task {task.id} '{title}' in stage '{stage.title}'")
        self._emit([HistoryEntryDraft(
            action=HistoryAction.CREATED,
            entity_id=task.id,
            project_id=project_id,
            actor_id=actor_id,
            details=history_details(title=title, stage=stage.id, assignee=assignee_id),
            timestamp=now,
        )])
        return task

    def update_task(
        self,
        task_id: UUID,
        patch: TaskPatch,
        actor_id: Optional[UUID] = None,
        expected_version: Optional[int] = None
    ) -> TaskSnapshot:
        """
        Apply a manual patch (move, reassign, status change, field edits).

        Args:
            task_id: Task UUID
            patch: Requested changes
            actor_id: Acting user
            expected_version: Version the client read, if known

        Returns:
            Task after the transition

        Raises:
            NotFoundError: If the task does not exist
            ValidationError: If the patch references a stage outside the project
            ConcurrentModificationError: If the task changed since it was read
        """
        task = self.get_task(task_id)
        self._check_version(task, expected_version)
        stages = self.project_stages(task.project_id)
        try:
            resolution = resolve_transition(task, patch, stages, actor_id, self.clock())
        except WorkflowError as e:
            logger.warning(f"Rejected update of task {task_id}: {e}")
            raise
        return self._commit(task, resolution, "updated")

    def complete_task(
        self,
        task_id: UUID,
        actor_id: Optional[UUID] = None,
        expected_version: Optional[int] = None
    ) -> TaskSnapshot:
        """Mark a task complete, auto-advancing it when no destination is given."""
        return self.update_task(task_id, TaskPatch(status=TaskStatus.COMPLETE), actor_id, expected_version)

    def submit_for_review(
        self,
        task_id: UUID,
        actor_id: Optional[UUID] = None,
        review_stage_id: Optional[UUID] = None,
        expected_version: Optional[int] = None
    ) -> TaskSnapshot:
        """Park a task in a review stage (explicit review request)."""
        task = self.get_task(task_id)
        self._check_version(task, expected_version)
        stages = self.project_stages(task.project_id)
        resolution = review.submit_for_review(task, stages, actor_id, self.clock(), review_stage_id)
        return self._commit(task, resolution, "submitted for review")

    def approve(
        self,
        task_id: UUID,
        actor_id: Optional[UUID] = None,
        target_stage_id: Optional[UUID] = None,
        comment: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> TaskSnapshot:
        """Approve a task in review and move it to the approval target."""
        task = self.get_task(task_id)
        self._check_version(task, expected_version)
        stages = self.project_stages(task.project_id)
        resolution = review.approve(task, stages, actor_id, self.clock(), target_stage_id, comment)
        return self._commit(task, resolution, "approved")

    def request_revision(
        self,
        task_id: UUID,
        comment: str,
        actor_id: Optional[UUID] = None,
        target_stage_id: Optional[UUID] = None,
        expected_version: Optional[int] = None
    ) -> TaskSnapshot:
        """Send a task back for rework to its original assignee."""
        task = self.get_task(task_id)
        self._check_version(task, expected_version)
        stages = self.project_stages(task.project_id)
        resolution = review.request_revision(task, stages, target_stage_id, comment, actor_id, self.clock())
        return self._commit(task, resolution, "sent back for revision")

    def start_task(
        self,
        task_id: UUID,
        actor_id: Optional[UUID] = None,
        expected_version: Optional[int] = None
    ) -> TaskSnapshot:
        """
        Move a task to its start stage (or the next stage) with status pending.

        Raises:
            ValidationError: If the task has no start stage and is in the last stage
        """
        task = self.get_task(task_id)
        self._check_version(task, expected_version)
        stages = self.project_stages(task.project_id)

        target_id = task.start_stage_id
        if target_id is None:
            following = next_stage(stages, task.stage_id)
            if following is None:
                raise ValidationError(f"Task {task_id} has no start stage and no next stage", field="start_stage_id")
            target_id = following.id

        resolution = resolve_transition(
            task,
            TaskPatch(stage_id=target_id, status=TaskStatus.PENDING),
            stages,
            actor_id,
            self.clock(),
        )
        return self._commit(task, resolution, "started")

    def move_due_tasks_to_start_stage(self, now: Optional[datetime] = None) -> list[TaskSnapshot]:
        """
        Start every task waiting in an intake stage whose start date has passed.

        Tasks that fail to move are logged and skipped.

        Returns:
            Tasks that were moved
        """
        now = now or self.clock()
        moved = []
        stages_by_project: dict[UUID, list] = {}
        for task in self.tasks.list_scheduled(now):
            stages = stages_by_project.setdefault(task.project_id, self.project_stages(task.project_id))
            current = next((s for s in stages if s.id == task.stage_id), None)
            if current is None or current.kind != StageKind.INTAKE:
                continue
            try:
                moved.append(self.start_task(task.id, actor_id=None, expected_version=task.version))
            except WorkflowError as e:
                logger.warning(f"Scheduled start of task {task.id} skipped: {e}")
        if moved:
            logger.info(f"Moved {len(moved)} scheduled task(s) to their start stage")
        return moved

    def promote_suggestion(
        self,
        suggestion_id: UUID,
        actor_id: Optional[UUID] = None,
        target_stage_id: Optional[UUID] = None
    ) -> TaskSnapshot:
        """
        Turn a suggestion into a live task and remove it from the pool.

        Raises:
            NotFoundError: If the suggestion does not exist
            InvalidStageError: If the target stage is outside the suggestion's project
        """
        if self.suggestions is None:
            raise NotFoundError("suggested task", suggestion_id)
        suggested = self.suggestions.get(suggestion_id)
        if suggested is None:
            raise NotFoundError("suggested task", suggestion_id)

        stages = self.project_stages(suggested.project_id)
        draft = promote(suggested, stages, actor_id, self.clock(), target_stage_id)
        task = self.tasks.create(draft, consumed_suggestion_id=suggestion_id)
        logger.info(f"Promoted suggestion {suggestion_id} to task {task.id}")
        self._emit(draft.history)
        return task

    def delete_task(self, task_id: UUID, actor_id: Optional[UUID] = None) -> None:
        """
        Soft-delete a task.

        Raises:
            NotFoundError: If the task does not exist
        """
        task = self.get_task(task_id)
        now = self.clock()
        if not self.tasks.soft_delete(task_id, now):
            raise NotFoundError("task", task_id)
        logger.info(f"Deleted task {task_id}")
        self._emit([HistoryEntryDraft(
            action=HistoryAction.DELETED,
            entity_id=task_id,
            project_id=task.project_id,
            actor_id=actor_id,
            details=history_details(title=task.title, stage=task.stage_id),
            timestamp=now,
        )])
