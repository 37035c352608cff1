"""Transition resolver: the single authority for the effects of a task mutation.

``resolve_transition`` takes an immutable task snapshot, a requested patch and
the project's stages and returns a ``Resolution``: the column changes to commit,
the co-assignee and revision history changes, and the history drafts and events
describing them. It performs no I/O, so replaying the same input always yields
the same resolution.

Rules, applied in order:
0. Co-assignee gate: a co-assignee completing a shared task only completes
   their own part until every co-assignee is done.
1. Completion without a target stage is routed through auto-advance (subtasks
   never move on completion).
2. A stage change picks the new assignee (explicit > locked > original assignee
   when returning from review > stage main responsible > nobody) and resets the
   status to pending unless a status was given.
3. Assignee and status changes are recorded.
Derived tags are recomputed on every transition: "Completed" iff the stage is
terminal, "Redo" iff an unresolved revision exists.
"""
import logging
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID

from .auto_advance import plan_completion
from .errors import ValidationError
from .events import WorkflowEvent, WorkflowEventType
from .history import HistoryEntryDraft, history_details
from .models import HistoryAction, ReviewState, TaskStatus
from .schemas import (
    CoAssigneeSnapshot,
    Resolution,
    RevisionEntrySnapshot,
    TaskPatch,
    TaskSnapshot,
)
from .stage_graph import get_stage, is_terminal

logger = logging.getLogger("stageflow-core.transitions")

COMPLETED_TAG = "Completed"
REDO_TAG = "Redo"
DERIVED_TAGS = frozenset({COMPLETED_TAG, REDO_TAG})

# Task fields copied verbatim from the patch when requested
PLAIN_FIELDS = (
    "title",
    "description",
    "priority",
    "due_date",
    "is_assignee_locked",
    "start_stage_id",
    "start_date",
)
NON_NULLABLE_FIELDS = frozenset({"title", "priority", "is_assignee_locked"})

REVIEW_FIELDS = ("review_state", "previous_stage_id", "original_assignee_id", "revision_comment")


def require_stage(stages: Sequence, stage_id: Optional[UUID], project_id: UUID, field: str = "stage_id"):
    """
    Look up a stage and make sure it belongs to the project.

    Raises:
        ValidationError: If the stage is unknown or belongs to another project
    """
    stage = get_stage(stages, stage_id)
    if stage is None or stage.project_id != project_id:
        raise ValidationError(f"Stage {stage_id} does not belong to project {project_id}", field=field)
    return stage


def history_draft(
    task: TaskSnapshot,
    action: HistoryAction,
    actor_id: Optional[UUID],
    now: datetime,
    details: dict[str, Any]
) -> HistoryEntryDraft:
    return HistoryEntryDraft(
        action=action,
        entity_id=task.id,
        entity_type="task",
        project_id=task.project_id,
        actor_id=actor_id,
        details=details,
        timestamp=now,
    )


def workflow_event(
    task: TaskSnapshot,
    event_type: WorkflowEventType,
    actor_id: Optional[UUID],
    now: datetime,
    payload: dict[str, Any]
) -> WorkflowEvent:
    return WorkflowEvent(
        type=event_type,
        task_id=task.id,
        project_id=task.project_id,
        actor_id=actor_id,
        occurred_at=now,
        payload=payload,
    )


def _gate_co_assignees(
    task: TaskSnapshot,
    actor_id: Optional[UUID]
) -> tuple[tuple[CoAssigneeSnapshot, ...], bool]:
    """Mark the actor's share complete; True when others are still working."""
    co_assignees = tuple(
        c.model_copy(update={"status": TaskStatus.COMPLETE}) if c.user_id == actor_id else c
        for c in task.co_assignees
    )
    outstanding = any(c.status != TaskStatus.COMPLETE for c in co_assignees)
    return co_assignees, outstanding


def _resolve_co_assignees(
    current: tuple[CoAssigneeSnapshot, ...],
    patch: TaskPatch,
    assignee_id: Optional[UUID],
    assignee_changed: bool,
    reset_to_pending: bool
) -> tuple[CoAssigneeSnapshot, ...]:
    if patch.has("co_assignee_ids") and patch.co_assignee_ids is not None:
        known = {c.user_id: c.status for c in current}
        user_ids = list(dict.fromkeys(patch.co_assignee_ids))
        if assignee_id is not None and assignee_id not in user_ids:
            user_ids.insert(0, assignee_id)
        result = tuple(
            CoAssigneeSnapshot(user_id=user_id, status=known.get(user_id, TaskStatus.PENDING))
            for user_id in user_ids
        )
    elif assignee_changed:
        result = (CoAssigneeSnapshot(user_id=assignee_id),) if assignee_id is not None else ()
    else:
        result = current

    if reset_to_pending:
        result = tuple(
            c if c.status == TaskStatus.PENDING else c.model_copy(update={"status": TaskStatus.PENDING})
            for c in result
        )
    return result


def resolve_transition(
    task: TaskSnapshot,
    patch: TaskPatch,
    stages: Sequence,
    actor_id: Optional[UUID],
    now: datetime,
    *,
    new_revision: Optional[RevisionEntrySnapshot] = None,
    resolve_revisions: bool = False
) -> Resolution:
    """
    Resolve a requested patch into the complete set of changes for a task.

    Args:
        task: Current task snapshot
        patch: Requested mutation (only explicitly set fields count)
        stages: All stages of the task's project
        actor_id: User performing the change (None for system actions)
        now: Timestamp of the transition
        new_revision: Revision entry to append (revision requests)
        resolve_revisions: Close every open revision entry (approvals)

    Returns:
        Resolution describing the changes, history drafts and events

    Raises:
        ValidationError: If a referenced stage is not part of the task's project
    """
    explicit_stage = patch.has("stage_id") and patch.stage_id is not None
    requested_status = patch.status if patch.has("status") else None
    completing = requested_status == TaskStatus.COMPLETE and task.status != TaskStatus.COMPLETE

    history: list[HistoryEntryDraft] = []
    events: list[WorkflowEvent] = []

    # 0. Co-assignee completion gate
    co_assignees = task.co_assignees
    withheld = False
    if completing and len(task.co_assignees) > 1 and any(c.user_id == actor_id for c in task.co_assignees):
        co_assignees, withheld = _gate_co_assignees(task, actor_id)
        if withheld:
            completing = False
            requested_status = None
            explicit_stage = False
            if co_assignees != task.co_assignees:
                waiting_on = [str(c.user_id) for c in co_assignees if c.status != TaskStatus.COMPLETE]
                details = history_details(assignee=actor_id, to=TaskStatus.COMPLETE)
                details["waiting_on"] = waiting_on
                history.append(history_draft(task, HistoryAction.STATUS_CHANGED, actor_id, now, details))
            logger.debug(f"Completion of task {task.id} withheld until all co-assignees complete")

    # 1. Completion without explicit destination
    decision = None
    if completing and not explicit_stage and task.parent_id is None:
        decision = plan_completion(task, stages)

    if explicit_stage:
        target_stage = require_stage(stages, patch.stage_id, task.project_id)
    elif decision is not None:
        target_stage = get_stage(stages, decision.target_stage_id)
    else:
        target_stage = get_stage(stages, task.stage_id)
    target_stage_id = target_stage.id if target_stage is not None else task.stage_id

    if patch.has("start_stage_id") and patch.start_stage_id is not None:
        require_stage(stages, patch.start_stage_id, task.project_id, field="start_stage_id")

    # 2. Stage change detection
    stage_changed = target_stage_id != task.stage_id
    leaving_parking = stage_changed and task.review_state == ReviewState.AWAITING_REVIEW

    if patch.has("assignee_id"):
        assignee_id = patch.assignee_id
    elif patch.has("co_assignee_ids") and patch.co_assignee_ids is not None:
        assignee_id = patch.co_assignee_ids[0] if patch.co_assignee_ids else None
    elif not stage_changed or task.is_assignee_locked or (decision is not None and decision.keeps_assignee):
        assignee_id = task.assignee_id
    elif (
        leaving_parking
        and target_stage_id == task.previous_stage_id
        and task.original_assignee_id is not None
    ):
        assignee_id = task.original_assignee_id
    else:
        assignee_id = target_stage.main_responsible_id if target_stage is not None else None

    if decision is not None:
        status = decision.status
    elif completing:
        # Last stage or subtask: stays in place, marked complete
        status = TaskStatus.COMPLETE
    elif requested_status is not None:
        status = requested_status
    elif stage_changed:
        status = TaskStatus.PENDING
    else:
        status = task.status

    if decision is not None:
        review_state = decision.review_state
        previous_stage_id = decision.previous_stage_id
        original_assignee_id = decision.original_assignee_id
    elif leaving_parking:
        review_state = ReviewState.ACTIVE
        previous_stage_id = None
        original_assignee_id = None
    else:
        review_state = task.review_state
        previous_stage_id = task.previous_stage_id
        original_assignee_id = task.original_assignee_id
    revision_comment = task.revision_comment

    if patch.has("review_state") and patch.review_state is not None:
        review_state = patch.review_state
    if patch.has("previous_stage_id"):
        previous_stage_id = patch.previous_stage_id
    if patch.has("original_assignee_id"):
        original_assignee_id = patch.original_assignee_id
    if patch.has("revision_comment"):
        revision_comment = patch.revision_comment
    if review_state == ReviewState.ACTIVE:
        previous_stage_id = None
        original_assignee_id = None

    # Derived tags
    tags = set(patch.tags) if patch.has("tags") and patch.tags is not None else set(task.tags)
    tags -= DERIVED_TAGS
    if is_terminal(stages, target_stage_id):
        tags.add(COMPLETED_TAG)
    open_revisions = 0 if resolve_revisions else len(task.open_revisions)
    if new_revision is not None:
        open_revisions += 1
    if open_revisions:
        tags.add(REDO_TAG)

    resolved: dict[str, Any] = {
        "stage_id": target_stage_id,
        "assignee_id": assignee_id,
        "status": status,
        "tags": frozenset(tags),
        "review_state": review_state,
        "previous_stage_id": previous_stage_id,
        "original_assignee_id": original_assignee_id,
        "revision_comment": revision_comment,
        "completed_at": now if completing else task.completed_at,
    }
    for field in PLAIN_FIELDS:
        if not patch.has(field):
            continue
        value = getattr(patch, field)
        if value is None and field in NON_NULLABLE_FIELDS:
            continue
        resolved[field] = value
    changes = {field: value for field, value in resolved.items() if getattr(task, field) != value}

    assignee_changed = assignee_id != task.assignee_id
    resolved_co_assignees = _resolve_co_assignees(
        co_assignees,
        patch,
        assignee_id,
        assignee_changed,
        reset_to_pending=stage_changed and status == TaskStatus.PENDING,
    )

    # History and events
    if stage_changed:
        parked = review_state == ReviewState.AWAITING_REVIEW and target_stage is not None and target_stage.is_review_stage
        from_stage = get_stage(stages, task.stage_id)
        details = history_details(**{
            "from": task.stage_id,
            "to": target_stage_id,
            "from_title": from_stage.title if from_stage is not None else None,
            "to_title": target_stage.title if target_stage is not None else None,
        })
        action = HistoryAction.MOVED_TO_REVIEW_STAGE if parked else HistoryAction.STAGE_CHANGED
        history.append(history_draft(task, action, actor_id, now, details))
        events.append(workflow_event(task, WorkflowEventType.TASK_STAGE_CHANGED, actor_id, now, details))
        if parked:
            events.append(workflow_event(
                task,
                WorkflowEventType.TASK_ENTERED_REVIEW,
                actor_id,
                now,
                history_details(review_stage_id=target_stage_id, previous_stage_id=previous_stage_id),
            ))

    # 3. Assignee change detection
    if assignee_changed:
        if task.assignee_id is None:
            action = HistoryAction.ASSIGNED
        elif assignee_id is None:
            action = HistoryAction.UNASSIGNED
        else:
            action = HistoryAction.REASSIGNED
        details = history_details(**{"from": task.assignee_id, "to": assignee_id})
        history.append(history_draft(task, action, actor_id, now, details))
        events.append(workflow_event(task, WorkflowEventType.TASK_ASSIGNEE_CHANGED, actor_id, now, details))

    # 4. Status changes
    if completing:
        details = history_details(stage=task.stage_id, to_stage=target_stage_id)
        history.append(history_draft(task, HistoryAction.COMPLETED, actor_id, now, details))
    elif status != task.status:
        details = history_details(**{"from": task.status, "to": status})
        history.append(history_draft(task, HistoryAction.STATUS_CHANGED, actor_id, now, details))

    resolution = Resolution(
        task_id=task.id,
        changes=changes,
        co_assignees=resolved_co_assignees if resolved_co_assignees != task.co_assignees else None,
        new_revision=new_revision,
        resolve_revisions_at=now if resolve_revisions and task.open_revisions else None,
        history=tuple(history),
        events=tuple(events),
        withheld=withheld,
    )
    logger.debug(f"Resolved transition for task {task.id}: changes={sorted(changes)} withheld={withheld}")
    return resolution


def apply_resolution(task: TaskSnapshot, resolution: Resolution) -> TaskSnapshot:
    """Snapshot of the task after the resolution is committed."""
    if resolution.is_noop:
        return task

    update: dict[str, Any] = dict(resolution.changes)
    if resolution.co_assignees is not None:
        update["co_assignees"] = resolution.co_assignees

    revision_history = task.revision_history
    if resolution.resolve_revisions_at is not None:
        revision_history = tuple(
            r if r.resolved_at is not None else r.model_copy(update={"resolved_at": resolution.resolve_revisions_at})
            for r in revision_history
        )
    if resolution.new_revision is not None:
        revision_history = revision_history + (resolution.new_revision,)
    update["revision_history"] = revision_history
    update["version"] = task.version + 1
    return task.model_copy(update=update)
