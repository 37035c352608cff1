"""Review sub-flow: approve, request revision, explicit submit for review.

A review stage is a one-hop detour. ``submit_for_review`` (or completion
auto-advance) parks a task there; ``approve`` and ``request_revision`` always
leave it in a non-review stage with ``review_state = active`` and the return
path cleared. All three build a patch and delegate to the transition resolver.
"""
import logging
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from .errors import MissingAssigneeError, ValidationError
from .events import WorkflowEventType
from .history import history_details
from .models import HistoryAction, ReviewState, TaskStatus
from .schemas import Resolution, RevisionEntrySnapshot, TaskPatch, TaskSnapshot
from .stage_graph import get_stage
from .transitions import history_draft, require_stage, resolve_transition, workflow_event

logger = logging.getLogger("stageflow-core.review")


def _decision_target(stages: Sequence, task: TaskSnapshot, stage_id: UUID):
    """Validate a reviewer-chosen destination."""
    stage = require_stage(stages, stage_id, task.project_id, field="target_stage_id")
    if stage.is_review_stage:
        raise ValidationError(
            f"A review decision cannot target review stage '{stage.title}'",
            field="target_stage_id"
        )
    return stage


def approve(
    task: TaskSnapshot,
    stages: Sequence,
    actor_id: Optional[UUID],
    now: datetime,
    target_stage_id: Optional[UUID] = None,
    comment: Optional[str] = None
) -> Resolution:
    """
    Approve a task and move it to the approval target.

    Args:
        task: Task snapshot (normally parked in a review stage)
        stages: All stages of the task's project
        actor_id: Reviewer
        now: Timestamp of the decision
        target_stage_id: Destination; defaults to the review stage's approval target
        comment: Optional reviewer comment, recorded in history

    Returns:
        Resolution with every open revision entry resolved

    Raises:
        ValidationError: If no target can be determined or the target is invalid
    """
    if target_stage_id is None:
        current = get_stage(stages, task.stage_id)
        target_stage_id = current.approved_target_stage_id if current is not None else None
    if target_stage_id is None:
        raise ValidationError(
            f"No target stage given and stage {task.stage_id} has no approval target",
            field="target_stage_id"
        )
    target = _decision_target(stages, task, target_stage_id)

    patch = TaskPatch(
        stage_id=target.id,
        review_state=ReviewState.ACTIVE,
        previous_stage_id=None,
        original_assignee_id=None,
        revision_comment=None,
    )
    resolution = resolve_transition(task, patch, stages, actor_id, now, resolve_revisions=True)

    history = resolution.history
    if comment:
        details = history_details(action=HistoryAction.APPROVED, comment=comment, target_stage=target.id)
        history = history + (history_draft(task, HistoryAction.APPROVED, actor_id, now, details),)
    event = workflow_event(
        task,
        WorkflowEventType.TASK_APPROVED,
        actor_id,
        now,
        history_details(target_stage_id=target.id, comment=comment),
    )

    logger.info(f"Task {task.id} approved to stage '{target.title}'")
    return resolution.model_copy(update={"history": history, "events": resolution.events + (event,)})


def request_revision(
    task: TaskSnapshot,
    stages: Sequence,
    target_stage_id: Optional[UUID],
    comment: str,
    actor_id: Optional[UUID],
    now: datetime
) -> Resolution:
    """
    Send a task back for rework to its original assignee.

    Args:
        task: Task snapshot (normally parked in a review stage)
        stages: All stages of the task's project
        target_stage_id: Stage to send the task back to; defaults to the stage it came from
        comment: Reason for the revision (required)
        actor_id: Reviewer requesting the revision
        now: Timestamp of the decision

    Returns:
        Resolution appending a new open revision entry

    Raises:
        ValidationError: If the comment is empty or the target is invalid
        MissingAssigneeError: If neither an original nor a current assignee exists
    """
    comment = (comment or "").strip()
    if not comment:
        raise ValidationError("A revision request requires a comment", field="comment")

    if target_stage_id is None:
        target_stage_id = task.previous_stage_id
    if target_stage_id is None:
        raise ValidationError("No target stage given and the task has no previous stage", field="target_stage_id")
    target = _decision_target(stages, task, target_stage_id)

    assignee_id = task.original_assignee_id or task.assignee_id
    if assignee_id is None:
        raise MissingAssigneeError(f"Task {task.id} has no assignee to send the revision to", task_id=task.id)

    revision = RevisionEntrySnapshot(comment=comment, requested_by_id=actor_id, requested_at=now)
    patch = TaskPatch(
        stage_id=target.id,
        assignee_id=assignee_id,
        status=TaskStatus.PENDING,
        review_state=ReviewState.ACTIVE,
        previous_stage_id=None,
        original_assignee_id=None,
        revision_comment=comment,
    )
    resolution = resolve_transition(task, patch, stages, actor_id, now, new_revision=revision)

    details = history_details(comment=comment, target_stage=target.id, assignee=assignee_id)
    history = resolution.history + (
        history_draft(task, HistoryAction.REVISION_REQUESTED, actor_id, now, details),
    )
    event = workflow_event(task, WorkflowEventType.TASK_REVISION_REQUESTED, actor_id, now, details)

    logger.info(f"Revision requested for task {task.id}, back to stage '{target.title}'")
    return resolution.model_copy(update={"history": history, "events": resolution.events + (event,)})


def submit_for_review(
    task: TaskSnapshot,
    stages: Sequence,
    actor_id: Optional[UUID],
    now: datetime,
    review_stage_id: Optional[UUID] = None
) -> Resolution:
    """
    Park a task in a review stage, keeping its assignee and status.

    Without ``review_stage_id`` the current stage's linked review stage is used.

    Raises:
        ValidationError: If no review stage can be determined, the stage is not a
            review stage, or the task is already awaiting review
    """
    if task.review_state == ReviewState.AWAITING_REVIEW:
        raise ValidationError(f"Task {task.id} is already awaiting review")

    if review_stage_id is None:
        current = get_stage(stages, task.stage_id)
        review_stage_id = current.linked_review_stage_id if current is not None else None
    if review_stage_id is None:
        raise ValidationError(
            f"No review stage given and stage {task.stage_id} has no linked review stage",
            field="review_stage_id"
        )

    review_stage = require_stage(stages, review_stage_id, task.project_id, field="review_stage_id")
    if not review_stage.is_review_stage:
        raise ValidationError(f"Stage '{review_stage.title}' is not a review stage", field="review_stage_id")
    if review_stage.id == task.stage_id:
        raise ValidationError(f"Task {task.id} is already in review stage '{review_stage.title}'")

    patch = TaskPatch(
        stage_id=review_stage.id,
        assignee_id=task.assignee_id,
        status=task.status,
        review_state=ReviewState.AWAITING_REVIEW,
        previous_stage_id=task.stage_id,
        original_assignee_id=task.assignee_id,
    )
    return resolve_transition(task, patch, stages, actor_id, now)
