"""Destination of a task completed without an explicit target stage."""
import logging
from typing import Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .errors import ValidationError
from .models import ReviewState, TaskStatus
from .stage_graph import get_stage, next_stage

logger = logging.getLogger("stageflow-core.auto_advance")


class AdvanceDecision(BaseModel):
    """Where a completed task goes and which review bookkeeping it carries."""

    model_config = ConfigDict(frozen=True)

    target_stage_id: UUID
    status: TaskStatus
    review_state: ReviewState
    previous_stage_id: Optional[UUID] = None
    original_assignee_id: Optional[UUID] = None
    keeps_assignee: bool = False


def plan_completion(task, stages: Sequence) -> Optional[AdvanceDecision]:
    """
    Compute the auto-advance destination of a completed task.

    The current stage's linked review stage wins over positional order. Landing
    in a review stage parks the task: it keeps its assignee and ``complete``
    status and remembers where it came from. Landing anywhere else starts the
    new stage fresh with status ``pending``.

    Args:
        task: Task snapshot being completed
        stages: All stages of the task's project

    Returns:
        AdvanceDecision, or None when the task is already in the last stage

    Raises:
        ValidationError: If the current or linked review stage is not in the project
    """
    current = get_stage(stages, task.stage_id)
    if current is None:
        raise ValidationError(
            f"Stage {task.stage_id} does not belong to project {task.project_id}",
            field="stage_id"
        )

    linked_id = current.linked_review_stage_id
    if linked_id is not None and linked_id != current.id:
        destination = get_stage(stages, linked_id)
        if destination is None:
            raise ValidationError(
                f"Linked review stage {linked_id} of stage '{current.title}' "
                f"does not belong to project {task.project_id}",
                field="linked_review_stage_id"
            )
    else:
        destination = next_stage(stages, current.id)
        if destination is None:
            logger.debug(f"Task {task.id} completed in last stage '{current.title}', no auto-advance")
            return None

    if destination.is_review_stage:
        return AdvanceDecision(
            target_stage_id=destination.id,
            status=TaskStatus.COMPLETE,
            review_state=ReviewState.AWAITING_REVIEW,
            previous_stage_id=current.id,
            original_assignee_id=task.assignee_id,
            keeps_assignee=True,
        )

    return AdvanceDecision(
        target_stage_id=destination.id,
        status=TaskStatus.PENDING,
        review_state=ReviewState.ACTIVE,
    )
