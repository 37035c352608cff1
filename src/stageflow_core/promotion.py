"""Promotion of suggested tasks into live tasks."""
import logging
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from .errors import InvalidStageError
from .history import HistoryEntryDraft, history_details
from .models import HistoryAction, StageKind, TaskStatus
from .schemas import TaskDraft
from .stage_graph import get_stage, intake_stage, is_terminal
from .transitions import COMPLETED_TAG

logger = logging.getLogger("stageflow-core.promotion")

SUGGESTION_TAG = "AI Suggestion"


def promote(
    suggested,
    stages: Sequence,
    actor_id: Optional[UUID],
    now: datetime,
    target_stage_id: Optional[UUID] = None
) -> TaskDraft:
    """
    Build the live task for a suggestion.

    The task starts ``pending``, unassigned, tagged "AI Suggestion". The
    caller creates it and removes the suggestion from the pool in one commit.

    Args:
        suggested: Suggested task (snapshot or ORM row)
        stages: All stages of the suggestion's project
        actor_id: User promoting the suggestion
        now: Timestamp of the promotion
        target_stage_id: Destination stage; defaults to the suggestion's default
            stage, then to the project's intake stage

    Returns:
        TaskDraft carrying its "created" history entry

    Raises:
        InvalidStageError: If the target stage is not a work stage of the suggestion's project
    """
    if target_stage_id is None:
        target_stage_id = suggested.default_stage_id
    if target_stage_id is None:
        intake = intake_stage(stages)
        target_stage_id = intake.id if intake is not None else None

    stage = get_stage(stages, target_stage_id)
    if stage is None or stage.project_id != suggested.project_id:
        logger.warning(f"Rejected promotion of suggestion {suggested.id} to stage {target_stage_id}")
        raise InvalidStageError(
            f"Stage {target_stage_id} does not belong to project {suggested.project_id}",
            stage_id=target_stage_id,
            project_id=suggested.project_id
        )
    if stage.kind == StageKind.SUGGESTION:
        raise InvalidStageError(
            f"Cannot promote a suggestion into suggestion stage '{stage.title}'",
            stage_id=stage.id,
            project_id=suggested.project_id
        )

    tags = {SUGGESTION_TAG}
    if is_terminal(stages, stage.id):
        tags.add(COMPLETED_TAG)

    draft = TaskDraft(
        project_id=suggested.project_id,
        title=suggested.title,
        description=suggested.description,
        stage_id=stage.id,
        assignee_id=None,
        status=TaskStatus.PENDING,
        tags=frozenset(tags),
        created_by=actor_id,
    )
    created = HistoryEntryDraft(
        action=HistoryAction.CREATED,
        entity_id=draft.id,
        entity_type="task",
        project_id=draft.project_id,
        actor_id=actor_id,
        details=history_details(title=draft.title, source=SUGGESTION_TAG, stage=stage.id),
        timestamp=now,
    )
    return draft.model_copy(update={"history": (created,)})
