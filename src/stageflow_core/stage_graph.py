"""Stage ordering and structural queries over a project's stages.

Ordering is by a rank derived from ``StageKind`` and, within a rank, by the
stored ``order`` field:
- suggestion stages (rank 0) and the intake stage (rank 1) always come first
- terminal stages (rank 999) always come last
- every other stage has rank 10, so managers only ever reorder the middle

Functions accept ORM ``Stage`` rows and ``StageSnapshot`` objects alike.
The title of a stage is only looked at by ``classify_stage_title``, which runs
when a stage is created or edited, never when a task moves.
"""
import logging
from typing import Iterable, Optional, Sequence
from uuid import UUID

from .models import StageKind

logger = logging.getLogger("stageflow-core.stage_graph")


SUGGESTION_TITLES = frozenset({"suggested", "suggested task"})
INTAKE_TITLES = frozenset({"pending"})
TERMINAL_TITLES = frozenset({"archive", "completed", "complete"})

STAGE_RANK: dict[StageKind, int] = {
    StageKind.SUGGESTION: 0,
    StageKind.INTAKE: 1,
    StageKind.TERMINAL: 999,
}
DEFAULT_STAGE_RANK = 10

# Stages every project carries (title, order, color, kind)
DEFAULT_STAGES: tuple[tuple[str, int, str, StageKind], ...] = (
    ("Suggested Task", 0, "bg-purple-500", StageKind.SUGGESTION),
    ("Pending", 1, "bg-gray-500", StageKind.INTAKE),
    ("Archive", 999, "bg-slate-800", StageKind.TERMINAL),
)

# Lowest order handed to a manager-created stage (after Suggested Task and Pending)
MIN_WORK_STAGE_ORDER = 2


def normalize_title(title: Optional[str]) -> str:
    """Trim and lowercase a stage title."""
    return (title or "").strip().lower()


def classify_stage_title(title: str, is_review_stage: bool = False) -> StageKind:
    """
    Derive a stage kind from its title.

    Only used at the boundary: stage create/update and the data migration that
    backfilled ``stages.kind``.

    Args:
        title: Stage title as entered by the manager
        is_review_stage: Whether the stage was flagged as a review stage

    Returns:
        StageKind for the stage
    """
    normalized = normalize_title(title)
    if normalized in SUGGESTION_TITLES:
        return StageKind.SUGGESTION
    if normalized in INTAKE_TITLES:
        return StageKind.INTAKE
    if normalized in TERMINAL_TITLES:
        return StageKind.TERMINAL
    if is_review_stage:
        return StageKind.REVIEW
    return StageKind.NORMAL


def stage_rank(stage) -> int:
    """Sort rank of a stage (see module docstring)."""
    return STAGE_RANK.get(stage.kind, DEFAULT_STAGE_RANK)


def ordered_stages(stages: Iterable) -> list:
    """
    Total, deterministic ordering of a project's stages.

    Args:
        stages: Stages of one project

    Returns:
        Stages sorted by (rank, order, id)
    """
    return sorted(stages, key=lambda s: (stage_rank(s), s.order or 0, str(s.id)))


def get_stage(stages: Iterable, stage_id: Optional[UUID]):
    """Return the stage with the given id, or None."""
    if stage_id is None:
        return None
    for stage in stages:
        if stage.id == stage_id:
            return stage
    return None


def next_stage(stages: Sequence, current_stage_id: UUID):
    """
    Stage immediately following ``current_stage_id`` in the project order.

    Returns:
        The next stage, or None if the current stage is last or unknown
    """
    ordered = ordered_stages(stages)
    for index, stage in enumerate(ordered):
        if stage.id == current_stage_id:
            if index + 1 < len(ordered):
                return ordered[index + 1]
            return None
    logger.debug(f"Stage {current_stage_id} not found among {len(ordered)} stages")
    return None


def is_terminal(stages: Sequence, stage_id: Optional[UUID]) -> bool:
    """True iff the stage is the last one in the project order."""
    ordered = ordered_stages(stages)
    return bool(ordered) and ordered[-1].id == stage_id


def intake_stage(stages: Iterable):
    """The project's intake ("Pending") stage, or None."""
    for stage in ordered_stages(stages):
        if stage.kind == StageKind.INTAKE:
            return stage
    return None


def next_stage_order(stages: Iterable) -> int:
    """Order value for a new stage: after every non-terminal stage, at least 2."""
    orders = [s.order or 0 for s in stages if s.kind != StageKind.TERMINAL]
    highest = max(orders, default=MIN_WORK_STAGE_ORDER - 1)
    return max(highest + 1, MIN_WORK_STAGE_ORDER)


def missing_default_stages(stages: Iterable) -> list[tuple[str, int, str, StageKind]]:
    """Default stages (title, order, color, kind) whose kind the project lacks."""
    present = {s.kind for s in stages}
    return [default for default in DEFAULT_STAGES if default[3] not in present]
