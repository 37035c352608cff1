"""Audit trail emission for workflow transitions.

The resolver produces ``HistoryEntryDraft`` objects; this module hands them to
the configured history sink once the transition has been committed. History is
best-effort: a failing sink is logged and never rolls back the task change.
"""
import enum
import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import HistoryAction

logger = logging.getLogger("stageflow-core.history")


class HistoryEntryDraft(BaseModel):
    """History entry computed by the engine, not yet stored."""

    model_config = ConfigDict(frozen=True)

    action: HistoryAction
    entity_id: UUID
    entity_type: str = "task"
    project_id: Optional[UUID] = None
    actor_id: Optional[UUID] = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


def history_details(**values: Any) -> dict[str, Any]:
    """Build a JSON-safe details payload (UUIDs and enums become strings)."""
    details = {}
    for key, value in values.items():
        if isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        details[key] = value
    return details


def emit_history(sink, entries: Iterable[HistoryEntryDraft]) -> int:
    """
    Append history entries to the sink, logging (never raising) failures.

    Args:
        sink: HistorySink implementation, or None to skip emission
        entries: Drafts produced by a committed transition

    Returns:
        Number of entries successfully appended
    """
    if sink is None:
        return 0

    appended = 0
    for entry in entries:
        try:
            sink.append(entry)
            appended += 1
        except Exception as e:
            logger.error(
                f"Failed to append history entry {entry.action.value} for "
                f"{entry.entity_type} {entry.entity_id}: {e}",
                exc_info=True
            )
    return appended
