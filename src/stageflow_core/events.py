"""Workflow events raised for external consumers (webhooks, notifications)."""
import enum
import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("stageflow-core.events")


class WorkflowEventType(str, enum.Enum):
    """Event types published after a committed transition."""

    TASK_STAGE_CHANGED = "TaskStageChanged"
    TASK_ASSIGNEE_CHANGED = "TaskAssigneeChanged"
    TASK_ENTERED_REVIEW = "TaskEnteredReview"
    TASK_REVISION_REQUESTED = "TaskRevisionRequested"
    TASK_APPROVED = "TaskApproved"


class WorkflowEvent(BaseModel):
    """A single workflow event."""

    model_config = ConfigDict(frozen=True)

    type: WorkflowEventType
    task_id: UUID
    project_id: UUID
    actor_id: Optional[UUID] = None
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class LoggingEventPublisher:
    """Default publisher: writes every event to the log."""

    def publish(self, event: WorkflowEvent) -> None:
        logger.info(
            f"{event.type.value} task={event.task_id} project={event.project_id} "
            f"actor={event.actor_id} payload={event.payload}"
        )


class WebhookEventPublisher:
    """POST every event as JSON to a configured webhook URL."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def publish(self, event: WorkflowEvent) -> None:
        response = self.client.post(self.url, json=event.model_dump(mode="json"))
        response.raise_for_status()
        logger.debug(f"Delivered {event.type.value} for task {event.task_id} to {self.url}")

    def close(self) -> None:
        self.client.close()


def publish_events(publisher, events: Iterable[WorkflowEvent]) -> int:
    """
    Publish events one by one, logging failures.

    Args:
        publisher: EventPublisher implementation, or None to skip publishing
        events: Events produced by a committed transition

    Returns:
        Number of events successfully published
    """
    if publisher is None:
        return 0

    published = 0
    for event in events:
        try:
            publisher.publish(event)
            published += 1
        except httpx.HTTPError as e:
            logger.error(f"Webhook delivery failed for {event.type.value} ({event.task_id}): {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Failed to publish {event.type.value} for task {event.task_id}: {e}", exc_info=True)
    return published
