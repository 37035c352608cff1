"""FastAPI dependencies: acting user and workflow service wiring."""
import logging
from functools import lru_cache
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..errors import WorkflowError
from ..events import LoggingEventPublisher, WebhookEventPublisher
from ..stores import SqlHistorySink, SqlStageStore, SqlSuggestionPool, SqlTaskStore, SqlUserDirectory
from ..workflow_service import WorkflowService

logger = logging.getLogger("stageflow-core.api.dependencies")


def get_actor_id(x_actor_id: Optional[UUID] = Header(None)) -> Optional[UUID]:
    """
    Acting user, passed explicitly by the caller in the ``X-Actor-Id`` header.

    Authentication happens upstream; requests without the header act as the system.
    """
    return x_actor_id


@lru_cache()
def get_event_publisher():
    """Webhook publisher when a URL is configured, log publisher otherwise."""
    settings = get_settings()
    if settings.webhook_url:
        logger.info(f"Publishing workflow events to {settings.webhook_url}")
        return WebhookEventPublisher(settings.webhook_url, timeout=settings.webhook_timeout)
    return LoggingEventPublisher()


def get_workflow_service(db: Session = Depends(get_db)) -> WorkflowService:
    """Workflow service bound to the request's database session."""
    return WorkflowService(
        tasks=SqlTaskStore(db),
        stages=SqlStageStore(db),
        history=SqlHistorySink(db),
        events=get_event_publisher(),
        suggestions=SqlSuggestionPool(db),
        users=SqlUserDirectory(db),
    )


def to_http_exception(error: WorkflowError) -> HTTPException:
    """Translate a workflow error into the HTTP error for its class."""
    detail = {"message": error.message, "error": type(error).__name__}
    field = getattr(error, "field", None)
    if field:
        detail["field"] = field
    return HTTPException(status_code=error.http_status, detail=detail)
