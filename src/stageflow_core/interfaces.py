"""Collaborator contracts consumed by the workflow service.

SQLAlchemy implementations live in ``stores.py``.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from .events import WorkflowEvent
from .history import HistoryEntryDraft
from .schemas import Resolution, StageSnapshot, SuggestedTaskSnapshot, TaskDraft, TaskSnapshot


class TaskStore(ABC):
    @abstractmethod
    def get(self, task_id: UUID) -> Optional[TaskSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def save(self, task_id: UUID, expected_version: int, resolution: Resolution) -> TaskSnapshot:
        """Apply a resolution atomically iff the stored version is ``expected_version``.

        Raises ConcurrentModificationError otherwise; nothing is written then.
        """
        raise NotImplementedError

    @abstractmethod
    def create(self, draft: TaskDraft, consumed_suggestion_id: Optional[UUID] = None) -> TaskSnapshot:
        """Insert a task, removing the consumed suggestion in the same transaction."""
        raise NotImplementedError

    @abstractmethod
    def list_by_project(self, project_id: UUID) -> list[TaskSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def list_by_stage(self, stage_id: UUID) -> list[TaskSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def list_subtasks(self, parent_id: UUID) -> list[TaskSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def list_awaiting_review(self, project_id: UUID) -> list[TaskSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def list_scheduled(self, due_before: datetime) -> list[TaskSnapshot]:
        """Tasks with a ``start_date`` at or before ``due_before``."""
        raise NotImplementedError

    @abstractmethod
    def soft_delete(self, task_id: UUID, deleted_at: datetime) -> bool:
        raise NotImplementedError


class StageStore(ABC):
    @abstractmethod
    def get(self, stage_id: UUID) -> Optional[StageSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def list_by_project(self, project_id: UUID) -> list[StageSnapshot]:
        """Stages of a project in workflow order."""
        raise NotImplementedError


class SuggestionPool(ABC):
    @abstractmethod
    def get(self, suggestion_id: UUID) -> Optional[SuggestedTaskSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def list_by_project(self, project_id: UUID) -> list[SuggestedTaskSnapshot]:
        raise NotImplementedError


class HistorySink(ABC):
    @abstractmethod
    def append(self, entry: HistoryEntryDraft) -> None:
        raise NotImplementedError


class UserDirectory(ABC):
    @abstractmethod
    def find_by_name(self, name: str) -> Optional[UUID]:
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, user_id: UUID) -> Optional[UUID]:
        raise NotImplementedError


class EventPublisher(ABC):
    @abstractmethod
    def publish(self, event: WorkflowEvent) -> None:
        raise NotImplementedError
