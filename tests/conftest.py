"""Shared fixtures: an in-memory board of stages, in-memory stores and a SQLite-backed API client."""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stageflow_core.api.main import app
from stageflow_core.database import get_db
from stageflow_core.errors import ConcurrentModificationError, NotFoundError
from stageflow_core.interfaces import (
    EventPublisher,
    HistorySink,
    StageStore,
    SuggestionPool,
    TaskStore,
    UserDirectory,
)
from stageflow_core.models import Base, StageKind
from stageflow_core.schemas import (
    CoAssigneeSnapshot,
    StageSnapshot,
    SuggestedTaskSnapshot,
    TaskSnapshot,
)
from stageflow_core.stage_graph import ordered_stages
from stageflow_core.transitions import apply_resolution
from stageflow_core.workflow_service import WorkflowService

NOW = datetime(2026, 5, 4, 9, 30)


class Board:
    """A project with the usual stages.

    Suggested Task -> Pending -> Design -> Client Review (review) -> In Progress
    -> QA (review) -> Completed (terminal)
    """

    def __init__(self):
        self.project_id = uuid4()
        self.alice = uuid4()
        self.bob = uuid4()
        self.carol = uuid4()
        self.dave = uuid4()

        ids = {name: uuid4() for name in (
            "suggested", "pending", "design", "client_review", "in_progress", "qa", "completed",
        )}
        self.suggested = self._stage(ids["suggested"], "Suggested Task", 0, StageKind.SUGGESTION)
        self.pending = self._stage(ids["pending"], "Pending", 1, StageKind.INTAKE)
        self.design = self._stage(ids["design"], "Design", 2, main_responsible_id=self.alice)
        self.client_review = self._stage(
            ids["client_review"], "Client Review", 3, StageKind.REVIEW,
            approved_target_stage_id=ids["in_progress"], main_responsible_id=self.carol,
        )
        self.in_progress = self._stage(
            ids["in_progress"], "In Progress", 4,
            linked_review_stage_id=ids["qa"], main_responsible_id=self.bob,
        )
        self.qa = self._stage(ids["qa"], "QA", 5, StageKind.REVIEW, approved_target_stage_id=ids["completed"])
        self.completed = self._stage(ids["completed"], "Completed", 999, StageKind.TERMINAL)

        self.stages = ordered_stages([
            self.completed, self.qa, self.in_progress, self.client_review,
            self.design, self.pending, self.suggested,
        ])

    def _stage(self, stage_id: UUID, title: str, order: int, kind: StageKind = StageKind.NORMAL, **fields):
        return StageSnapshot(id=stage_id, project_id=self.project_id, title=title, order=order, kind=kind, **fields)

    def task(self, stage: Optional[StageSnapshot] = None, **fields) -> TaskSnapshot:
        """Task snapshot in the given stage (Design by default)."""
        stage = stage or self.design
        assignee_id = fields.pop("assignee_id", self.dave)
        if "co_assignees" not in fields and assignee_id is not None:
            fields["co_assignees"] = (CoAssigneeSnapshot(user_id=assignee_id),)
        return TaskSnapshot(
            id=fields.pop("id", uuid4()),
            project_id=self.project_id,
            title=fields.pop("title", "Landing page mockups"),
            stage_id=stage.id,
            assignee_id=assignee_id,
            **fields,
        )

    def suggestion(self, **fields) -> SuggestedTaskSnapshot:
        return SuggestedTaskSnapshot(
            id=fields.pop("id", uuid4()),
            project_id=fields.pop("project_id", self.project_id),
            title=fields.pop("title", "Add pricing FAQ"),
            source=fields.pop("source", "assistant"),
            suggested_at=NOW,
            **fields,
        )


@pytest.fixture
def board():
    return Board()


# ============================================================================
# In-memory collaborators for the workflow service
# ============================================================================

class InMemoryTaskStore(TaskStore):
    def __init__(self, suggestions: Optional["InMemorySuggestionPool"] = None):
        self.tasks: dict[UUID, TaskSnapshot] = {}
        self.suggestions = suggestions

    def add(self, task: TaskSnapshot) -> TaskSnapshot:
        self.tasks[task.id] = task
        return task

    def get(self, task_id):
        task = self.tasks.get(task_id)
        if task is None or task.deleted_at is not None:
            return None
        return task

    def save(self, task_id, expected_version, resolution):
        current = self.get(task_id)
        if current is None or current.version != expected_version:
            raise ConcurrentModificationError("conflict", task_id=task_id, expected_version=expected_version)
        saved = apply_resolution(current, resolution)
        self.tasks[task_id] = saved
        return saved

    def create(self, draft, consumed_suggestion_id=None):
        if consumed_suggestion_id is not None:
            if self.suggestions is None or consumed_suggestion_id not in self.suggestions.items:
                raise NotFoundError("suggested task", consumed_suggestion_id)
            del self.suggestions.items[consumed_suggestion_id]
        user_ids = list(draft.co_assignee_ids)
        if draft.assignee_id is not None and draft.assignee_id not in user_ids:
            user_ids.insert(0, draft.assignee_id)
        task = TaskSnapshot(
            **draft.model_dump(exclude={"co_assignee_ids", "history", "created_by"}),
            co_assignees=tuple(CoAssigneeSnapshot(user_id=u) for u in user_ids),
            created_at=NOW,
        )
        return self.add(task)

    def _live(self):
        return [t for t in self.tasks.values() if t.deleted_at is None]

    def list_by_project(self, project_id):
        return [t for t in self._live() if t.project_id == project_id]

    def list_by_stage(self, stage_id):
        return [t for t in self._live() if t.stage_id == stage_id]

    def list_subtasks(self, parent_id):
        return [t for t in self._live() if t.parent_id == parent_id]

    def list_awaiting_review(self, project_id):
        return [t for t in self.list_by_project(project_id) if t.is_in_specific_stage]

    def list_scheduled(self, due_before):
        return [t for t in self._live() if t.start_date is not None and t.start_date <= due_before]

    def soft_delete(self, task_id, deleted_at):
        task = self.get(task_id)
        if task is None:
            return False
        self.tasks[task_id] = task.model_copy(update={"deleted_at": deleted_at, "version": task.version + 1})
        return True


class InMemoryStageStore(StageStore):
    def __init__(self, stages):
        self.items = {s.id: s for s in stages}

    def get(self, stage_id):
        return self.items.get(stage_id)

    def list_by_project(self, project_id):
        return ordered_stages(s for s in self.items.values() if s.project_id == project_id)


class InMemorySuggestionPool(SuggestionPool):
    def __init__(self):
        self.items: dict[UUID, SuggestedTaskSnapshot] = {}

    def get(self, suggestion_id):
        return self.items.get(suggestion_id)

    def list_by_project(self, project_id):
        return [s for s in self.items.values() if s.project_id == project_id]


class RecordingHistorySink(HistorySink):
    def __init__(self):
        self.entries = []

    def append(self, entry):
        self.entries.append(entry)

    def actions(self, entity_id=None):
        return [e.action.value for e in self.entries if entity_id is None or e.entity_id == entity_id]


class RecordingEventPublisher(EventPublisher):
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def types(self):
        return [e.type.value for e in self.events]


class StaticUserDirectory(UserDirectory):
    def __init__(self, users: dict[str, UUID]):
        self.users = users

    def find_by_name(self, name):
        return self.users.get(name.strip().lower())

    def find_by_id(self, user_id):
        return user_id if user_id in self.users.values() else None


@pytest.fixture
def history_sink():
    return RecordingHistorySink()


@pytest.fixture
def event_publisher():
    return RecordingEventPublisher()


@pytest.fixture
def suggestion_pool():
    return InMemorySuggestionPool()


@pytest.fixture
def task_store(suggestion_pool):
    return InMemoryTaskStore(suggestion_pool)


@pytest.fixture
def service(board, task_store, suggestion_pool, history_sink, event_publisher):
    """Workflow service over the board's stages with in-memory stores and a fixed clock."""
    return WorkflowService(
        tasks=task_store,
        stages=InMemoryStageStore(board.stages),
        history=history_sink,
        events=event_publisher,
        suggestions=suggestion_pool,
        users=StaticUserDirectory({"alice": board.alice, "bob": board.bob, "dave": board.dave}),
        clock=lambda: NOW,
    )


# ============================================================================
# SQLite database and API client
# ============================================================================

@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    """API client whose requests share the test database session."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
