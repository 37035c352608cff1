"""Pydantic schemas for request/response validation and engine snapshots."""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .events import WorkflowEvent
from .history import HistoryEntryDraft
from .models import StageKind, TaskStatus, TaskPriority, ReviewState


# ============================================================================
# Engine snapshots (immutable inputs of the transition resolver)
# ============================================================================

class StageSnapshot(BaseModel):
    """Read-only view of a stage as seen by the engine."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    project_id: UUID
    title: str
    order: int = 0
    kind: StageKind = StageKind.NORMAL
    linked_review_stage_id: Optional[UUID] = None
    approved_target_stage_id: Optional[UUID] = None
    main_responsible_id: Optional[UUID] = None
    parent_stage_id: Optional[UUID] = None
    color: Optional[str] = None

    @property
    def is_review_stage(self) -> bool:
        return self.kind == StageKind.REVIEW


class CoAssigneeSnapshot(BaseModel):
    """One assignee of a task and that user's own completion status."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    user_id: UUID
    status: TaskStatus = TaskStatus.PENDING


class RevisionEntrySnapshot(BaseModel):
    """Revision entry. ``id`` is None until the store has persisted it."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[UUID] = None
    comment: str
    requested_by_id: Optional[UUID] = None
    requested_at: datetime
    resolved_at: Optional[datetime] = None


class TaskSnapshot(BaseModel):
    """Read-only view of a task as loaded from the task store."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    project_id: UUID
    title: str
    description: Optional[str] = None
    stage_id: UUID
    assignee_id: Optional[UUID] = None
    co_assignees: tuple[CoAssigneeSnapshot, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: frozenset[str] = frozenset()
    review_state: ReviewState = ReviewState.ACTIVE
    previous_stage_id: Optional[UUID] = None
    original_assignee_id: Optional[UUID] = None
    revision_comment: Optional[str] = None
    revision_history: tuple[RevisionEntrySnapshot, ...] = ()
    completed_at: Optional[datetime] = None
    parent_id: Optional[UUID] = None
    is_assignee_locked: bool = False
    start_stage_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_in_specific_stage(self) -> bool:
        return self.review_state == ReviewState.AWAITING_REVIEW

    @property
    def open_revisions(self) -> tuple[RevisionEntrySnapshot, ...]:
        return tuple(r for r in self.revision_history if r.resolved_at is None)


class SuggestedTaskSnapshot(BaseModel):
    """Read-only view of a suggestion in the pool."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    project_id: UUID
    title: str
    description: Optional[str] = None
    default_stage_id: Optional[UUID] = None
    default_assignee_id: Optional[UUID] = None
    source: Optional[str] = None
    suggested_at: Optional[datetime] = None


class TaskPatch(BaseModel):
    """Requested mutation of a task.

    Only fields explicitly set (``model_fields_set``) count as requested, so
    ``TaskPatch(assignee_id=None)`` means "unassign" while ``TaskPatch()`` leaves
    the assignee to the stage defaults. The review bookkeeping fields are set by
    the review sub-flow only.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    co_assignee_ids: Optional[tuple[UUID, ...]] = None
    status: Optional[TaskStatus] = None
    tags: Optional[frozenset[str]] = None
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    is_assignee_locked: Optional[bool] = None
    start_stage_id: Optional[UUID] = None
    start_date: Optional[datetime] = None

    review_state: Optional[ReviewState] = None
    previous_stage_id: Optional[UUID] = None
    original_assignee_id: Optional[UUID] = None
    revision_comment: Optional[str] = None

    def has(self, field: str) -> bool:
        """True when the field was explicitly part of the request."""
        return field in self.model_fields_set


class Resolution(BaseModel):
    """Outcome of resolving a patch against a task snapshot.

    ``changes`` holds only the task columns whose value actually differs.
    ``co_assignees`` is None when the assignee set is unchanged.
    """

    model_config = ConfigDict(frozen=True)

    task_id: UUID
    changes: dict[str, Any] = Field(default_factory=dict)
    co_assignees: Optional[tuple[CoAssigneeSnapshot, ...]] = None
    new_revision: Optional[RevisionEntrySnapshot] = None
    resolve_revisions_at: Optional[datetime] = None
    history: tuple[HistoryEntryDraft, ...] = ()
    events: tuple[WorkflowEvent, ...] = ()
    withheld: bool = False

    @property
    def is_noop(self) -> bool:
        return (
            not self.changes
            and self.co_assignees is None
            and self.new_revision is None
            and self.resolve_revisions_at is None
        )


class TaskDraft(BaseModel):
    """A task about to be created (manually or by promotion)."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    title: str
    description: Optional[str] = None
    stage_id: UUID
    assignee_id: Optional[UUID] = None
    co_assignee_ids: tuple[UUID, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: frozenset[str] = frozenset()
    parent_id: Optional[UUID] = None
    is_assignee_locked: bool = False
    start_stage_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    created_by: Optional[UUID] = None
    history: tuple[HistoryEntryDraft, ...] = ()


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectCreate(BaseModel):
    """Schema for creating a project. Default stages are created with it."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectResponse(BaseModel):
    """Schema for project response."""

    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# User Schemas
# ============================================================================

class UserCreate(BaseModel):
    """Schema for creating a user."""

    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    role: str = Field("user", max_length=50)


class UserResponse(BaseModel):
    """Schema for user response."""

    id: UUID
    name: str
    email: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Stage Schemas
# ============================================================================

class StageCreate(BaseModel):
    """Schema for creating a stage.

    ``kind`` is derived from the title when omitted ("Pending" is the intake
    stage, "Archive"/"Completed" the terminal one, ``is_review_stage`` marks a
    review stage).
    """

    project_id: UUID = Field(..., description="Project UUID")
    title: str = Field(..., min_length=1, max_length=200)
    color: Optional[str] = Field(None, max_length=50)
    order: Optional[int] = Field(None, description="Display order (defaults to after the last work stage)")
    kind: Optional[StageKind] = None
    is_review_stage: bool = False
    linked_review_stage_id: Optional[UUID] = None
    approved_target_stage_id: Optional[UUID] = None
    main_responsible_id: Optional[UUID] = None
    parent_stage_id: Optional[UUID] = None


class StageUpdate(BaseModel):
    """Schema for updating a stage. All fields optional."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    color: Optional[str] = Field(None, max_length=50)
    order: Optional[int] = None
    kind: Optional[StageKind] = None
    is_review_stage: Optional[bool] = None
    linked_review_stage_id: Optional[UUID] = None
    approved_target_stage_id: Optional[UUID] = None
    main_responsible_id: Optional[UUID] = None
    parent_stage_id: Optional[UUID] = None


class StageResponse(BaseModel):
    """Schema for stage response."""

    id: UUID
    project_id: UUID
    title: str
    color: Optional[str] = None
    order: int
    kind: StageKind
    is_review_stage: bool
    linked_review_stage_id: Optional[UUID] = None
    approved_target_stage_id: Optional[UUID] = None
    main_responsible_id: Optional[UUID] = None
    parent_stage_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Task Schemas
# ============================================================================

class TaskCreate(BaseModel):
    """Schema for creating a task.

    Without ``stage_id`` the task lands in the project's intake ("Pending") stage.
    The first entry of ``assignee_ids`` becomes the primary assignee.
    """

    project_id: UUID = Field(..., description="Project UUID")
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    stage_id: Optional[UUID] = None
    assignee_ids: list[UUID] = Field(default_factory=list)
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: list[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    parent_id: Optional[UUID] = Field(None, description="Parent task for subtasks")
    is_assignee_locked: bool = False
    start_stage_id: Optional[UUID] = None
    start_date: Optional[datetime] = None


class TaskUpdate(BaseModel):
    """Schema for updating (and moving) a task.

    Omitted fields are left to the workflow rules: moving to another stage
    without ``assignee_id`` assigns the stage's main responsible.
    ``assignee_name`` is resolved through the user directory.
    """

    stage_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    assignee_name: Optional[str] = None
    assignee_ids: Optional[list[UUID]] = None
    status: Optional[TaskStatus] = None
    tags: Optional[list[str]] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    is_assignee_locked: Optional[bool] = None
    start_stage_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    expected_version: Optional[int] = Field(None, description="Version the client read; stale writes are rejected")


class TaskActionRequest(BaseModel):
    """Body for complete/start/delete style actions."""

    expected_version: Optional[int] = None


class SubmitReviewRequest(BaseModel):
    """Body for an explicit review request."""

    review_stage_id: Optional[UUID] = Field(None, description="Defaults to the stage's linked review stage")
    expected_version: Optional[int] = None


class ApproveRequest(BaseModel):
    """Body for approving a task in review."""

    target_stage_id: Optional[UUID] = Field(None, description="Defaults to the review stage's approval target")
    comment: Optional[str] = None
    expected_version: Optional[int] = None


class RevisionRequest(BaseModel):
    """Body for sending a task back for rework."""

    target_stage_id: Optional[UUID] = Field(None, description="Defaults to the stage the task came from")
    comment: str = Field(..., min_length=1)
    expected_version: Optional[int] = None


class CoAssigneeResponse(BaseModel):
    """Schema for a task assignee and their completion status."""

    user_id: UUID
    status: TaskStatus

    model_config = ConfigDict(from_attributes=True)


class RevisionEntryResponse(BaseModel):
    """Schema for revision history entries."""

    id: Optional[UUID] = None
    comment: str
    requested_by_id: Optional[UUID] = None
    requested_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TaskResponse(BaseModel):
    """Schema for full task response."""

    id: UUID
    project_id: UUID
    title: str
    description: Optional[str] = None
    stage_id: UUID
    assignee_id: Optional[UUID] = None
    co_assignees: list[CoAssigneeResponse] = Field(default_factory=list)
    status: TaskStatus
    priority: TaskPriority
    tags: list[str] = Field(default_factory=list)
    review_state: ReviewState
    is_in_specific_stage: bool
    is_completed: bool = Field(description="True iff the task sits in its project's terminal stage")
    previous_stage_id: Optional[UUID] = None
    original_assignee_id: Optional[UUID] = None
    revision_comment: Optional[str] = None
    revision_history: list[RevisionEntryResponse] = Field(default_factory=list)
    parent_id: Optional[UUID] = None
    is_assignee_locked: bool
    start_stage_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HistoryEntryResponse(BaseModel):
    """Schema for history entries."""

    id: UUID
    action: str
    entity_id: UUID
    entity_type: str
    project_id: Optional[UUID] = None
    actor_id: Optional[UUID] = None
    details: Optional[dict] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Suggested Task Schemas
# ============================================================================

class SuggestedTaskCreate(BaseModel):
    """Schema for adding a suggestion to the pool."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    default_stage_id: Optional[UUID] = None
    default_assignee_id: Optional[UUID] = None
    source: Optional[str] = Field(None, max_length=100)


class SuggestedTaskResponse(BaseModel):
    """Schema for suggestion response."""

    id: UUID
    project_id: UUID
    title: str
    description: Optional[str] = None
    default_stage_id: Optional[UUID] = None
    default_assignee_id: Optional[UUID] = None
    source: Optional[str] = None
    suggested_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PromoteRequest(BaseModel):
    """Body for promoting a suggestion into a live task."""

    target_stage_id: Optional[UUID] = Field(None, description="Defaults to the suggestion's default stage")
