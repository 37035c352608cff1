"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    JSON,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.declarative import declarative_base

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_column(enum_cls):
    # Serialize enum values (lowercase) instead of names (UPPERCASE)
    return Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj])


class StageKind(str, enum.Enum):
    """Structural role of a stage inside its project's workflow.

    Assigned once when a stage is created or edited (see
    ``stage_graph.classify_stage_title``) and never re-derived from the title
    when a task moves.
    """

    SUGGESTION = "suggestion"  # Pool of suggested tasks, always sorted first
    INTAKE = "intake"          # "Pending" backlog, sorted right after suggestions
    NORMAL = "normal"          # Regular work stage
    REVIEW = "review"          # Parks tasks until a reviewer approves or sends back
    TERMINAL = "terminal"      # Archive/completed stage, always sorted last


class TaskStatus(str, enum.Enum):
    """Per-stage work status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReviewState(str, enum.Enum):
    """Whether a task is parked in a review stage waiting for a decision."""

    ACTIVE = "active"
    AWAITING_REVIEW = "awaiting_review"


class HistoryAction(str, enum.Enum):
    """History entry action enum."""

    CREATED = "created"
    STAGE_CHANGED = "stage_changed"
    MOVED_TO_REVIEW_STAGE = "moved_to_review_stage"
    ASSIGNED = "assigned"
    REASSIGNED = "reassigned"
    UNASSIGNED = "unassigned"
    STATUS_CHANGED = "status_changed"
    COMPLETED = "completed"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"
    DELETED = "deleted"


class Project(Base):
    """A board: owns an ordered set of stages and the tasks flowing through them."""

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    stages = relationship("Stage", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Project {self.name}>"


class User(Base):
    """User account. Authentication lives outside this service."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True, unique=True)
    role = Column(String(50), nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<User {self.name}>"


class Stage(Base):
    """Workflow stage of a project (a kanban column)."""

    __tablename__ = "stages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title = Column(String(200), nullable=False)
    color = Column(String(50), nullable=True)
    order = Column(Integer, nullable=False, default=0)
    kind = Column(_enum_column(StageKind), nullable=False, default=StageKind.NORMAL)

    # Review routing
    linked_review_stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
    approved_target_stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)

    # Sub-stages (user stages living inside a project stage)
    parent_stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)

    main_responsible_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="stages")
    main_responsible = relationship("User", foreign_keys=[main_responsible_id])

    @property
    def is_review_stage(self) -> bool:
        return self.kind == StageKind.REVIEW

    def __repr__(self) -> str:
        return f"<Stage {self.title} ({self.kind.value if self.kind else None})>"


class Task(Base):
    """Task card moving through the stages of a project.

    ``previous_stage_id`` and ``original_assignee_id`` are only meaningful while
    ``review_state`` is ``awaiting_review``: they hold the return path used when a
    reviewer sends the task back.
    """

    __tablename__ = "tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    # Core task fields
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(_enum_column(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)
    priority = Column(_enum_column(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)
    tags = Column(JSON, nullable=False, default=list)
    due_date = Column(DateTime, nullable=True)

    # Workflow position
    stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id"), nullable=False, index=True)
    assignee_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    is_assignee_locked = Column(Boolean, nullable=False, default=False)

    # Review bookkeeping
    review_state = Column(_enum_column(ReviewState), nullable=False, default=ReviewState.ACTIVE, index=True)
    previous_stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
    original_assignee_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    revision_comment = Column(Text, nullable=True)

    # Scheduled start
    start_stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
    start_date = Column(DateTime, nullable=True)

    # Optimistic lock counter, bumped by every committed transition
    version = Column(Integer, nullable=False, default=1)

    # Audit fields
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True, index=True)

    # Relationships
    project = relationship("Project")
    stage = relationship("Stage", foreign_keys=[stage_id])
    assignee = relationship("User", foreign_keys=[assignee_id])
    co_assignees = relationship(
        "TaskAssignee",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskAssignee.position",
    )
    revision_history = relationship(
        "RevisionEntry",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="RevisionEntry.requested_at",
    )

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title[:30]}>"


class TaskAssignee(Base):
    """Co-assignee of a task with that user's own completion status."""

    __tablename__ = "task_assignees"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    task_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(_enum_column(TaskStatus), nullable=False, default=TaskStatus.PENDING)
    position = Column(Integer, nullable=False, default=0)
    assigned_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_assignee"),)

    task = relationship("Task", back_populates="co_assignees")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<TaskAssignee {self.task_id}: {self.user_id} ({self.status.value})>"


class RevisionEntry(Base):
    """One "send back for rework" cycle. Only ``resolved_at`` is ever updated."""

    __tablename__ = "revision_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    task_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    comment = Column(Text, nullable=False)
    requested_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    requested_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    task = relationship("Task", back_populates="revision_history")
    requested_by = relationship("User")

    def __repr__(self) -> str:
        return f"<RevisionEntry {self.task_id}: {'resolved' if self.resolved_at else 'open'}>"


class SuggestedTask(Base):
    """Template task waiting in the suggestion pool until promoted."""

    __tablename__ = "suggested_tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    default_stage_id = Column(Uuid(as_uuid=True), ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
    default_assignee_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    source = Column(String(100), nullable=True)
    suggested_at = Column(DateTime, nullable=False, default=utcnow)

    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<SuggestedTask {self.title[:30]}>"


class HistoryEntry(Base):
    """Immutable audit log entry for any entity (tasks, stages)."""

    __tablename__ = "history_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    action = Column(String(50), nullable=False, index=True)
    entity_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, default="task")
    project_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    actor_id = Column(Uuid(as_uuid=True), nullable=True)
    details = Column(JSON, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<HistoryEntry {self.entity_type}:{self.entity_id} {self.action}>"
