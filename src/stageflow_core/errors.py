"""Exception taxonomy for the task workflow engine.

Every error raised by the engine derives from ``WorkflowError`` and carries an
``http_status`` that the API routers translate into an ``HTTPException``.
Errors are raised before any state is mutated.
"""
from typing import Optional
from uuid import UUID


class WorkflowError(Exception):
    """Base class for workflow engine errors."""

    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Raised for malformed requests or cross-project references."""

    http_status = 422

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StageInUseError(ValidationError):
    """Raised when deleting a stage that still holds tasks or dependent stages."""

    http_status = 409

    def __init__(
        self,
        message: str,
        stage_id: UUID,
        task_count: int = 0,
        dependent_stage_ids: Optional[list[UUID]] = None
    ):
        super().__init__(message, field="stage_id")
        self.stage_id = stage_id
        self.task_count = task_count
        self.dependent_stage_ids = dependent_stage_ids or []


class MissingAssigneeError(WorkflowError):
    """Raised when a revision is requested but nobody can take the task back."""

    http_status = 422

    def __init__(self, message: str, task_id: UUID):
        super().__init__(message)
        self.task_id = task_id


class InvalidStageError(WorkflowError):
    """Raised when a suggestion is promoted into a stage outside its project."""

    http_status = 400

    def __init__(self, message: str, stage_id: Optional[UUID], project_id: UUID):
        super().__init__(message)
        self.stage_id = stage_id
        self.project_id = project_id


class ConcurrentModificationError(WorkflowError):
    """Raised when the stored task version no longer matches the version read.

    The caller must refetch the task and retry; nothing was written.
    """

    http_status = 409

    def __init__(self, message: str, task_id: UUID, expected_version: int):
        super().__init__(message)
        self.task_id = task_id
        self.expected_version = expected_version


class NotFoundError(WorkflowError):
    """Raised for unknown tasks, stages, suggestions or users."""

    http_status = 404

    def __init__(self, entity_type: str, entity_id):
        super().__init__(f"{entity_type.capitalize()} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id
