"""API routers for StageFlow Core."""

from . import projects, stages, tasks, suggested_tasks, users

__all__ = ["projects", "stages", "tasks", "suggested_tasks", "users"]
