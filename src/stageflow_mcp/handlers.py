"""MCP tool handlers for the task workflow.

All handlers follow a consistent pattern:
- Accept: arguments dict and an httpx.AsyncClient bound to the API base URL
- Return: list[TextContent] describing the result
- Use formatters from formatters module for consistent output
"""
import logging

import httpx
from mcp.types import TextContent

from . import formatters

logger = logging.getLogger("stageflow-mcp.handlers")


def _body(arguments: dict, *fields: str) -> dict:
    """Pick the given fields that were actually provided."""
    return {f: arguments[f] for f in fields if arguments.get(f) is not None}


# ============================================================================
# Stage Handlers
# ============================================================================

async def handle_get_project_stages(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """List the stages of a project in workflow order."""
    project_id = arguments["project_id"]
    response = await client.get(f"/projects/{project_id}/stages")
    response.raise_for_status()
    stages = response.json()
    logger.info(f"Listed {len(stages)} stages of project {project_id}")

    text = f"Stages of project {project_id}:\n\n" + "\n".join(formatters.format_stage(s) for s in stages)
    return [TextContent(type="text", text=text)]


# ============================================================================
# Task Handlers
# ============================================================================

async def handle_get_task(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """Get a task."""
    task_id = arguments["task_id"]
    response = await client.get(f"/tasks/{task_id}")
    response.raise_for_status()
    return [TextContent(type="text", text=formatters.format_task(response.json()))]


async def handle_update_task(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """Update or move a task."""
    task_id = arguments["task_id"]
    body = _body(
        arguments,
        "stage_id", "assignee_name", "status", "priority", "title", "description", "expected_version",
    )
    response = await client.patch(f"/tasks/{task_id}", json=body)
    response.raise_for_status()
    result = response.json()
    logger.info(f"Updated task {task_id}: {', '.join(sorted(body)) or 'no fields'}")
    return [TextContent(type="text", text=formatters.format_transition("Updated task", result))]


async def handle_complete_task(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """Mark a task as complete."""
    task_id = arguments["task_id"]
    response = await client.post(f"/tasks/{task_id}/complete")
    response.raise_for_status()
    result = response.json()
    logger.info(f"Completed task {task_id}, now in stage {result['stage_id']}")
    return [TextContent(type="text", text=formatters.format_transition("Completed task", result))]


# ============================================================================
# Review Handlers
# ============================================================================

async def handle_get_pending_review_tasks(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """List tasks awaiting a review decision."""
    project_id = arguments["project_id"]
    response = await client.get(f"/projects/{project_id}/review-queue")
    response.raise_for_status()
    tasks = response.json()
    logger.info(f"Found {len(tasks)} tasks awaiting review in project {project_id}")

    summary = f"{len(tasks)} task(s) awaiting review\n\n"
    text = summary + formatters.format_task_list(tasks, "Nothing to review.")
    return [TextContent(type="text", text=text)]


async def handle_approve_task(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """Approve a task in review."""
    task_id = arguments["task_id"]
    response = await client.post(f"/tasks/{task_id}/approve", json=_body(arguments, "target_stage_id", "comment"))
    response.raise_for_status()
    result = response.json()
    logger.info(f"Approved task {task_id} to stage {result['stage_id']}")
    return [TextContent(type="text", text=formatters.format_transition("Approved task", result))]


async def handle_request_revision(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """Send a task back for rework."""
    task_id = arguments["task_id"]
    response = await client.post(
        f"/tasks/{task_id}/request-revision",
        json=_body(arguments, "comment", "target_stage_id")
    )
    response.raise_for_status()
    result = response.json()
    logger.info(f"Requested revision of task {task_id}")
    return [TextContent(type="text", text=formatters.format_transition("Revision requested", result))]


# ============================================================================
# Suggestion Handlers
# ============================================================================

async def handle_promote_suggested_task(
    arguments: dict,
    client: httpx.AsyncClient
) -> list[TextContent]:
    """Promote a suggestion into a live task."""
    suggestion_id = arguments["suggestion_id"]
    response = await client.post(
        f"/suggested-tasks/{suggestion_id}/promote",
        json=_body(arguments, "target_stage_id")
    )
    response.raise_for_status()
    result = response.json()
    logger.info(f"Promoted suggestion {suggestion_id} to task {result['id']}")
    return [TextContent(type="text", text=formatters.format_transition("Created task", result))]


HANDLERS = {
    "get_project_stages": handle_get_project_stages,
    "get_task": handle_get_task,
    "update_task": handle_update_task,
    "complete_task": handle_complete_task,
    "get_pending_review_tasks": handle_get_pending_review_tasks,
    "approve_task": handle_approve_task,
    "request_revision": handle_request_revision,
    "promote_suggested_task": handle_promote_suggested_task,
}
