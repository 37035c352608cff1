"""Shared MCP tool definitions for StageFlow.

This module provides the definitive list of MCP tools exposed by the server.
"""

from mcp.types import Tool


def get_tools() -> list[Tool]:
    """Get the list of all MCP tools for the task workflow."""
    return [
        # ============================================================================
        # Stage Tools
        # ============================================================================
        Tool(
            name="get_project_stages",
            description="List the stages of a project in workflow order. "
                       "Suggestion and Pending stages always come first, Archive last. "
                       "Use this to find stage IDs for update_task, approve_task and request_revision.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": {
                        "type": "string",
                        "description": "Project UUID"
                    }
                },
                "required": ["project_id"]
            }
        ),
        # ============================================================================
        # Task Tools
        # ============================================================================
        Tool(
            name="get_task",
            description="Get a task with its workflow state (stage, assignee, review state, tags, version).",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "Task UUID"
                    }
                },
                "required": ["task_id"]
            }
        ),
        Tool(
            name="update_task",
            description="Update or move a task. "
                       "\n\nMoving to another stage without an assignee assigns the stage's main responsible "
                       "and resets the status to pending. Setting status='complete' without stage_id "
                       "auto-advances the task to the next stage (or into its review stage)."
                       "\n\nERRORS:"
                       "\n• 404: Task or user not found"
                       "\n• 409: Task changed since expected_version"
                       "\n• 422: Stage belongs to another project",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "Task UUID"},
                    "stage_id": {"type": "string", "description": "Target stage UUID"},
                    "assignee_name": {"type": "string", "description": "Name of the new assignee"},
                    "status": {
                        "type": "string",
                        "enum": ["pending", "in-progress", "complete"],
                        "description": "New status"
                    },
                    "priority": {
                        "type": "string",
                        "enum": ["low", "medium", "high"],
                        "description": "New priority"
                    },
                    "title": {"type": "string", "description": "New title"},
                    "description": {"type": "string", "description": "New description"},
                    "expected_version": {"type": "integer", "description": "Version you read (optional)"}
                },
                "required": ["task_id"]
            }
        ),
        Tool(
            name="complete_task",
            description="Mark a task as complete. "
                       "\n\nEquivalent to update_task(status='complete'). The task auto-advances: "
                       "into the stage's linked review stage if any, otherwise to the next stage.",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "Task UUID"}
                },
                "required": ["task_id"]
            }
        ),
        # ============================================================================
        # Review Tools
        # ============================================================================
        Tool(
            name="get_pending_review_tasks",
            description="List the tasks of a project that are parked in a review stage awaiting a decision.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": {"type": "string", "description": "Project UUID"}
                },
                "required": ["project_id"]
            }
        ),
        Tool(
            name="approve_task",
            description="Approve a task in review. "
                       "\n\nMoves it to target_stage_id (default: the review stage's approval target), "
                       "clears the review bookkeeping and resolves open revision requests.",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "Task UUID"},
                    "target_stage_id": {"type": "string", "description": "Destination stage UUID (optional)"},
                    "comment": {"type": "string", "description": "Reviewer comment (optional)"}
                },
                "required": ["task_id"]
            }
        ),
        Tool(
            name="request_revision",
            description="Send a task in review back for rework. "
                       "\n\nThe task returns to target_stage_id (default: the stage it came from), "
                       "is reassigned to its original assignee and tagged 'Redo'."
                       "\n\nERRORS:"
                       "\n• 422: Empty comment, or no assignee to send it back to",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "Task UUID"},
                    "comment": {"type": "string", "description": "What needs to change"},
                    "target_stage_id": {"type": "string", "description": "Stage to return to (optional)"}
                },
                "required": ["task_id", "comment"]
            }
        ),
        # ============================================================================
        # Suggestion Tools
        # ============================================================================
        Tool(
            name="promote_suggested_task",
            description="Promote a suggested task into a live task (pending, unassigned, tagged 'AI Suggestion'). "
                       "\n\nERRORS:"
                       "\n• 400: Target stage belongs to another project"
                       "\n• 404: Suggestion not found",
            inputSchema={
                "type": "object",
                "properties": {
                    "suggestion_id": {"type": "string", "description": "Suggested task UUID"},
                    "target_stage_id": {"type": "string", "description": "Destination stage UUID (optional)"}
                },
                "required": ["suggestion_id"]
            }
        ),
    ]
