"""Shared formatting functions for MCP responses."""


def format_stage(stage: dict) -> str:
    """Format a stage for display."""
    flags = []
    if stage.get('is_review_stage'):
        flags.append("review")
    if stage.get('linked_review_stage_id'):
        flags.append(f"review via {stage['linked_review_stage_id']}")
    if stage.get('approved_target_stage_id'):
        flags.append(f"approves to {stage['approved_target_stage_id']}")
    if stage.get('main_responsible_id'):
        flags.append(f"owner {stage['main_responsible_id']}")
    flags_info = f" [{', '.join(flags)}]" if flags else ""

    return f"{stage['order']:>4}. **{stage['title']}** ({stage['kind']}){flags_info}\n      ID: {stage['id']}"


def format_task(task: dict) -> str:
    """Format a task for display with its workflow state."""
    tags_info = f"\nTags: {', '.join(task['tags'])}" if task.get('tags') else ""
    assignee_info = task.get('assignee_id') or "unassigned"
    co_assignees = task.get('co_assignees') or []
    co_info = ""
    if len(co_assignees) > 1:
        co_info = "\nCo-assignees: " + ", ".join(f"{c['user_id']} ({c['status']})" for c in co_assignees)

    review_info = ""
    if task.get('is_in_specific_stage'):
        review_info = (
            f"\nAwaiting review (came from stage {task['previous_stage_id']}, "
            f"original assignee {task.get('original_assignee_id') or 'none'})"
        )
    revision_info = f"\nRevision requested: {task['revision_comment']}" if task.get('revision_comment') else ""
    completed_info = "\nCompleted: yes (terminal stage)" if task.get('is_completed') else ""

    return f"""**{task['title']}**
ID: {task['id']}
Stage: {task['stage_id']}
Status: {task['status']}
Priority: {task['priority']}
Assignee: {assignee_info}{co_info}{tags_info}{review_info}{revision_info}{completed_info}
Version: {task['version']}"""


def format_transition(action: str, task: dict) -> str:
    """Format the result of a workflow transition."""
    return f"{action}: {task['title']}\n\n{format_task(task)}"


def format_task_list(tasks: list[dict], empty_message: str) -> str:
    """Format a list of tasks."""
    if not tasks:
        return empty_message
    return "\n\n".join(format_task(t) for t in tasks)
