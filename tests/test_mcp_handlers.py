"""Tests for the MCP tool handlers against a mocked HTTP API."""
import asyncio
import json

import httpx
import pytest
from stageflow_mcp import handlers, tools

TASK = {
    "id": "7d1f0c2e-0000-4000-8000-000000000001",
    "title": "Hero banner",
    "stage_id": "7d1f0c2e-0000-4000-8000-0000000000aa",
    "status": "complete",
    "priority": "medium",
    "tags": [],
    "assignee_id": None,
    "is_in_specific_stage": True,
    "previous_stage_id": "7d1f0c2e-0000-4000-8000-0000000000bb",
    "original_assignee_id": None,
    "is_completed": False,
    "version": 3,
}


def _call(handler, arguments, routes):
    """Run a handler with a client whose responses come from ``routes``."""
    requests = []

    def respond(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = routes[(request.method, request.url.path)]
        return httpx.Response(status, json=body)

    async def run():
        transport = httpx.MockTransport(respond)
        async with httpx.AsyncClient(base_url="http://api.test/api/v1", transport=transport) as client:
            return await handler(arguments, client)

    return asyncio.run(run()), requests


class TestHandlers:
    """Test the handlers behind each workflow tool."""

    def test_every_tool_has_a_handler(self):
        """Each advertised tool maps to a handler."""
        assert {t.name for t in tools.get_tools()} == set(handlers.HANDLERS)

    def test_complete_returns_text_content(self):
        """Handlers return only the text content of the result."""
        content, requests = _call(
            handlers.handle_complete_task,
            {"task_id": TASK["id"]},
            {("POST", f"/api/v1/tasks/{TASK['id']}/complete"): (200, TASK)},
        )

        assert isinstance(content, list)
        assert content[0].type == "text"
        assert "Completed task: Hero banner" in content[0].text
        assert "Awaiting review" in content[0].text
        assert len(requests) == 1

    def test_approve_sends_only_given_fields(self):
        """Omitted optional arguments are not sent to the API."""
        content, requests = _call(
            handlers.handle_approve_task,
            {"task_id": TASK["id"], "comment": "Looks good"},
            {("POST", f"/api/v1/tasks/{TASK['id']}/approve"): (200, {**TASK, "is_in_specific_stage": False})},
        )

        assert json.loads(requests[0].content) == {"comment": "Looks good"}
        assert content[0].text.startswith("Approved task")

    def test_empty_review_queue(self):
        """An empty review queue says so."""
        project_id = "7d1f0c2e-0000-4000-8000-0000000000cc"
        content, _ = _call(
            handlers.handle_get_pending_review_tasks,
            {"project_id": project_id},
            {("GET", f"/api/v1/projects/{project_id}/review-queue"): (200, [])},
        )
        assert "Nothing to review." in content[0].text

    def test_api_error_raised(self):
        """HTTP errors propagate for the server to report."""
        with pytest.raises(httpx.HTTPStatusError):
            _call(
                handlers.handle_get_task,
                {"task_id": TASK["id"]},
                {("GET", f"/api/v1/tasks/{TASK['id']}"): (404, {"detail": {"message": "Task not found"}})},
            )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
