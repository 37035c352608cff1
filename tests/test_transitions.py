"""Tests for the transition resolver and completion auto-advance."""
from uuid import uuid4

import pytest
from stageflow_core.auto_advance import plan_completion
from stageflow_core.errors import ValidationError
from stageflow_core.models import HistoryAction, ReviewState, TaskStatus
from stageflow_core.review import approve, request_revision
from stageflow_core.schemas import CoAssigneeSnapshot, StageSnapshot, TaskPatch
from stageflow_core.transitions import COMPLETED_TAG, REDO_TAG, apply_resolution, resolve_transition

from conftest import NOW


def _actions(resolution):
    return [h.action for h in resolution.history]


def _event_types(resolution):
    return [e.type.value for e in resolution.events]


class TestPlanCompletion:
    """Test where a completed task goes."""

    def test_next_stage_when_not_linked(self, board):
        """Without a linked review stage the task goes to the next stage."""
        decision = plan_completion(board.task(board.pending), board.stages)
        assert decision.target_stage_id == board.design.id
        assert decision.status == TaskStatus.PENDING
        assert decision.review_state == ReviewState.ACTIVE
        assert not decision.keeps_assignee

    def test_linked_review_stage_wins_over_order(self, board):
        """A linked review stage is used even if another stage comes next."""
        decision = plan_completion(board.task(board.in_progress), board.stages)
        assert decision.target_stage_id == board.qa.id
        assert decision.review_state == ReviewState.AWAITING_REVIEW
        assert decision.previous_stage_id == board.in_progress.id
        assert decision.original_assignee_id == board.dave

    def test_link_to_itself_is_ignored(self, board):
        """A stage linked to itself falls back to positional order."""
        stages = [
            s.model_copy(update={"linked_review_stage_id": s.id}) if s.id == board.design.id else s
            for s in board.stages
        ]
        decision = plan_completion(board.task(board.design), stages)
        assert decision.target_stage_id == board.client_review.id

    def test_linked_stage_outside_project(self, board):
        """A dangling link is rejected."""
        stages = [
            s.model_copy(update={"linked_review_stage_id": uuid4()}) if s.id == board.design.id else s
            for s in board.stages
        ]
        with pytest.raises(ValidationError) as exc_info:
            plan_completion(board.task(board.design), stages)
        assert exc_info.value.field == "linked_review_stage_id"

    def test_last_stage_does_not_advance(self, board):
        """A task completed in the last stage stays there."""
        assert plan_completion(board.task(board.completed), board.stages) is None


class TestReviewScenarios:
    """Test the full review round trip: complete, revise, complete again, approve."""

    def test_completion_parks_task_in_next_review_stage(self, board):
        """Completing in Design moves the task into Client Review and keeps its assignee."""
        task = board.task(board.design, status=TaskStatus.IN_PROGRESS)

        resolution = resolve_transition(task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.dave, NOW)
        parked = apply_resolution(task, resolution)

        assert parked.stage_id == board.client_review.id
        assert parked.previous_stage_id == board.design.id
        assert parked.original_assignee_id == board.dave
        assert parked.assignee_id == board.dave
        assert parked.is_in_specific_stage
        assert parked.status == TaskStatus.COMPLETE
        assert parked.completed_at == NOW
        assert _actions(resolution) == [HistoryAction.MOVED_TO_REVIEW_STAGE, HistoryAction.COMPLETED]
        assert _event_types(resolution) == ["TaskStageChanged", "TaskEnteredReview"]

    def test_revision_returns_task_to_original_assignee(self, board):
        """A revision request sends the task back with a Redo tag and an open revision entry."""
        parked = board.task(
            board.client_review,
            assignee_id=board.carol,
            status=TaskStatus.COMPLETE,
            review_state=ReviewState.AWAITING_REVIEW,
            previous_stage_id=board.design.id,
            original_assignee_id=board.dave,
        )

        resolution = request_revision(parked, board.stages, board.design.id, "fix colors", board.carol, NOW)
        revised = apply_resolution(parked, resolution)

        assert revised.stage_id == board.design.id
        assert revised.assignee_id == board.dave
        assert revised.status == TaskStatus.PENDING
        assert REDO_TAG in revised.tags
        assert revised.revision_comment == "fix colors"
        assert [r.comment for r in revised.open_revisions] == ["fix colors"]
        assert not revised.is_in_specific_stage
        assert revised.previous_stage_id is None
        assert revised.original_assignee_id is None
        assert HistoryAction.REVISION_REQUESTED in _actions(resolution)
        assert "TaskRevisionRequested" in _event_types(resolution)

    def test_full_round_trip_ends_completed(self, board):
        """Complete, revise, complete again, approve into the terminal stage."""
        task = board.task(board.design)

        parked = apply_resolution(task, resolve_transition(
            task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.dave, NOW
        ))
        revised = apply_resolution(parked, request_revision(
            parked, board.stages, None, "fix colors", board.carol, NOW
        ))
        assert revised.stage_id == board.design.id

        parked_again = apply_resolution(revised, resolve_transition(
            revised, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.dave, NOW
        ))
        assert parked_again.stage_id == board.client_review.id
        assert REDO_TAG in parked_again.tags

        resolution = approve(parked_again, board.stages, board.carol, NOW, board.completed.id)
        done = apply_resolution(parked_again, resolution)

        assert done.stage_id == board.completed.id
        assert COMPLETED_TAG in done.tags
        assert REDO_TAG not in done.tags
        assert done.previous_stage_id is None
        assert done.original_assignee_id is None
        assert not done.is_in_specific_stage
        assert done.open_revisions == ()
        assert all(r.resolved_at == NOW for r in done.revision_history)
        assert done.version == task.version + 4


class TestManualMoves:
    """Test stage changes requested explicitly."""

    def test_move_assigns_stage_main_responsible(self, board):
        """Moving without an assignee hands the task to the stage's main responsible."""
        task = board.task(board.pending, assignee_id=None, status=TaskStatus.IN_PROGRESS)

        resolution = resolve_transition(task, TaskPatch(stage_id=board.in_progress.id), board.stages, board.alice, NOW)

        assert resolution.changes["stage_id"] == board.in_progress.id
        assert resolution.changes["assignee_id"] == board.bob
        assert resolution.changes["status"] == TaskStatus.PENDING
        stage_entry = resolution.history[0]
        assert stage_entry.action == HistoryAction.STAGE_CHANGED
        assert stage_entry.details["from"] == str(board.pending.id)
        assert stage_entry.details["to"] == str(board.in_progress.id)
        assert stage_entry.details["from_title"] == "Pending"
        assert stage_entry.details["to_title"] == "In Progress"
        assert HistoryAction.ASSIGNED in _actions(resolution)
        assert "TaskAssigneeChanged" in _event_types(resolution)

    def test_explicit_assignee_and_status_win(self, board):
        """Explicit fields override the stage defaults."""
        task = board.task(board.pending)
        patch = TaskPatch(stage_id=board.in_progress.id, assignee_id=board.alice, status=TaskStatus.IN_PROGRESS)

        resolution = resolve_transition(task, patch, board.stages, board.alice, NOW)

        assert resolution.changes["assignee_id"] == board.alice
        assert resolution.changes["status"] == TaskStatus.IN_PROGRESS
        assert HistoryAction.REASSIGNED in _actions(resolution)

    def test_locked_assignee_survives_move(self, board):
        """A locked assignee is kept across stage changes."""
        task = board.task(board.pending, is_assignee_locked=True)

        resolution = resolve_transition(task, TaskPatch(stage_id=board.in_progress.id), board.stages, None, NOW)

        assert "assignee_id" not in resolution.changes
        assert HistoryAction.REASSIGNED not in _actions(resolution)

    def test_move_into_stage_without_owner_unassigns(self, board):
        """A stage without a main responsible leaves the task unassigned."""
        task = board.task(board.design)

        resolution = resolve_transition(task, TaskPatch(stage_id=board.completed.id), board.stages, None, NOW)

        assert resolution.changes["assignee_id"] is None
        assert resolution.co_assignees == ()
        assert HistoryAction.UNASSIGNED in _actions(resolution)

    def test_leaving_review_to_previous_stage_restores_original_assignee(self, board):
        """Dragging a parked task back to where it came from returns it to its original assignee."""
        parked = board.task(
            board.client_review,
            assignee_id=board.carol,
            review_state=ReviewState.AWAITING_REVIEW,
            previous_stage_id=board.design.id,
            original_assignee_id=board.dave,
        )

        moved = apply_resolution(parked, resolve_transition(
            parked, TaskPatch(stage_id=board.design.id), board.stages, board.carol, NOW
        ))

        assert moved.assignee_id == board.dave
        assert moved.review_state == ReviewState.ACTIVE
        assert moved.previous_stage_id is None
        assert moved.original_assignee_id is None

    def test_stage_of_another_project_is_rejected(self, board):
        """A stage outside the task's project is a validation error."""
        task = board.task()
        with pytest.raises(ValidationError) as exc_info:
            resolve_transition(task, TaskPatch(stage_id=uuid4()), board.stages, None, NOW)
        assert exc_info.value.field == "stage_id"

    def test_manual_move_into_review_stage_does_not_park(self, board):
        """Only completion or an explicit review request parks a task."""
        task = board.task(board.design)
        resolution = resolve_transition(task, TaskPatch(stage_id=board.client_review.id), board.stages, None, NOW)

        assert "review_state" not in resolution.changes
        assert _actions(resolution)[0] == HistoryAction.STAGE_CHANGED
        assert "TaskEnteredReview" not in _event_types(resolution)


class TestDerivedTags:
    """Test that Completed and Redo are always recomputed."""

    def test_completed_tag_follows_terminal_stage(self, board):
        """Entering the terminal stage adds Completed, leaving it removes it."""
        task = board.task(board.qa)
        done = apply_resolution(task, resolve_transition(
            task, TaskPatch(stage_id=board.completed.id), board.stages, None, NOW
        ))
        assert COMPLETED_TAG in done.tags

        reopened = apply_resolution(done, resolve_transition(
            done, TaskPatch(stage_id=board.design.id), board.stages, None, NOW
        ))
        assert COMPLETED_TAG not in reopened.tags

    def test_client_supplied_derived_tags_are_ignored(self, board):
        """Clients cannot set Completed or Redo themselves."""
        task = board.task(board.design)
        patch = TaskPatch(tags=frozenset({"frontend", COMPLETED_TAG, REDO_TAG}))

        resolution = resolve_transition(task, patch, board.stages, None, NOW)

        assert resolution.changes["tags"] == frozenset({"frontend"})

    def test_user_tags_survive_transitions(self, board):
        """Ordinary tags are carried along."""
        task = board.task(board.qa, tags=frozenset({"frontend"}))
        resolution = resolve_transition(task, TaskPatch(stage_id=board.completed.id), board.stages, None, NOW)
        assert resolution.changes["tags"] == frozenset({"frontend", COMPLETED_TAG})


class TestResolverDeterminism:
    """Test that resolution is pure and no-op patches change nothing."""

    def test_same_input_same_resolution(self, board):
        """Resolving the same input twice yields equal resolutions."""
        task = board.task(board.in_progress, status=TaskStatus.IN_PROGRESS)
        patch = TaskPatch(status=TaskStatus.COMPLETE)

        first = resolve_transition(task, patch, board.stages, board.dave, NOW)
        second = resolve_transition(task, patch, board.stages, board.dave, NOW)

        assert first == second

    def test_empty_patch_is_noop(self, board):
        """An empty patch produces no changes, history or events."""
        resolution = resolve_transition(board.task(), TaskPatch(), board.stages, None, NOW)
        assert resolution.is_noop
        assert resolution.history == ()
        assert resolution.events == ()

    def test_unchanged_values_are_noop(self, board):
        """Sending current values back is not a change."""
        task = board.task(board.design, title="Mockups")
        patch = TaskPatch(title="Mockups", stage_id=board.design.id, assignee_id=board.dave)

        resolution = resolve_transition(task, patch, board.stages, None, NOW)

        assert resolution.is_noop

    def test_apply_noop_keeps_version(self, board):
        """A no-op resolution does not bump the version."""
        task = board.task()
        assert apply_resolution(task, resolve_transition(task, TaskPatch(), board.stages, None, NOW)) == task


class TestCoAssigneeGate:
    """Test that shared tasks advance only when every co-assignee is done."""

    def _shared_task(self, board, **fields):
        return board.task(
            board.design,
            co_assignees=(
                CoAssigneeSnapshot(user_id=board.dave),
                CoAssigneeSnapshot(user_id=board.alice),
            ),
            **fields,
        )

    def test_first_completion_is_withheld(self, board):
        """One co-assignee completing only completes their own part."""
        task = self._shared_task(board)

        resolution = resolve_transition(task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.dave, NOW)

        assert resolution.withheld
        assert resolution.changes == {}
        statuses = {c.user_id: c.status for c in resolution.co_assignees}
        assert statuses == {board.dave: TaskStatus.COMPLETE, board.alice: TaskStatus.PENDING}
        assert resolution.history[0].details["waiting_on"] == [str(board.alice)]
        assert resolution.events == ()

    def test_last_completion_advances(self, board):
        """The last co-assignee completing moves the task on."""
        task = self._shared_task(board)
        after_dave = apply_resolution(task, resolve_transition(
            task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.dave, NOW
        ))

        resolution = resolve_transition(
            after_dave, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.alice, NOW
        )

        assert not resolution.withheld
        assert resolution.changes["stage_id"] == board.client_review.id
        assert HistoryAction.COMPLETED in _actions(resolution)

    def test_non_assignee_completion_is_not_gated(self, board):
        """A manager completing the task bypasses the gate."""
        task = self._shared_task(board)
        resolution = resolve_transition(task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.bob, NOW)
        assert not resolution.withheld
        assert resolution.changes["stage_id"] == board.client_review.id

    def test_co_assignee_statuses_reset_on_new_stage(self, board):
        """Entering a non-review stage resets every co-assignee to pending."""
        task = board.task(
            board.pending,
            co_assignees=(
                CoAssigneeSnapshot(user_id=board.dave, status=TaskStatus.COMPLETE),
                CoAssigneeSnapshot(user_id=board.alice, status=TaskStatus.COMPLETE),
            ),
            is_assignee_locked=True,
        )
        resolution = resolve_transition(task, TaskPatch(stage_id=board.design.id), board.stages, None, NOW)
        assert all(c.status == TaskStatus.PENDING for c in resolution.co_assignees)


class TestSubtasks:
    """Test subtask completion."""

    def test_subtask_completes_in_place(self, board):
        """Subtasks never auto-advance."""
        subtask = board.task(board.design, parent_id=uuid4())

        resolution = resolve_transition(subtask, TaskPatch(status=TaskStatus.COMPLETE), board.stages, board.dave, NOW)

        assert "stage_id" not in resolution.changes
        assert resolution.changes["status"] == TaskStatus.COMPLETE
        assert resolution.changes["completed_at"] == NOW
        assert _actions(resolution) == [HistoryAction.COMPLETED]

    def test_completion_in_last_stage_stays(self, board):
        """Completing in the terminal stage only changes the status."""
        task = board.task(board.completed, tags=frozenset({COMPLETED_TAG}))
        resolution = resolve_transition(task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, None, NOW)
        assert "stage_id" not in resolution.changes
        assert resolution.changes["status"] == TaskStatus.COMPLETE

    def test_completing_complete_task_is_noop(self, board):
        """A second completion of an already complete task changes nothing."""
        task = board.task(board.completed, status=TaskStatus.COMPLETE, tags=frozenset({COMPLETED_TAG}))
        assert resolve_transition(task, TaskPatch(status=TaskStatus.COMPLETE), board.stages, None, NOW).is_noop


def test_stage_snapshot_review_flag():
    """The review flag is derived from the stage kind."""
    from stageflow_core.models import StageKind
    stage = StageSnapshot(id=uuid4(), project_id=uuid4(), title="QA", kind=StageKind.REVIEW)
    assert stage.is_review_stage


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
