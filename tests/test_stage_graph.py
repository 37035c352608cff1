"""Tests for stage classification and ordering."""
from uuid import uuid4

import pytest
from stageflow_core.models import StageKind
from stageflow_core.schemas import StageSnapshot
from stageflow_core.stage_graph import (
    classify_stage_title,
    intake_stage,
    is_terminal,
    missing_default_stages,
    next_stage,
    next_stage_order,
    ordered_stages,
)


def _stage(title, order, kind=StageKind.NORMAL, project_id=None):
    return StageSnapshot(id=uuid4(), project_id=project_id or uuid4(), title=title, order=order, kind=kind)


class TestClassifyStageTitle:
    """Test that stage kinds are derived from titles at the boundary."""

    def test_sentinel_titles(self):
        """Pending, Archive, Completed and Suggested Task map to their kinds."""
        assert classify_stage_title("Pending") == StageKind.INTAKE
        assert classify_stage_title("Archive") == StageKind.TERMINAL
        assert classify_stage_title("Completed") == StageKind.TERMINAL
        assert classify_stage_title("Suggested Task") == StageKind.SUGGESTION

    def test_titles_are_normalized(self):
        """Case and surrounding whitespace are ignored."""
        assert classify_stage_title("  ARCHIVE ") == StageKind.TERMINAL
        assert classify_stage_title("pending") == StageKind.INTAKE

    def test_review_flag(self):
        """A flagged stage with an ordinary title is a review stage."""
        assert classify_stage_title("Client Review", is_review_stage=True) == StageKind.REVIEW
        assert classify_stage_title("Client Review") == StageKind.NORMAL

    def test_sentinel_title_wins_over_review_flag(self):
        """A stage titled Pending stays the intake stage even if flagged."""
        assert classify_stage_title("Pending", is_review_stage=True) == StageKind.INTAKE


class TestOrderedStages:
    """Test the total order over a project's stages."""

    def test_intake_first_and_terminal_last_regardless_of_order(self):
        """Sentinel stages are pinned whatever their numeric order."""
        project_id = uuid4()
        archive = _stage("Archive", 0, StageKind.TERMINAL, project_id)
        pending = _stage("Pending", 50, StageKind.INTAKE, project_id)
        work = _stage("Build", 5, project_id=project_id)
        suggested = _stage("Suggested Task", 70, StageKind.SUGGESTION, project_id)

        assert ordered_stages([archive, work, pending, suggested]) == [suggested, pending, work, archive]

    def test_middle_stages_sorted_by_order(self, board):
        """Work stages follow their order field."""
        titles = [s.title for s in board.stages]
        assert titles == ["Suggested Task", "Pending", "Design", "Client Review", "In Progress", "QA", "Completed"]

    def test_ties_are_deterministic(self):
        """Stages with the same order sort the same way in any input order."""
        project_id = uuid4()
        a = _stage("Build", 3, project_id=project_id)
        b = _stage("Test", 3, project_id=project_id)
        assert ordered_stages([a, b]) == ordered_stages([b, a])


class TestStageQueries:
    """Test next stage, terminal and intake lookups."""

    def test_next_stage(self, board):
        """The next stage is the following one in workflow order."""
        assert next_stage(board.stages, board.pending.id) == board.design
        assert next_stage(board.stages, board.design.id) == board.client_review

    def test_next_stage_of_last_or_unknown(self, board):
        """The last stage and unknown stages have no successor."""
        assert next_stage(board.stages, board.completed.id) is None
        assert next_stage(board.stages, uuid4()) is None

    def test_is_terminal(self, board):
        """Only the last stage in order is terminal."""
        assert is_terminal(board.stages, board.completed.id)
        assert not is_terminal(board.stages, board.qa.id)
        assert not is_terminal([], board.completed.id)

    def test_intake_stage(self, board):
        """The intake stage is found by kind."""
        assert intake_stage(board.stages) == board.pending
        assert intake_stage([board.design, board.completed]) is None

    def test_next_stage_order(self, board):
        """New stages go after every non-terminal stage, never before order 2."""
        assert next_stage_order(board.stages) == 6
        defaults = [board.suggested, board.pending, board.completed]
        assert next_stage_order(defaults) == 2
        assert next_stage_order([]) == 2

    def test_missing_default_stages(self, board):
        """Only the default kinds a project lacks are reported."""
        assert missing_default_stages(board.stages) == []
        missing = missing_default_stages([board.design])
        assert [title for title, _, _, _ in missing] == ["Suggested Task", "Pending", "Archive"]
        missing = missing_default_stages([board.pending, board.completed])
        assert [kind for _, _, _, kind in missing] == [StageKind.SUGGESTION]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
