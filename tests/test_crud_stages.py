"""Tests for project and stage CRUD against SQLite."""
from datetime import datetime

import pytest
from stageflow_core import crud, models, schemas
from stageflow_core.errors import NotFoundError, StageInUseError, ValidationError
from stageflow_core.models import ReviewState, StageKind


@pytest.fixture
def project(db_session):
    return crud.create_project(db_session, "Website", description="Marketing site")


def _create_stage(db_session, project, title, **fields):
    return crud.create_stage(db_session, schemas.StageCreate(project_id=project.id, title=title, **fields))


def _add_task(db_session, project, stage, **fields):
    task = models.Task(project_id=project.id, title="Hero banner", stage_id=stage.id, tags=[], **fields)
    db_session.add(task)
    db_session.commit()
    return task


class TestDefaultStages:
    """Test the stages every project carries."""

    def test_created_with_project(self, db_session, project):
        """Suggested Task, Pending and Archive come with a new project."""
        stages = crud.get_project_stages(db_session, project.id)
        assert [(s.title, s.kind) for s in stages] == [
            ("Suggested Task", StageKind.SUGGESTION),
            ("Pending", StageKind.INTAKE),
            ("Archive", StageKind.TERMINAL),
        ]

    def test_ensure_is_idempotent(self, db_session, project):
        """Ensuring defaults twice creates nothing the second time."""
        assert crud.ensure_default_stages(db_session, project.id) == []
        assert len(crud.get_project_stages(db_session, project.id)) == 3

    def test_ensure_restores_missing(self, db_session, project):
        """A project missing a default stage gets it back."""
        archive = crud.get_project_stages(db_session, project.id)[-1]
        crud.delete_stage(db_session, archive.id)

        created = crud.ensure_default_stages(db_session, project.id)

        assert [s.title for s in created] == ["Archive"]


class TestCreateStage:
    """Test stage creation."""

    def test_kind_derived_from_title(self, db_session, project):
        """Titles and the review flag decide the kind."""
        assert _create_stage(db_session, project, "Build").kind == StageKind.NORMAL
        assert _create_stage(db_session, project, "QA", is_review_stage=True).kind == StageKind.REVIEW

    def test_explicit_kind_wins(self, db_session, project):
        """An explicit kind is not overridden by the title."""
        stage = _create_stage(db_session, project, "Pending approval", kind=StageKind.REVIEW)
        assert stage.kind == StageKind.REVIEW

    def test_default_order_after_work_stages(self, db_session, project):
        """New stages go after the last work stage, before Archive."""
        first = _create_stage(db_session, project, "Design")
        second = _create_stage(db_session, project, "Build")
        assert (first.order, second.order) == (2, 3)

    def test_history_recorded(self, db_session, project):
        """Stage creation is audited."""
        stage = _create_stage(db_session, project, "Design")
        history = crud.get_history(db_session, stage.id, entity_type="stage")
        assert [h.action for h in history] == ["created"]
        assert history[0].details["kind"] == "normal"

    def test_unknown_project(self, db_session):
        """Stages need an existing project."""
        from uuid import uuid4
        with pytest.raises(NotFoundError):
            crud.create_stage(db_session, schemas.StageCreate(project_id=uuid4(), title="Design"))

    def test_linked_stage_must_be_review(self, db_session, project):
        """Only a review stage can be linked."""
        build = _create_stage(db_session, project, "Build")
        with pytest.raises(ValidationError) as exc_info:
            _create_stage(db_session, project, "Design", linked_review_stage_id=build.id)
        assert exc_info.value.field == "linked_review_stage_id"

    def test_approval_target_cannot_be_review(self, db_session, project):
        """Approving never lands in a review stage."""
        qa = _create_stage(db_session, project, "QA", is_review_stage=True)
        with pytest.raises(ValidationError):
            _create_stage(db_session, project, "Client Review", is_review_stage=True, approved_target_stage_id=qa.id)

    def test_reference_to_other_project(self, db_session, project):
        """Stages cannot reference another project's stages."""
        other = crud.create_project(db_session, "Intranet")
        foreign_qa = _create_stage(db_session, other, "QA", is_review_stage=True)
        with pytest.raises(ValidationError):
            _create_stage(db_session, project, "Design", linked_review_stage_id=foreign_qa.id)


class TestUpdateStage:
    """Test stage updates."""

    def test_review_flag_reclassifies(self, db_session, project):
        """Flagging a stage as review changes its kind."""
        stage = _create_stage(db_session, project, "Client check")
        updated = crud.update_stage(db_session, stage.id, schemas.StageUpdate(is_review_stage=True))
        assert updated.kind == StageKind.REVIEW

    def test_rename_reclassifies(self, db_session, project):
        """Renaming a stage to a sentinel title changes its kind."""
        stage = _create_stage(db_session, project, "Done")
        updated = crud.update_stage(db_session, stage.id, schemas.StageUpdate(title="Completed"))
        assert updated.kind == StageKind.TERMINAL

    def test_self_reference_rejected(self, db_session, project):
        """A stage cannot be its own parent."""
        stage = _create_stage(db_session, project, "Design")
        with pytest.raises(ValidationError):
            crud.update_stage(db_session, stage.id, schemas.StageUpdate(parent_stage_id=stage.id))

    def test_changes_recorded(self, db_session, project):
        """Updates are audited with before and after values."""
        stage = _create_stage(db_session, project, "Design")
        crud.update_stage(db_session, stage.id, schemas.StageUpdate(color="bg-blue-500"))
        history = crud.get_history(db_session, stage.id, entity_type="stage")
        changed = next(h for h in history if h.action == "stage_changed")
        assert changed.details["color"] == {"from": None, "to": "bg-blue-500"}


class TestDeleteStage:
    """Test stage deletion guards."""

    def test_free_stage_deleted(self, db_session, project):
        """A stage nobody references can be deleted."""
        stage = _create_stage(db_session, project, "Design")
        assert crud.delete_stage(db_session, stage.id) is True
        assert crud.get_stage(db_session, stage.id) is None

    def test_unknown_stage(self, db_session):
        """Deleting an unknown stage reports False."""
        from uuid import uuid4
        assert crud.delete_stage(db_session, uuid4()) is False

    def test_stage_with_tasks(self, db_session, project):
        """A stage holding tasks cannot be deleted."""
        stage = _create_stage(db_session, project, "Design")
        _add_task(db_session, project, stage)

        with pytest.raises(StageInUseError) as exc_info:
            crud.delete_stage(db_session, stage.id)

        assert exc_info.value.task_count == 1
        assert exc_info.value.http_status == 409

    def test_soft_deleted_tasks_still_count(self, db_session, project):
        """Soft-deleted tasks keep their stage in use."""
        stage = _create_stage(db_session, project, "Design")
        _add_task(db_session, project, stage, deleted_at=datetime(2026, 1, 1))

        with pytest.raises(StageInUseError):
            crud.delete_stage(db_session, stage.id)

    def test_scheduled_start_stage_counts(self, db_session, project):
        """A stage used as a scheduled start stage is in use."""
        pending = crud.get_project_stages(db_session, project.id)[1]
        stage = _create_stage(db_session, project, "Design")
        _add_task(db_session, project, pending, start_stage_id=stage.id)

        with pytest.raises(StageInUseError):
            crud.delete_stage(db_session, stage.id)

    def test_return_stage_of_parked_task(self, db_session, project):
        """The stage a parked task returns to on revision cannot be deleted."""
        design = _create_stage(db_session, project, "Design")
        qa = _create_stage(db_session, project, "QA", is_review_stage=True)
        _add_task(
            db_session, project, qa,
            previous_stage_id=design.id, review_state=ReviewState.AWAITING_REVIEW,
        )

        with pytest.raises(StageInUseError) as exc_info:
            crud.delete_stage(db_session, design.id)

        assert exc_info.value.task_count == 1
        assert crud.get_stage(db_session, design.id) is not None

    def test_dependent_stage(self, db_session, project):
        """A review stage linked from another stage cannot be deleted."""
        qa = _create_stage(db_session, project, "QA", is_review_stage=True)
        build = _create_stage(db_session, project, "Build", linked_review_stage_id=qa.id)

        with pytest.raises(StageInUseError) as exc_info:
            crud.delete_stage(db_session, qa.id)

        assert exc_info.value.dependent_stage_ids == [build.id]


class TestUsers:
    """Test user creation."""

    def test_duplicate_name_rejected(self, db_session):
        """User names are unique."""
        crud.create_user(db_session, schemas.UserCreate(name="dave"))
        with pytest.raises(ValidationError) as exc_info:
            crud.create_user(db_session, schemas.UserCreate(name="dave"))
        assert exc_info.value.field == "name"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
