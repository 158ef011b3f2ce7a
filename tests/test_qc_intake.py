"""
Tests: QC answer intake.

Covers:
    1. Answer shape validation
    2. Server-side stamping (element, activity, submitter, task)
    3. Answers and status write share one transaction
    4. Replay tolerance
    5. Parallel-window QC submissions
"""

import pytest
from sqlalchemy import select

from factories import make_activity, make_path, make_project, make_stage
from precast.core.exceptions import PermissionDeniedError, ValidationError
from precast.models import db
from precast.models.production import Activity
from precast.models.qc import QCAnswer
from precast.services.progression import (
    OUTCOME_ADVANCED,
    OUTCOME_NOOP,
    OUTCOME_UPDATED,
    update_activity_status,
)
from precast.services.qc_intake import submit_answers, validate_answers


def _answers():
    return list(db.session.execute(select(QCAnswer).order_by(QCAnswer.id)).scalars())


class TestValidateAnswers:
    def test_normalizes(self):
        cleaned = validate_answers([{"question_id": "5", "option_id": 2, "comment": "ok"}])
        assert cleaned == [{
            "question_id": 5,
            "option_id": 2,
            "project_id": None,
            "task_id": None,
            "stage_id": None,
            "comment": "ok",
            "image_path": None,
        }]

    def test_question_required(self):
        with pytest.raises(ValidationError):
            validate_answers([{"option_id": 1}])

    def test_non_integer_rejected(self):
        with pytest.raises(ValidationError):
            validate_answers([{"question_id": "abc"}])

    def test_not_a_list(self):
        with pytest.raises(ValidationError):
            validate_answers({"question_id": 1})

    def test_long_comment_truncated(self):
        cleaned = validate_answers([{"question_id": 1, "comment": "x" * 5000}])
        assert len(cleaned[0]["comment"]) == 2000


class TestSubmitAnswers:
    def test_answers_stamped_and_stage_advanced(self, regular_pipeline):
        activity = make_activity(10, status="Completed")
        other = make_activity(20, task_name="Other")

        result = submit_answers(
            11,
            [
                {"question_id": 1, "option_id": 3, "element_id": other.element_id},
                {"question_id": 2, "comment": "crack on edge", "image_path": "qc/1.jpg"},
            ],
            {"activity_id": activity.id, "status": "Completed"},
        )

        assert result.outcome == OUTCOME_ADVANCED
        rows = _answers()
        assert len(rows) == 2
        for row in rows:
            assert row.element_id == activity.element_id
            assert row.activity_id == activity.id
            assert row.task_id == activity.task_id
            assert row.qc_id == 11
            assert row.stage_id == 10
        assert rows[1].image_path == "qc/1.jpg"

    def test_assignee_cannot_submit_qc(self, regular_pipeline):
        activity = make_activity(10)
        with pytest.raises(PermissionDeniedError):
            submit_answers(1, [{"question_id": 1}], {"activity_id": activity.id})
        assert _answers() == []

    def test_foreign_project_answer_rolls_back_everything(self, regular_pipeline):
        activity = make_activity(10, status="Completed")
        with pytest.raises(ValidationError):
            submit_answers(
                11,
                [{"question_id": 1}, {"question_id": 2, "project_id": 42}],
                {"activity_id": activity.id, "status": "Completed"},
            )
        assert _answers() == []
        assert db.session.get(Activity, activity.id).qc_status == "InProgress"

    def test_stage_outside_project_rejected(self, regular_pipeline):
        activity = make_activity(10, status="Completed")
        with pytest.raises(ValidationError):
            submit_answers(
                11, [{"question_id": 1, "stage_id": 999}],
                {"activity_id": activity.id, "status": "Completed"},
            )

    def test_in_progress_envelope_rejected(self, regular_pipeline):
        activity = make_activity(10)
        with pytest.raises(ValidationError):
            submit_answers(11, [], {"activity_id": activity.id, "status": "InProgress"})

    def test_envelope_needs_activity_id(self, regular_pipeline):
        with pytest.raises(ValidationError):
            submit_answers(11, [], {"status": "Completed"})

    def test_replay_duplicates_rows_and_noops(self, regular_pipeline):
        activity = make_activity(20, qc_status="InProgress")
        envelope = {"activity_id": activity.id, "status": "Completed"}

        first = submit_answers(12, [{"question_id": 9}], envelope)
        second = submit_answers(12, [{"question_id": 9}], envelope)

        assert first.outcome == OUTCOME_UPDATED
        assert second.outcome == OUTCOME_NOOP
        assert len(_answers()) == 2

    def test_replay_after_advance_noops(self, regular_pipeline):
        activity = make_activity(10)
        update_activity_status(activity.id, 1, "Completed")
        envelope = {"activity_id": activity.id, "status": "Completed"}

        first = submit_answers(11, [{"question_id": 3, "option_id": 1}], envelope)
        second = submit_answers(11, [{"question_id": 3, "option_id": 1}], envelope)

        assert first.outcome == OUTCOME_ADVANCED
        assert second.outcome == OUTCOME_NOOP
        assert second.target_field == "qc_status"
        assert [a.stage_id for a in _answers()] == [10, 10]
        moved = db.session.get(Activity, activity.id)
        assert (moved.stage_id, moved.qc_id, moved.qc_status) == (20, 12, "InProgress")

    def test_other_inspector_still_denied_after_advance(self, regular_pipeline):
        activity = make_activity(10)
        update_activity_status(activity.id, 1, "Completed")
        submit_answers(11, [{"question_id": 3}], {"activity_id": activity.id})

        with pytest.raises(PermissionDeniedError):
            submit_answers(15, [{"question_id": 3}], {"activity_id": activity.id})
        assert len(_answers()) == 1


class TestWindowSubmissions:
    def test_mesh_qc_answers_default_to_mesh_stage(self, window_pipeline):
        activity = make_activity(40, mesh_mold_status="Completed")

        result = submit_answers(13, [{"question_id": 4}], {"activity_id": activity.id})

        assert result.target_field == "mesh_mold_qc_status"
        assert _answers()[0].stage_id == 30
        assert db.session.get(Activity, activity.id).mesh_mold_qc_status == "Completed"

    def test_qc_before_crew_is_denied(self):
        make_project()
        make_stage(30, "Mesh & Mould", assigned_to=3, qc_id=13, qc_assign=True)
        make_stage(40, "Reinforcement", assigned_to=4, qc_id=14, qc_assign=True)
        make_path(100, [30, 40])
        db.session.commit()
        activity = make_activity(30)
        with pytest.raises(PermissionDeniedError):
            submit_answers(14, [{"question_id": 1}], {"activity_id": activity.id})
