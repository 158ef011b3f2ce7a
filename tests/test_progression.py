"""
Tests: activity stage-progression engine.

Covers:
    1. Dispatch table (pure, no database)
    2. Regular stages: single stage, QC gate, idempotent replay, terminal
    3. Parallel window: full join, reinforcement-crew exception, degeneration,
       reversed pair order, broken pair
    4. Failure semantics: permission, conflicting state, configuration,
       invalid status, transient database errors
    5. Notification intents
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from factories import make_activity, make_path, make_project, make_stage, make_stockyard, make_user
from precast.core.exceptions import (
    ConfigurationError,
    ConflictingStateError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
    ValidationError,
)
from precast.models import db
from precast.models.notification import Notification
from precast.models.production import Activity, CompleteProduction, Element
from precast.models.stock import PrecastStock
from precast.services import progression
from precast.services.progression import (
    OUTCOME_ADVANCED,
    OUTCOME_NOOP,
    OUTCOME_TERMINAL,
    OUTCOME_UPDATED,
    TransitionContext,
    resolve_target,
    update_activity_status,
)
from precast.services.stage_registry import ParallelWindow, StageInfo


def _events(activity_id, stage_id=None):
    stmt = select(CompleteProduction).where(CompleteProduction.activity_id == activity_id)
    if stage_id is not None:
        stmt = stmt.where(CompleteProduction.stage_id == stage_id)
    return list(db.session.execute(stmt.order_by(CompleteProduction.id)).scalars())


def _notifications(user_id):
    return list(db.session.execute(
        select(Notification).where(Notification.user_id == user_id).order_by(Notification.id)
    ).scalars())


# ═══════════════════════════════════════════════════════════════════════════
#  1. DISPATCH TABLE
# ═══════════════════════════════════════════════════════════════════════════

CUTTING = StageInfo(10, 1, "Cutting", 1, 1, 11, None, True)
MESH = StageInfo(30, 1, "Mesh & Mould", 2, 3, 13, None, True)
REINF = StageInfo(40, 1, "Reinforcement", 3, 4, 14, None, True)
PAIR = ParallelWindow(mesh_mould=MESH, reinforcement=REINF)


def _ctx(stage, actor, **fields):
    values = {
        "id": 1,
        "assigned_to": stage.assigned_to,
        "qc_id": stage.qc_id,
        "status": "InProgress",
        "qc_status": "InProgress",
        "mesh_mold_status": None,
        "reinforcement_status": None,
    }
    values.update(fields)
    return TransitionContext(
        activity=SimpleNamespace(**values),
        actor_id=actor,
        stage=stage,
        path=[10, 30, 40],
        window=PAIR,
        stages={s.id: s for s in (CUTTING, MESH, REINF)},
    )


class TestDispatchTable:
    @pytest.mark.parametrize("stage, actor, fields, rule_name, target", [
        (MESH, 3, {}, "mesh_mould_assignee", "mesh_mold_status"),
        (MESH, 4, {}, "reinforcement_assignee", "reinforcement_status"),
        (REINF, 3, {}, "mesh_mould_assignee", "mesh_mold_status"),
        (REINF, 4, {}, "reinforcement_assignee", "reinforcement_status"),
        (MESH, 13, {"mesh_mold_status": "Completed"}, "mesh_mould_qc", "mesh_mold_qc_status"),
        (REINF, 13, {"mesh_mold_status": "Completed"}, "mesh_mould_qc", "mesh_mold_qc_status"),
        (MESH, 14, {"reinforcement_status": "Completed"}, "reinforcement_qc", "reinforcement_qc_status"),
        (CUTTING, 11, {}, "regular_qc", "qc_status"),
        (CUTTING, 1, {}, "regular_assignee", "status"),
    ])
    def test_rule_selected(self, stage, actor, fields, rule_name, target):
        rule = resolve_target(_ctx(stage, actor, **fields))
        assert rule.name == rule_name
        assert rule.target == target

    @pytest.mark.parametrize("stage, actor, fields", [
        (MESH, 13, {}),                 # mesh QC before the crew finished
        (REINF, 14, {"mesh_mold_status": "Completed"}),
        (CUTTING, 3, {}),               # window crew outside the window
        (CUTTING, 4, {}),
        (CUTTING, 99, {}),
        (MESH, 1, {}),
    ])
    def test_denied(self, stage, actor, fields):
        with pytest.raises(PermissionDeniedError):
            resolve_target(_ctx(stage, actor, **fields))

    def test_same_person_assignee_and_qc_regular(self):
        both = StageInfo(10, 1, "Cutting", 1, 7, 7, None, True)
        assert resolve_target(_ctx(both, 7)).name == "regular_assignee"
        assert resolve_target(_ctx(both, 7, status="Completed")).name == "regular_qc"

    def test_same_person_assignee_and_qc_window(self):
        mesh = StageInfo(30, 1, "Mesh & Mould", 2, 3, 3, None, True)
        ctx = _ctx(mesh, 3)
        ctx.window = ParallelWindow(mesh_mould=mesh, reinforcement=REINF)
        assert resolve_target(ctx).name == "mesh_mould_assignee"
        ctx.activity.mesh_mold_status = "Completed"
        assert resolve_target(ctx).name == "mesh_mould_qc"

    def test_one_crew_on_both_window_stages(self):
        reinf = StageInfo(40, 1, "Reinforcement", 3, 3, 14, None, True)
        ctx = _ctx(MESH, 3)
        ctx.window = ParallelWindow(mesh_mould=MESH, reinforcement=reinf)
        assert resolve_target(ctx).name == "mesh_mould_assignee"
        ctx.activity.mesh_mold_status = "Completed"
        assert resolve_target(ctx).name == "reinforcement_assignee"
        ctx.activity.reinforcement_status = "Completed"
        assert resolve_target(ctx).name == "mesh_mould_assignee"

    def test_qc_only_rejects_assignee(self):
        with pytest.raises(PermissionDeniedError):
            resolve_target(_ctx(CUTTING, 1), qc_only=True)
        assert resolve_target(_ctx(CUTTING, 11), qc_only=True).name == "regular_qc"

    def test_reinforcement_exception_needs_the_stage_in_the_window(self):
        ctx = _ctx(MESH, 4)
        ctx.window = ParallelWindow(mesh_mould=MESH, reinforcement=None)
        with pytest.raises(PermissionDeniedError):
            resolve_target(ctx)


# ═══════════════════════════════════════════════════════════════════════════
#  2. REGULAR STAGES
# ═══════════════════════════════════════════════════════════════════════════


class TestRegularStages:
    def test_single_stage_without_qc_terminates(self):
        make_project()
        make_stage(10, "Cutting", assigned_to=1)
        make_path(100, [10])
        db.session.commit()
        activity = make_activity(10)

        result = update_activity_status(activity.id, 1, "Completed")

        assert result.outcome == OUTCOME_TERMINAL
        activity = db.session.get(Activity, activity.id)
        assert activity.completed is True
        stock = db.session.execute(select(PrecastStock)).scalars().all()
        assert len(stock) == 1
        assert stock[0].element_id == activity.element_id
        assert stock[0].stockyard_id is None
        events = _events(activity.id)
        assert [(e.stage_id, e.status, e.user_id) for e in events] == [(10, "Completed", 1)]

    def test_qc_gate_holds_then_qc_advances(self, regular_pipeline):
        activity = make_activity(10)

        first = update_activity_status(activity.id, 1, "Completed")
        assert first.outcome == OUTCOME_UPDATED
        assert first.target_field == "status"
        activity = db.session.get(Activity, activity.id)
        assert activity.stage_id == 10
        assert activity.status == "Completed"
        assert len(_events(activity.id)) == 1

        second = update_activity_status(activity.id, 11, "Completed")
        assert second.outcome == OUTCOME_ADVANCED
        assert second.next_stage_id == 20
        activity = db.session.get(Activity, activity.id)
        assert activity.stage_id == 20
        assert activity.assigned_to == 2
        assert activity.qc_id == 12
        assert activity.paper_id == 202
        assert activity.status == "InProgress"
        assert activity.qc_status == "InProgress"
        assert db.session.get(Element, activity.element_id).status == "Casting"
        assert len(_events(activity.id, stage_id=10)) == 2

    def test_qc_may_sign_off_before_assignee(self, regular_pipeline):
        activity = make_activity(10)
        result = update_activity_status(activity.id, 11, "Completed")
        assert result.outcome == OUTCOME_UPDATED
        assert result.target_field == "qc_status"

        result = update_activity_status(activity.id, 1, "Completed")
        assert result.outcome == OUTCOME_ADVANCED

    def test_stage_without_qc_advances_immediately(self, regular_pipeline):
        make_stage(25, "Finishing", assigned_to=6, order=30)
        make_path(200, [20, 25])
        db.session.commit()
        activity = make_activity(20, element_type_id=200)

        result = update_activity_status(activity.id, 2, "Completed")

        assert result.outcome == OUTCOME_ADVANCED
        assert db.session.get(Activity, activity.id).stage_id == 25

    def test_in_progress_write_is_recorded(self, regular_pipeline):
        activity = make_activity(10)
        result = update_activity_status(activity.id, 1, "in_progress")
        assert result.outcome == OUTCOME_UPDATED
        assert [e.status for e in _events(activity.id)] == ["InProgress"]

    def test_replay_on_completed_field_is_noop(self, regular_pipeline):
        activity = make_activity(20, status="Completed")
        before = activity.to_dict()

        result = update_activity_status(activity.id, 2, "Completed")

        assert result.outcome == OUTCOME_NOOP
        assert _events(activity.id) == []
        assert db.session.get(Activity, activity.id).to_dict() == before

    def test_terminal_with_stockyard(self):
        make_project()
        make_stage(10, "Cutting", assigned_to=1)
        make_stage(20, "Casting", assigned_to=2)
        make_stage(30, "Curing", assigned_to=3)
        make_path(100, [10, 20, 30])
        make_stockyard(7, manager_id=70)
        db.session.commit()
        activity = make_activity(30, stockyard_id=7)

        result = update_activity_status(activity.id, 3, "Completed")

        assert result.outcome == OUTCOME_TERMINAL
        stock = db.session.execute(select(PrecastStock)).scalar_one()
        assert (stock.element_id, stock.project_id, stock.stockyard_id, stock.stockyard) == (
            activity.element_id, 1, 7, False,
        )
        activity = db.session.get(Activity, activity.id)
        assert activity.completed is True
        assert db.session.get(Element, activity.element_id).instage is True
        assert _events(activity.id)[-1].status == "Completed"
        assert [n.title for n in _notifications(70)] == ["Element Ready for Stockyard"]

    def test_terminal_reuses_existing_stock_row(self):
        make_project()
        make_stage(10, "Cutting", assigned_to=1)
        make_path(100, [10])
        db.session.commit()
        activity = make_activity(10)
        db.session.add(PrecastStock(element_id=activity.element_id, project_id=1))
        db.session.commit()

        update_activity_status(activity.id, 1, "Completed")

        assert len(db.session.execute(select(PrecastStock)).scalars().all()) == 1


# ═══════════════════════════════════════════════════════════════════════════
#  3. PARALLEL WINDOW
# ═══════════════════════════════════════════════════════════════════════════


class TestParallelWindow:
    def test_advances_only_after_all_four_writes(self, window_pipeline):
        activity = make_activity(30)
        writes = [
            (3, "mesh_mold_status"),
            (4, "reinforcement_status"),
            (13, "mesh_mold_qc_status"),
            (14, "reinforcement_qc_status"),
        ]
        outcomes = []
        for actor, field_name in writes:
            result = update_activity_status(activity.id, actor, "Completed")
            assert result.target_field == field_name
            outcomes.append(result.outcome)

        assert outcomes == [OUTCOME_UPDATED, OUTCOME_UPDATED, OUTCOME_UPDATED, OUTCOME_ADVANCED]
        activity = db.session.get(Activity, activity.id)
        assert activity.stage_id == 50
        assert activity.assigned_to == 5
        assert activity.qc_id == 15
        assert activity.paper_id == 501
        assert activity.mesh_mold_status is None
        assert activity.mesh_mold_qc_status is None
        assert activity.reinforcement_status is None
        assert activity.reinforcement_qc_status is None

    def test_reinforcement_crew_acts_on_mesh_stage_activity(self, window_pipeline):
        activity = make_activity(30)

        result = update_activity_status(activity.id, 4, "Completed")

        assert result.outcome == OUTCOME_UPDATED
        activity = db.session.get(Activity, activity.id)
        assert activity.reinforcement_status == "Completed"
        assert activity.stage_id == 30
        assert _events(activity.id)[0].stage_id == 40

    def test_mesh_crew_acts_on_reinforcement_stage_activity(self, window_pipeline):
        activity = make_activity(40)
        result = update_activity_status(activity.id, 3, "Completed")
        assert result.target_field == "mesh_mold_status"
        assert db.session.get(Activity, activity.id).stage_id == 40

    def test_reversed_pair_order_uses_last_member_as_anchor(self, window_pipeline):
        make_path(200, [40, 30, 50])
        db.session.commit()
        activity = make_activity(40, element_type_id=200)
        for actor in (3, 4, 13, 14):
            result = update_activity_status(activity.id, actor, "Completed")
        assert result.outcome == OUTCOME_ADVANCED
        assert result.next_stage_id == 50

    def test_window_without_qc_assign_skips_qc(self):
        make_project()
        make_stage(30, "Mesh & Mould", assigned_to=3, qc_id=13)
        make_stage(40, "Reinforcement", assigned_to=4)
        make_stage(50, "Curing", assigned_to=5)
        make_path(100, [30, 40, 50])
        db.session.commit()
        activity = make_activity(30)

        assert update_activity_status(activity.id, 3, "Completed").outcome == OUTCOME_UPDATED
        assert update_activity_status(activity.id, 4, "Completed").outcome == OUTCOME_ADVANCED

    def test_one_crew_on_both_window_stages(self):
        make_project()
        make_stage(30, "Mesh & Mould", assigned_to=3)
        make_stage(40, "Reinforcement", assigned_to=3)
        make_stage(50, "Curing", assigned_to=5)
        make_path(100, [30, 40, 50])
        db.session.commit()
        activity = make_activity(30)

        first = update_activity_status(activity.id, 3, "Completed")
        second = update_activity_status(activity.id, 3, "Completed")

        assert (first.target_field, first.outcome) == ("mesh_mold_status", OUTCOME_UPDATED)
        assert (second.target_field, second.outcome) == ("reinforcement_status", OUTCOME_ADVANCED)
        assert second.next_stage_id == 50

    def test_reinforcement_alone_degenerates_to_single_stage(self):
        make_project()
        make_stage(10, "Cutting", assigned_to=1)
        make_stage(40, "Reinforcement", assigned_to=4)
        make_stage(50, "Curing", assigned_to=5)
        make_path(100, [10, 40, 50])
        db.session.commit()
        activity = make_activity(40)

        result = update_activity_status(activity.id, 4, "Completed")

        assert result.outcome == OUTCOME_ADVANCED
        assert result.next_stage_id == 50

    def test_mesh_alone_in_path_ignores_reinforcement_stage(self, window_pipeline):
        make_path(200, [30, 50])
        db.session.commit()
        activity = make_activity(30, element_type_id=200)

        with pytest.raises(PermissionDeniedError):
            update_activity_status(activity.id, 4, "Completed")

        update_activity_status(activity.id, 3, "Completed")
        result = update_activity_status(activity.id, 13, "Completed")
        assert result.outcome == OUTCOME_ADVANCED
        assert result.next_stage_id == 50

    def test_window_at_end_of_path_terminates(self):
        make_project()
        make_stage(30, "Mesh & Mould", assigned_to=3)
        make_stage(40, "Reinforcement", assigned_to=4)
        make_path(100, [30, 40])
        db.session.commit()
        activity = make_activity(30)

        update_activity_status(activity.id, 3, "Completed")
        result = update_activity_status(activity.id, 4, "Completed")

        assert result.outcome == OUTCOME_TERMINAL
        assert db.session.get(Activity, activity.id).completed is True

    def test_non_adjacent_pair_is_configuration_error(self, window_pipeline):
        make_stage(10, "Cutting", assigned_to=1, order=35)
        make_path(200, [30, 10, 40])
        db.session.commit()
        activity = make_activity(30, element_type_id=200)

        with pytest.raises(ConfigurationError):
            update_activity_status(activity.id, 3, "Completed")
        assert db.session.get(Activity, activity.id).mesh_mold_status is None


# ═══════════════════════════════════════════════════════════════════════════
#  4. FAILURE SEMANTICS
# ═══════════════════════════════════════════════════════════════════════════


class TestFailures:
    def test_unknown_actor_is_denied_without_writes(self, regular_pipeline):
        activity = make_activity(10)
        with pytest.raises(PermissionDeniedError):
            update_activity_status(activity.id, 99, "Completed")
        assert _events(activity.id) == []

    def test_missing_activity(self, regular_pipeline):
        with pytest.raises(NotFoundError):
            update_activity_status(12345, 1, "Completed")

    def test_invalid_status(self, regular_pipeline):
        activity = make_activity(10)
        with pytest.raises(ValidationError):
            update_activity_status(activity.id, 1, "Done")

    def test_completed_activity_rejects_in_progress(self, regular_pipeline):
        activity = make_activity(20, status="Completed", completed=True)
        with pytest.raises(ConflictingStateError):
            update_activity_status(activity.id, 2, "InProgress")

    def test_completed_activity_accepts_completed_replay(self, regular_pipeline):
        activity = make_activity(20, status="Completed", completed=True)
        result = update_activity_status(activity.id, 2, "Completed")
        assert result.outcome == OUTCOME_NOOP
        assert _events(activity.id) == []

    def test_stage_outside_path_is_configuration_error(self, regular_pipeline):
        make_stage(60, "Polishing", assigned_to=6)
        db.session.commit()
        activity = make_activity(60)
        with pytest.raises(ConfigurationError):
            update_activity_status(activity.id, 6, "Completed")

    def test_empty_path_is_configuration_error(self):
        make_project()
        make_stage(10, "Cutting", assigned_to=1)
        make_path(100, [])
        db.session.commit()
        activity = make_activity(10)
        with pytest.raises(ConfigurationError):
            update_activity_status(activity.id, 1, "Completed")

    def test_qc_assign_without_inspector_is_configuration_error(self):
        make_project()
        make_stage(10, "Cutting", assigned_to=1, qc_assign=True)
        make_path(100, [10])
        db.session.commit()
        activity = make_activity(10)
        with pytest.raises(ConfigurationError):
            update_activity_status(activity.id, 1, "Completed")

    def test_operational_error_becomes_transient(self, regular_pipeline):
        activity = make_activity(10)
        error = OperationalError("UPDATE activities", {}, Exception("server closed the connection"))
        with patch.object(progression, "apply_status", side_effect=error):
            with pytest.raises(TransientError):
                update_activity_status(activity.id, 1, "Completed")
        assert db.session.get(Activity, activity.id).status == "InProgress"

    def test_deadlock_is_retried_once(self, regular_pipeline):
        activity = make_activity(10)
        deadlock = OperationalError("UPDATE activities", {}, Exception("deadlock detected"))
        real_apply = progression.apply_status
        calls = []

        def flaky(ctx, status, rule=None):
            calls.append(status)
            if len(calls) == 1:
                raise deadlock
            return real_apply(ctx, status, rule)

        with patch.object(progression, "apply_status", side_effect=flaky):
            result = update_activity_status(activity.id, 1, "Completed")

        assert len(calls) == 2
        assert result.outcome == OUTCOME_UPDATED

    def test_second_deadlock_gives_up(self, regular_pipeline):
        activity = make_activity(10)
        deadlock = OperationalError("UPDATE activities", {}, Exception("database is locked"))
        with patch.object(progression, "apply_status", side_effect=deadlock) as mocked:
            with pytest.raises(TransientError):
                update_activity_status(activity.id, 1, "Completed")
        assert mocked.call_count == 2


# ═══════════════════════════════════════════════════════════════════════════
#  5. NOTIFICATION INTENTS
# ═══════════════════════════════════════════════════════════════════════════


class TestIntents:
    def test_assignee_done_requests_inspection(self, regular_pipeline):
        activity = make_activity(10)
        result = update_activity_status(activity.id, 1, "Completed")

        assert [(i.recipient_user_id, i.title) for i in result.intents] == [
            (11, "QC Inspection Requested"),
        ]
        assert result.intents[0].action_url == "http://precast.test/project/1/plan"
        assert [n.title for n in _notifications(11)] == ["QC Inspection Requested"]

    def test_qc_advance_notifies_next_assignee_then_next_qc(self, regular_pipeline):
        activity = make_activity(10, status="Completed")
        result = update_activity_status(activity.id, 11, "Completed")

        assert [(i.recipient_user_id, i.title) for i in result.intents] == [
            (2, "Task Assigned"),
            (12, "QC Completed"),
        ]
        payload = result.intents[0].payload
        assert payload["next_stage_name"] == "Casting"
        assert payload["project_name"] == "Tower A"
        assert payload["task_name"] == "Batch 1"

    def test_noop_emits_nothing(self, regular_pipeline):
        activity = make_activity(20, status="Completed")
        result = update_activity_status(activity.id, 2, "Completed")
        assert result.intents == []
        assert _notifications(2) == []

    def test_failed_transition_emits_nothing(self, regular_pipeline):
        make_user(99)
        activity = make_activity(10)
        with pytest.raises(PermissionDeniedError):
            update_activity_status(activity.id, 99, "Completed")
        assert db.session.execute(select(Notification)).scalars().all() == []

    def test_new_state_reflects_commit(self, regular_pipeline):
        activity = make_activity(10, status="Completed")
        result = update_activity_status(activity.id, 11, "Completed")
        body = result.to_dict()
        assert body["message"] == "Activity moved to the next stage"
        assert body["new_state"]["stage_id"] == 20
        assert body["new_state"]["stage_name"] == "Casting"
