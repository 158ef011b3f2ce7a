"""
Tests: stage path resolution and the stage registry.

Covers:
    1. parse_stage_path (JSON, list, legacy brace form, junk)
    2. path_of validation (missing, empty, duplicate, foreign stage)
    3. successor / predecessor / position
    4. StageKind derivation and the parallel window lookup
"""

import pytest

from factories import make_path, make_project, make_stage
from precast.core.exceptions import ConfigurationError, NotFoundError
from precast.models import db
from precast.models.project import StageKind, parse_stage_path, stage_kind_for_name
from precast.services.stage_path import (
    path_of,
    position_of,
    predecessor_of,
    successor_of,
    validate_path,
)
from precast.services.stage_registry import (
    find_by_name,
    parallel_window,
    resolve_stage,
    stages_for_project,
)


# ═══════════════════════════════════════════════════════════════════════════
#  1. parse_stage_path
# ═══════════════════════════════════════════════════════════════════════════


class TestParseStagePath:
    def test_json_array(self):
        assert parse_stage_path("[3, 1, 2]") == [3, 1, 2]

    def test_python_list(self):
        assert parse_stage_path([5, "6"]) == [5, 6]

    def test_legacy_brace_form(self):
        assert parse_stage_path("{10,20, 30}") == [10, 20, 30]

    def test_empty_forms(self):
        assert parse_stage_path(None) == []
        assert parse_stage_path("") == []
        assert parse_stage_path("{}") == []

    def test_junk_raises(self):
        with pytest.raises(ValueError):
            parse_stage_path("{10,abc}")


# ═══════════════════════════════════════════════════════════════════════════
#  2. path_of
# ═══════════════════════════════════════════════════════════════════════════


class TestPathOf:
    def test_returns_ordered_ids(self, regular_pipeline):
        assert path_of(100) == [10, 20]

    def test_order_follows_path_not_ids(self):
        make_project()
        make_stage(10, "Cutting")
        make_stage(20, "Casting")
        make_stage(5, "Finishing")
        make_path(200, [20, 10, 5])
        db.session.commit()
        assert path_of(200) == [20, 10, 5]

    def test_missing_path_is_not_found(self, regular_pipeline):
        with pytest.raises(NotFoundError):
            path_of(999)

    def test_empty_path_is_configuration_error(self):
        make_project()
        make_path(300, [])
        db.session.commit()
        with pytest.raises(ConfigurationError):
            path_of(300)

    def test_unknown_stage_is_configuration_error(self, regular_pipeline):
        make_path(400, [10, 77])
        db.session.commit()
        with pytest.raises(ConfigurationError) as exc:
            path_of(400)
        assert exc.value.details["unknown_stage_ids"] == [77]

    def test_stage_of_other_project_is_configuration_error(self, regular_pipeline):
        make_project(2, "Tower B")
        make_stage(90, "Cutting", project_id=2)
        make_path(500, [10, 90])
        db.session.commit()
        with pytest.raises(ConfigurationError):
            path_of(500, project_id=1)

    def test_duplicate_id_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_path([10, 20, 10], element_type_id=1)

    def test_malformed_legacy_string(self, regular_pipeline):
        make_path(600, "{10,x}")
        db.session.commit()
        with pytest.raises(ConfigurationError):
            path_of(600)


# ═══════════════════════════════════════════════════════════════════════════
#  3. Navigation
# ═══════════════════════════════════════════════════════════════════════════


class TestNavigation:
    path = [10, 20, 30]

    def test_successor(self):
        assert successor_of(self.path, 10) == 20
        assert successor_of(self.path, 30) is None
        assert successor_of(self.path, 99) is None

    def test_predecessor(self):
        assert predecessor_of(self.path, 20) == 10
        assert predecessor_of(self.path, 10) is None
        assert predecessor_of(self.path, 99) is None

    def test_position(self):
        assert position_of(self.path, 30) == 2
        assert position_of(self.path, 99) is None


# ═══════════════════════════════════════════════════════════════════════════
#  4. Registry
# ═══════════════════════════════════════════════════════════════════════════


class TestStageRegistry:
    @pytest.mark.parametrize("name, kind", [
        ("Mesh & Mould", StageKind.MESH_MOULD),
        ("  mesh & mould ", StageKind.MESH_MOULD),
        ("REINFORCEMENT", StageKind.REINFORCEMENT),
        ("Curing", StageKind.REGULAR),
        (None, StageKind.REGULAR),
    ])
    def test_kind_from_name(self, name, kind):
        assert stage_kind_for_name(name) is kind

    def test_resolve_stage(self, regular_pipeline):
        info = resolve_stage(10)
        assert info.assigned_to == 1
        assert info.qc_id == 11
        assert info.qc_assign is True
        assert info.kind is StageKind.REGULAR

    def test_resolve_stage_scoped_to_project(self, regular_pipeline):
        make_project(2, "Tower B")
        db.session.commit()
        with pytest.raises(NotFoundError):
            resolve_stage(10, project_id=2)

    def test_stages_in_pipeline_order(self, regular_pipeline):
        assert list(stages_for_project(1)) == [10, 20]

    def test_parallel_window_pair(self, window_pipeline):
        window = parallel_window(1)
        assert window.mesh_mould.id == 30
        assert window.reinforcement.id == 40
        assert window.stage_ids == {30, 40}

    def test_parallel_window_single_side(self, regular_pipeline):
        make_stage(60, "reinforcement", assigned_to=6)
        db.session.commit()
        window = parallel_window(1)
        assert window.mesh_mould is None
        assert window.reinforcement.id == 60

    def test_duplicate_reserved_stage_is_configuration_error(self, window_pipeline):
        make_stage(70, "mesh & mould")
        db.session.commit()
        with pytest.raises(ConfigurationError):
            parallel_window(1)

    def test_find_by_name(self, window_pipeline):
        assert find_by_name(1, "MESH & MOULD") == 30
        assert find_by_name(1, "Curing") == 50
        assert find_by_name(1, "curing") is None
        assert find_by_name(1, "Polishing") is None
