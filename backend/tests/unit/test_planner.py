"""
Unit tests for the deployment planner.
"""

from rangekeeper.domain.resources.composition import build_forest
from rangekeeper.domain.resources.planner import build_plan

from tests.fixtures.resource_fixtures import make_resource


class TestBuildPlan:
    """Test stage derivation."""

    def test_scenario_tree(self):
        forest = build_forest([
            make_resource(1, level=0, sequence=1, contains=[2, 3]),
            make_resource(2, level=1, sequence=1),
            make_resource(3, level=1, sequence=2),
        ])

        plan = build_plan(forest)

        assert [stage.resource_ids for stage in plan] == [(1,), (2,), (3,)]
        assert [stage.index for stage in plan] == [0, 1, 2]

    def test_equal_sequence_roots_share_stage(self):
        forest = build_forest([
            make_resource(1, level=0, sequence=1),
            make_resource(2, level=0, sequence=1),
        ])

        plan = build_plan(forest)

        assert len(plan) == 1
        assert plan.stages[0].resource_ids == (1, 2)

    def test_child_stage_after_parent(self):
        forest = build_forest([
            make_resource(1, level=0, sequence=5, contains=[3]),
            make_resource(2, level=0, sequence=9, contains=[4]),
            make_resource(3, level=1, sequence=0),
            make_resource(4, level=1, sequence=0),
            make_resource(5, level=0, sequence=1),
        ])

        plan = build_plan(forest)

        for resource_id in forest:
            parent = forest.parent_of(resource_id)
            if parent is not None:
                assert plan.stage_of(resource_id) > plan.stage_of(parent)

    def test_sibling_sequence_ordering(self):
        forest = build_forest([
            make_resource(1, level=0, contains=[2, 3, 4]),
            make_resource(2, level=1, sequence=3),
            make_resource(3, level=1, sequence=1),
            make_resource(4, level=1, sequence=3),
        ])

        plan = build_plan(forest)

        assert plan.stage_of(2) == plan.stage_of(4)
        assert plan.stage_of(3) < plan.stage_of(2)

    def test_empty_forest(self):
        plan = build_plan(build_forest([]))

        assert len(plan) == 0
        assert plan.resource_ids == []


class TestReversedPlan:
    """Test revocation order."""

    def test_children_before_root(self):
        forest = build_forest([
            make_resource(1, level=0, sequence=1, contains=[2, 3]),
            make_resource(2, level=1, sequence=1),
            make_resource(3, level=1, sequence=2),
        ])

        plan = build_plan(forest).reversed()

        assert plan.reversed_order is True
        assert [stage.resource_ids for stage in plan] == [(3,), (2,), (1,)]
        assert [stage.index for stage in plan] == [2, 1, 0]
        assert plan.stage_of(1) == 0

    def test_to_dict(self):
        plan = build_plan(build_forest([make_resource(1)]))

        assert plan.to_dict() == {
            "reversed": False,
            "stages": [{"index": 0, "resource_ids": [1], "depth": 0, "sequence": 0}],
        }
