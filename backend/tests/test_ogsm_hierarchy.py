"""
OGSM Hierarchy Tests
"""

import pytest

from models import ComponentType
from ogsm_hierarchy import OGSMHierarchy
from planning_errors import HierarchyCycleError, RecordNotFoundError, PlanningValidationError


@pytest.fixture
def tree(db_session):
    """objective -> goal -> strategy"""
    hierarchy = OGSMHierarchy(db_session)
    objective = hierarchy.create_component(ComponentType.OBJECTIVE, "Grow")
    goal = hierarchy.create_component(ComponentType.GOAL, "Revenue", parent_id=objective.id)
    strategy = hierarchy.create_component(ComponentType.STRATEGY, "Upsell", parent_id=goal.id)
    db_session.commit()
    return hierarchy, objective, goal, strategy


@pytest.mark.unit
class TestHierarchy:

    def test_order_index_increments_among_siblings(self, db_session, tree):
        hierarchy, objective, goal, _ = tree
        second = hierarchy.create_component(ComponentType.GOAL, "Margin", parent_id=objective.id)
        assert goal.order_index == 0
        assert second.order_index == 1

    def test_ancestors(self, tree):
        hierarchy, objective, goal, strategy = tree
        assert hierarchy.ancestor_ids(strategy.id) == [goal.id, objective.id]

    def test_move_under_descendant_rejected(self, tree):
        hierarchy, objective, _, strategy = tree
        with pytest.raises(HierarchyCycleError):
            hierarchy.move_component(objective.id, strategy.id)

    def test_move_under_self_rejected(self, tree):
        hierarchy, _, goal, _ = tree
        with pytest.raises(HierarchyCycleError):
            hierarchy.move_component(goal.id, goal.id)

    def test_move_to_root(self, db_session, tree):
        hierarchy, _, _, strategy = tree
        moved = hierarchy.move_component(strategy.id, None)
        assert moved.parent_id is None

    def test_tree_nesting(self, tree):
        hierarchy, objective, goal, strategy = tree
        nested = hierarchy.get_tree(objective.id)
        assert nested["children"][0]["id"] == goal.id
        assert nested["children"][0]["children"][0]["id"] == strategy.id

    def test_unknown_parent(self, db_session):
        with pytest.raises(RecordNotFoundError):
            OGSMHierarchy(db_session).create_component(ComponentType.GOAL, "Orphan", parent_id=99)

    def test_blank_title(self, db_session):
        with pytest.raises(PlanningValidationError):
            OGSMHierarchy(db_session).create_component(ComponentType.GOAL, " ")

    def test_reparent_commits_and_rejects_cycles(self, db_session, tree):
        hierarchy, objective, goal, strategy = tree
        other = hierarchy.add_component("objective", "Retain")

        moved = hierarchy.reparent(goal.id, other.id)
        assert moved.parent_id == other.id
        assert hierarchy.describe(strategy.id)["ancestor_ids"] == [goal.id, other.id]

        with pytest.raises(HierarchyCycleError):
            hierarchy.reparent(other.id, strategy.id)
        db_session.refresh(other)
        assert other.parent_id is None

    def test_forest_lists_every_root(self, tree):
        hierarchy, objective, _, _ = tree
        second = hierarchy.add_component("objective", "Retain")

        forest = hierarchy.get_forest()
        assert [root["id"] for root in forest] == [objective.id, second.id]
        assert forest[0]["children"][0]["children"][0]["title"] == "Upsell"

    def test_invalid_component_type(self, db_session):
        with pytest.raises(PlanningValidationError):
            OGSMHierarchy(db_session).add_component("vision", "Be great")
        with pytest.raises(PlanningValidationError):
            OGSMHierarchy(db_session).list_components("vision")


@pytest.mark.integration
class TestOGSMAPI:

    def test_create_move_and_browse(self, client):
        objective = client.post("/ogsm/components", json={"component_type": "objective", "title": "Grow"}).json()
        goal = client.post("/ogsm/components", json={
            "component_type": "goal", "title": "Revenue", "parent_id": objective["id"]
        }).json()
        spare = client.post("/ogsm/components", json={"component_type": "objective", "title": "Retain"}).json()

        moved = client.patch(f"/ogsm/components/{goal['id']}/parent", json={"parent_id": spare["id"]})
        assert moved.status_code == 200
        assert moved.json()["parent_id"] == spare["id"]

        detail = client.get(f"/ogsm/components/{goal['id']}").json()
        assert detail["ancestor_ids"] == [spare["id"]]

        subtree = client.get(f"/ogsm/components/{spare['id']}/tree").json()
        assert [c["id"] for c in subtree["children"]] == [goal["id"]]

        forest = client.get("/ogsm/tree").json()
        assert {root["id"] for root in forest} == {objective["id"], spare["id"]}

        goals = client.get("/ogsm/components", params={"component_type": "goal"}).json()
        assert [g["id"] for g in goals] == [goal["id"]]

    def test_cycle_is_conflict(self, client):
        objective = client.post("/ogsm/components", json={"component_type": "objective", "title": "Grow"}).json()
        goal = client.post("/ogsm/components", json={
            "component_type": "goal", "title": "Revenue", "parent_id": objective["id"]
        }).json()

        response = client.patch(f"/ogsm/components/{objective['id']}/parent", json={"parent_id": goal["id"]})
        assert response.status_code == 409
        assert response.json()["error"] == "hierarchy_cycle"

    def test_unknown_component(self, client):
        assert client.get("/ogsm/components/999").status_code == 404
