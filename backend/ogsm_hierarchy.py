"""
OGSM Hierarchy

Creates and moves permanent objective/goal/strategy/measure nodes while
keeping the tree acyclic and sibling order indexes unique.
"""

import logging
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import func

from models import OGSMComponent, ComponentType
from planning_errors import RecordNotFoundError, HierarchyCycleError, PlanningValidationError

logger = logging.getLogger(__name__)


class OGSMHierarchy:
    """
    Tree operations over OGSMComponent.

    create_component and move_component only flush; callers inside a larger
    unit of work (conversion) own the transaction. add_component and
    reparent commit on their own.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_component(self, component_id: int) -> OGSMComponent:
        component = self.db.query(OGSMComponent).filter(OGSMComponent.id == component_id).first()
        if not component:
            raise RecordNotFoundError("OGSM component", component_id)
        return component

    def next_order_index(self, parent_id: Optional[int]) -> int:
        query = self.db.query(func.max(OGSMComponent.order_index))
        if parent_id is None:
            query = query.filter(OGSMComponent.parent_id.is_(None))
        else:
            query = query.filter(OGSMComponent.parent_id == parent_id)
        current_max = query.scalar()
        return 0 if current_max is None else current_max + 1

    def create_component(
        self,
        component_type: ComponentType,
        title: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
    ) -> OGSMComponent:
        """Add a node as the last child of parent_id. Flushes so the id is available."""
        if not title or not title.strip():
            raise PlanningValidationError("OGSM component title is required")
        if parent_id is not None:
            self.get_component(parent_id)

        component = OGSMComponent(
            component_type=ComponentType(component_type),
            title=title.strip(),
            description=description,
            parent_id=parent_id,
            order_index=self.next_order_index(parent_id),
        )
        self.db.add(component)
        self.db.flush()
        return component

    def ancestor_ids(self, component_id: int) -> List[int]:
        """Ids from the node's parent up to the root."""
        ids = []
        seen = {component_id}
        current = self.get_component(component_id).parent_id
        while current is not None:
            if current in seen:
                raise HierarchyCycleError(f"Cycle detected above OGSM component {component_id}")
            ids.append(current)
            seen.add(current)
            current = self.db.query(OGSMComponent.parent_id).filter(OGSMComponent.id == current).scalar()
        return ids

    def move_component(self, component_id: int, new_parent_id: Optional[int]) -> OGSMComponent:
        """Re-parent a node, rejecting moves that would create a cycle."""
        component = self.get_component(component_id)

        if new_parent_id is not None:
            if new_parent_id == component_id or component_id in self.ancestor_ids(new_parent_id):
                raise HierarchyCycleError(
                    f"Cannot move OGSM component {component_id} under its own descendant {new_parent_id}"
                )

        if component.parent_id != new_parent_id:
            component.parent_id = new_parent_id
            component.order_index = self.next_order_index(new_parent_id)
            self.db.flush()

        return component

    def get_tree(self, root_id: int) -> Dict[str, Any]:
        """Nested dict of a node and its descendants, children in order."""
        root = self.get_component(root_id)
        return self._subtree(root)

    def _subtree(self, component: OGSMComponent) -> Dict[str, Any]:
        node = component.to_dict()
        node["children"] = [self._subtree(child) for child in component.children]
        return node

    def get_forest(self) -> List[Dict[str, Any]]:
        """Every root node with its descendants."""
        roots = (
            self.db.query(OGSMComponent)
            .filter(OGSMComponent.parent_id.is_(None))
            .order_by(OGSMComponent.order_index, OGSMComponent.id)
            .all()
        )
        return [self._subtree(root) for root in roots]

    def list_components(self, component_type: Optional[str] = None) -> List[OGSMComponent]:
        query = self.db.query(OGSMComponent)
        if component_type is not None:
            try:
                query = query.filter(OGSMComponent.component_type == ComponentType(component_type))
            except ValueError:
                allowed = ", ".join(t.value for t in ComponentType)
                raise PlanningValidationError(
                    f"Invalid component type '{component_type}' (expected one of: {allowed})"
                )
        return query.order_by(OGSMComponent.order_index, OGSMComponent.id).all()

    def describe(self, component_id: int) -> Dict[str, Any]:
        """Node fields plus the ids of its ancestors, nearest first."""
        node = self.get_component(component_id).to_dict()
        node["ancestor_ids"] = self.ancestor_ids(component_id)
        return node

    # ═══════════════════════════════════════════════════════════════════════════
    # COMMITTING OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def add_component(
        self,
        component_type: str,
        title: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
    ) -> OGSMComponent:
        try:
            kind = ComponentType(component_type)
        except ValueError:
            allowed = ", ".join(t.value for t in ComponentType)
            raise PlanningValidationError(
                f"Invalid component type '{component_type}' (expected one of: {allowed})"
            )

        try:
            component = self.create_component(kind, title, description=description, parent_id=parent_id)
            self.db.commit()
            self.db.refresh(component)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Created OGSM {kind.value} {component.id} under parent {parent_id}")
        return component

    def reparent(self, component_id: int, new_parent_id: Optional[int]) -> OGSMComponent:
        try:
            component = self.move_component(component_id, new_parent_id)
            self.db.commit()
            self.db.refresh(component)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Moved OGSM component {component_id} under parent {new_parent_id}")
        return component
