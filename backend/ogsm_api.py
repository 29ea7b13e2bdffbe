"""
OGSM API

Browse the permanent objective/goal/strategy/measure tree, add nodes and
re-parent them. Moves that would create a cycle are rejected with 409.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from pydantic import BaseModel

from database import get_db
from ogsm_hierarchy import OGSMHierarchy


router = APIRouter(prefix="/ogsm", tags=["OGSM"])


class ComponentCreate(BaseModel):
    component_type: str
    title: str
    description: Optional[str] = None
    parent_id: Optional[int] = None


class ComponentMove(BaseModel):
    parent_id: Optional[int] = None


@router.get("/tree")
def get_forest(db: Session = Depends(get_db)):
    return OGSMHierarchy(db).get_forest()


@router.get("/components")
def list_components(component_type: Optional[str] = None, db: Session = Depends(get_db)):
    return [c.to_dict() for c in OGSMHierarchy(db).list_components(component_type)]


@router.post("/components")
def create_component(data: ComponentCreate, db: Session = Depends(get_db)):
    component = OGSMHierarchy(db).add_component(
        data.component_type, data.title, description=data.description, parent_id=data.parent_id
    )
    return component.to_dict()


@router.get("/components/{component_id}")
def get_component(component_id: int, db: Session = Depends(get_db)):
    return OGSMHierarchy(db).describe(component_id)


@router.get("/components/{component_id}/tree")
def get_subtree(component_id: int, db: Session = Depends(get_db)):
    return OGSMHierarchy(db).get_tree(component_id)


@router.patch("/components/{component_id}/parent")
def move_component(component_id: int, data: ComponentMove, db: Session = Depends(get_db)):
    return OGSMHierarchy(db).reparent(component_id, data.parent_id).to_dict()
