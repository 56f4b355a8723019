from typing import List, Optional
from pydantic import BaseModel, Field
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.crud import flow as flow_store
from app.deps.auth import require_role
from app.models.enums import Role, UserRole

router = APIRouter(prefix="/api/flow-templates", tags=["flow-templates"])

class FlowStepOut(BaseModel):
    id: int
    sequence: int
    role: Role
    class Config:
        from_attributes = True

class FlowTemplateOut(BaseModel):
    id: int
    name: str
    steps: List[FlowStepOut] = []
    referenced: bool = False
    class Config:
        from_attributes = True

class FlowTemplateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    roles: List[Role] = []          # steps in approval order

class FlowStepIn(BaseModel):
    role: Role
    sequence: Optional[int] = None  # appended at the end when omitted

def _out(db: Session, t) -> FlowTemplateOut:
    out = FlowTemplateOut.model_validate(t)
    out.referenced = flow_store.is_referenced(db, t.id)
    return out

@router.get("", response_model=List[FlowTemplateOut])
def list_templates(db: Session = Depends(get_db), user=Depends(require_role(UserRole.ADMIN))):
    return [_out(db, t) for t in flow_store.list_templates(db)]

@router.post("", response_model=FlowTemplateOut, status_code=201)
def create_template(body: FlowTemplateIn, db: Session = Depends(get_db),
                    user=Depends(require_role(UserRole.ADMIN))):
    return _out(db, flow_store.create_template(db, body.name, body.roles))

@router.get("/{template_id}", response_model=FlowTemplateOut)
def get_template(template_id: int, db: Session = Depends(get_db),
                 user=Depends(require_role(UserRole.ADMIN))):
    return _out(db, flow_store.get_template(db, template_id))

@router.delete("/{template_id}", response_model=dict)
def delete_template(template_id: int, db: Session = Depends(get_db),
                    user=Depends(require_role(UserRole.ADMIN))):
    flow_store.delete_template(db, template_id)
    return {"deleted": True}

@router.post("/{template_id}/steps", response_model=FlowStepOut, status_code=201)
def add_step(template_id: int, body: FlowStepIn, db: Session = Depends(get_db),
             user=Depends(require_role(UserRole.ADMIN))):
    return FlowStepOut.model_validate(flow_store.add_step(db, template_id, body.role, body.sequence))

@router.delete("/{template_id}/steps/{step_id}", response_model=FlowTemplateOut)
def delete_step(template_id: int, step_id: int, db: Session = Depends(get_db),
                user=Depends(require_role(UserRole.ADMIN))):
    flow_store.delete_step(db, template_id, step_id)
    t = flow_store.get_template(db, template_id)
    db.refresh(t)
    return _out(db, t)
