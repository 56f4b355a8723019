from typing import List, Optional
from pydantic import BaseModel
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.crud import group_approver as directory
from app.deps.auth import require_role
from app.models.enums import Role, UserRole

router = APIRouter(prefix="/api/group-approvers", tags=["group-approvers"])

class GroupApproverIn(BaseModel):
    group_id: int
    teacher_id: int
    role: Role

class GroupApproverOut(BaseModel):
    id: int
    group_id: int
    teacher_id: int
    role: Role
    class Config:
        from_attributes = True

@router.get("", response_model=List[GroupApproverOut])
def list_approvers(group_id: Optional[int] = None, teacher_id: Optional[int] = None,
                   db: Session = Depends(get_db), user=Depends(require_role(UserRole.ADMIN))):
    if group_id is not None:
        rows = directory.list_by_group(db, group_id)
    elif teacher_id is not None:
        rows = directory.list_by_teacher(db, teacher_id)
    else:
        rows = directory.list_all(db)
    return [GroupApproverOut.model_validate(r) for r in rows]

@router.put("", response_model=GroupApproverOut)
def assign_approver(body: GroupApproverIn, db: Session = Depends(get_db),
                    user=Depends(require_role(UserRole.ADMIN))):
    ga = directory.assign_approver(db, body.group_id, body.teacher_id, body.role)
    return GroupApproverOut.model_validate(ga)

@router.delete("/{approver_id}", response_model=dict)
def remove_approver(approver_id: int, db: Session = Depends(get_db),
                    user=Depends(require_role(UserRole.ADMIN))):
    directory.remove_approver(db, approver_id)
    return {"deleted": True}
