from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps.auth import CurrentUser, get_current_user, require_role
from app.deps.workflow import get_workflow
from app.models.enums import ApprovalStatus, ODCategory, RequestType, UserRole
from app.schemas.request import AuditEntry, DecisionIn, ProofIn, RequestCreate, RequestList, RequestOut
from app.services import queries
from app.services.audit import list_audit
from app.services.workflow import ApprovalWorkflow

router = APIRouter(prefix="/api/requests", tags=["requests"])


@router.post("", response_model=RequestOut, status_code=201)
def create_request(body: RequestCreate,
                   wf: ApprovalWorkflow = Depends(get_workflow),
                   user: CurrentUser = Depends(require_role(UserRole.STUDENT))):
    req = wf.create_request(user.id, body)
    return queries.get_request_detail(wf.db, req.id, user.id, user.role)


@router.get("/student", response_model=RequestList)
def student_requests(db: Session = Depends(get_db),
                     user: CurrentUser = Depends(require_role(UserRole.STUDENT))):
    return {"requests": queries.get_student_requests(db, user.id)}


@router.get("/approver", response_model=RequestList)
def approver_requests(db: Session = Depends(get_db),
                      user: CurrentUser = Depends(require_role(UserRole.TEACHER))):
    return {"requests": queries.get_approver_requests(db, user.id)}


@router.get("/group", response_model=RequestList)
def group_requests(db: Session = Depends(get_db),
                   user: CurrentUser = Depends(require_role(UserRole.TEACHER))):
    return {"requests": queries.get_group_requests(db, user.id)}


@router.get("", response_model=RequestList)
def all_requests(type: Optional[RequestType] = None,
                 category: Optional[ODCategory] = None,
                 status: Optional[ApprovalStatus] = None,
                 date_from: Optional[datetime] = None,
                 date_to: Optional[datetime] = None,
                 db: Session = Depends(get_db),
                 user: CurrentUser = Depends(require_role(UserRole.ADMIN))):
    rows = queries.get_all_requests(db, type=type, category=category, status=status,
                                    date_from=date_from, date_to=date_to)
    return {"requests": rows}


@router.get("/{request_id}", response_model=RequestOut)
def request_detail(request_id: int, db: Session = Depends(get_db),
                   user: CurrentUser = Depends(get_current_user)):
    return queries.get_request_detail(db, request_id, user.id, user.role)


@router.post("/{request_id}/decision", response_model=RequestOut)
def decide(request_id: int, body: DecisionIn,
           wf: ApprovalWorkflow = Depends(get_workflow),
           user: CurrentUser = Depends(require_role(UserRole.TEACHER))):
    wf.process_approval_step(user.id, request_id, body.status, body.comments, group_id=body.group_id)
    return queries.get_request_detail(wf.db, request_id, user.id, user.role)


@router.post("/{request_id}/cancel", response_model=dict)
def cancel(request_id: int,
           wf: ApprovalWorkflow = Depends(get_workflow),
           user: CurrentUser = Depends(require_role(UserRole.STUDENT))):
    wf.cancel_request(user.id, request_id)
    return {"request_id": request_id, "cancelled": True}


@router.post("/{request_id}/proof", response_model=RequestOut)
def attach_proof(request_id: int, body: ProofIn,
                 wf: ApprovalWorkflow = Depends(get_workflow),
                 user: CurrentUser = Depends(require_role(UserRole.STUDENT))):
    wf.attach_proof(user.id, request_id, body.url)
    return queries.get_request_detail(wf.db, request_id, user.id, user.role)


@router.get("/{request_id}/audit", response_model=List[AuditEntry])
def request_audit(request_id: int, limit: int = 100, db: Session = Depends(get_db),
                  user: CurrentUser = Depends(require_role(UserRole.ADMIN))):
    return [AuditEntry.model_validate(r) for r in list_audit(db, request_id, limit)]
