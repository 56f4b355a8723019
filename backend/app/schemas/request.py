from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.enums import ApprovalStatus, ODCategory, RequestType, Role


class RequestCreate(BaseModel):
    type: RequestType
    category: Optional[ODCategory] = None
    needs_lab: bool = False
    reason: str = Field(min_length=1, max_length=1000)
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    lab_id: Optional[int] = None
    # participants; omitted means the requester alone
    student_ids: Optional[List[int]] = None
    flow_template_id: Optional[int] = None


class DecisionIn(BaseModel):
    status: ApprovalStatus
    comments: Optional[str] = None
    group_id: Optional[int] = None


class ProofIn(BaseModel):
    url: str = Field(min_length=1, max_length=1024)


class StepOut(BaseModel):
    id: int
    sequence: int
    role: Role
    user_id: int
    approver_name: Optional[str] = None
    status: ApprovalStatus
    comments: Optional[str] = None
    approved_at: Optional[datetime] = None


class ApprovalOut(BaseModel):
    id: int
    group_id: int
    group_name: Optional[str] = None
    current_step_index: int
    status: ApprovalStatus
    steps: List[StepOut] = []


class StudentOut(BaseModel):
    id: int
    roll_no: str
    name: Optional[str] = None
    group_id: int
    group_name: Optional[str] = None


class RequestOut(BaseModel):
    id: int
    type: RequestType
    category: Optional[ODCategory] = None
    needs_lab: bool
    reason: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    lab_id: Optional[int] = None
    lab_name: Optional[str] = None
    requested_by_id: int
    requested_by_name: Optional[str] = None
    flow_template_id: int
    flow_template_name: Optional[str] = None
    proof_of_od: Optional[str] = None
    created_at: datetime
    status: ApprovalStatus          # derived from the approvals, never stored
    students: List[StudentOut] = []
    approvals: List[ApprovalOut] = []


class AuditEntry(BaseModel):
    id: int
    action: str
    request_id: Optional[int]
    actor_id: Optional[int]
    details: dict
    created_at: datetime
    class Config:
        from_attributes = True


class RequestList(BaseModel):
    requests: List[RequestOut] = []
