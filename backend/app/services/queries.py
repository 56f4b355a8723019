"""
Read-side projections over requests and their approval chains.

Teachers only ever see the part of a request that belongs to their own groups:
approvals and participating students of other groups in a shared team
request are filtered out of every view built for them.
"""
from __future__ import annotations
from datetime import datetime
from typing import Iterable, List, Optional, Set

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import ForbiddenError, NotFoundError
from app.crud.directory import get_student_by_user
from app.crud.group_approver import groups_for_teacher_user
from app.models.directory import Student
from app.models.enums import ApprovalStatus, ODCategory, RequestType, UserRole
from app.models.request import Approval, ApprovalStep, Request, RequestStudent
from app.schemas.request import ApprovalOut, RequestOut, StepOut, StudentOut
from app.services.status import request_status


def _with_graph(q):
    return q.options(
        selectinload(Request.approvals).selectinload(Approval.steps).selectinload(ApprovalStep.user),
        selectinload(Request.approvals).selectinload(Approval.group),
        selectinload(Request.students).selectinload(RequestStudent.student).selectinload(Student.user),
        selectinload(Request.students).selectinload(RequestStudent.student).selectinload(Student.group),
        selectinload(Request.requested_by),
        selectinload(Request.lab),
        selectinload(Request.flow_template),
    )


def request_view(req: Request, group_ids: Optional[Set[int]] = None) -> RequestOut:
    """Serialize a request; with group_ids, only those groups' students and approvals."""
    approvals = [a for a in req.approvals if group_ids is None or a.group_id in group_ids]
    students = [rs.student for rs in req.students if group_ids is None or rs.student.group_id in group_ids]
    return RequestOut(
        id=req.id,
        type=req.type,
        category=req.category,
        needs_lab=req.needs_lab,
        reason=req.reason,
        description=req.description,
        start_date=req.start_date,
        end_date=req.end_date,
        lab_id=req.lab_id,
        lab_name=req.lab.name if req.lab else None,
        requested_by_id=req.requested_by_id,
        requested_by_name=req.requested_by.name if req.requested_by else None,
        flow_template_id=req.flow_template_id,
        flow_template_name=req.flow_template.name if req.flow_template else None,
        proof_of_od=req.proof_of_od,
        created_at=req.created_at,
        # derived from every approval, even when the view is scoped to some groups
        status=request_status(req),
        students=[
            StudentOut(
                id=s.id, roll_no=s.roll_no,
                name=s.user.name if s.user else None,
                group_id=s.group_id,
                group_name=s.group.name if s.group else None,
            )
            for s in students
        ],
        approvals=[
            ApprovalOut(
                id=a.id,
                group_id=a.group_id,
                group_name=a.group.name if a.group else None,
                current_step_index=a.current_step_index,
                status=a.status,
                steps=[
                    StepOut(
                        id=s.id, sequence=s.sequence, role=s.role, user_id=s.user_id,
                        approver_name=s.user.name if s.user else None,
                        status=s.status, comments=s.comments, approved_at=s.approved_at,
                    )
                    for s in a.steps
                ],
            )
            for a in approvals
        ],
    )


def teacher_scope(db: Session, req: Request, teacher_user_id: int,
                  directory_groups: Optional[Iterable[int]] = None) -> Set[int]:
    """Groups of `req` a teacher may see: those whose chain names them, plus groups they approve for."""
    if directory_groups is None:
        directory_groups = groups_for_teacher_user(db, teacher_user_id)
    mine = set(directory_groups)
    scope = set()
    for a in req.approvals:
        if a.group_id in mine or any(s.user_id == teacher_user_id for s in a.steps):
            scope.add(a.group_id)
    return scope


def get_student_requests(db: Session, user_id: int) -> List[RequestOut]:
    student = get_student_by_user(db, user_id)
    if not student:
        raise ForbiddenError("User is not a student")
    rows = (
        _with_graph(db.query(Request))
        .outerjoin(RequestStudent, RequestStudent.request_id == Request.id)
        .filter(or_(RequestStudent.student_id == student.id, Request.requested_by_id == user_id))
        .distinct()
        .order_by(Request.created_at.desc(), Request.id.desc())
        .all()
    )
    return [request_view(r) for r in rows]


def get_approver_requests(db: Session, teacher_user_id: int) -> List[RequestOut]:
    """Requests with a step that is current, PENDING and bound to this teacher right now."""
    rows = (
        _with_graph(db.query(Request))
        .join(Approval, Approval.request_id == Request.id)
        .join(ApprovalStep, and_(
            ApprovalStep.approval_id == Approval.id,
            ApprovalStep.sequence == Approval.current_step_index,
        ))
        .filter(
            Approval.status == ApprovalStatus.PENDING.value,
            ApprovalStep.status == ApprovalStatus.PENDING.value,
            ApprovalStep.user_id == teacher_user_id,
        )
        .distinct()
        .order_by(Request.created_at.desc(), Request.id.desc())
        .all()
    )
    directory_groups = groups_for_teacher_user(db, teacher_user_id)
    return [request_view(r, teacher_scope(db, r, teacher_user_id, directory_groups)) for r in rows]


def get_group_requests(db: Session, teacher_user_id: int) -> List[RequestOut]:
    """Every request touching a group the teacher is a configured approver for."""
    directory_groups = groups_for_teacher_user(db, teacher_user_id)
    if not directory_groups:
        return []
    rows = (
        _with_graph(db.query(Request))
        .join(Approval, Approval.request_id == Request.id)
        .filter(Approval.group_id.in_(directory_groups))
        .distinct()
        .order_by(Request.created_at.desc(), Request.id.desc())
        .all()
    )
    return [request_view(r, teacher_scope(db, r, teacher_user_id, directory_groups)) for r in rows]


def get_request_detail(db: Session, request_id: int, user_id: int, role: UserRole) -> RequestOut:
    req = _with_graph(db.query(Request)).filter(Request.id == request_id).first()
    if not req:
        raise NotFoundError(f"Request {request_id} not found")
    role = UserRole(role)
    if role == UserRole.ADMIN:
        return request_view(req)
    if role == UserRole.STUDENT:
        participants = {rs.student.user_id for rs in req.students}
        if user_id != req.requested_by_id and user_id not in participants:
            raise ForbiddenError("Not a participant of this request")
        return request_view(req)
    scope = teacher_scope(db, req, user_id)
    if not scope:
        raise ForbiddenError("Request does not involve any of your groups")
    return request_view(req, scope)


def get_all_requests(
    db: Session,
    type: Optional[RequestType] = None,
    category: Optional[ODCategory] = None,
    status: Optional[ApprovalStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[RequestOut]:
    """Admin listing. Date bounds keep requests whose period overlaps the window."""
    q = _with_graph(db.query(Request))
    if type is not None:
        q = q.filter(Request.type == RequestType(type).value)
    if category is not None:
        q = q.filter(Request.category == ODCategory(category).value)
    if date_from is not None:
        q = q.filter(Request.end_date >= date_from)
    if date_to is not None:
        q = q.filter(Request.start_date <= date_to)
    rows = q.order_by(Request.created_at.desc(), Request.id.desc()).all()
    if status is not None:
        rows = [r for r in rows if request_status(r) == ApprovalStatus(status)]
    return [request_view(r) for r in rows]
