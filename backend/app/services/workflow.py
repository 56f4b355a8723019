"""
Sequential, per-group approval workflow for OD/leave requests.

A request's participants are partitioned by group; every group gets its own
Approval whose ApprovalSteps mirror the flow template, each bound to the
teacher that the group's approver directory resolves for the step's role.
Steps are decided strictly in sequence and only by their bound approver.

Every state change runs in a single transaction. Notifications and the JSONL
audit mirror run only after that transaction committed.
"""
from __future__ import annotations
import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ConfigurationError, ForbiddenError, NoPendingStepError, NotFoundError,
    PersistenceError, ValidationError, WorkflowError,
)
from app.crud import flow as flow_store
from app.crud.directory import get_student_by_user
from app.crud import group_approver as approver_directory
from app.metrics import (
    approval_chains_created_total, approvals_completed_total, no_pending_step_total,
    requests_cancelled_total, requests_created_total, step_decisions_total,
)
from app.models.audit import AuditLog
from app.models.directory import Lab, Student, User
from app.models.enums import ApprovalStatus, Role
from app.models.flow import FlowTemplate
from app.models.request import Approval, ApprovalStep, Request, RequestStudent
from app.services.audit import mirror_audit, record_audit
from app.services.notifications import (
    Notification, Notifier, awaiting_approval_message, cancelled_message, dispatch,
    final_decision_message, new_request_message,
)
from app.services.status import request_status

logger = logging.getLogger(__name__)

# Template used when a request does not name one
LAB_FLOW_NAME = os.getenv("LAB_FLOW_NAME", "LabFlow")
NO_LAB_FLOW_NAME = os.getenv("NO_LAB_FLOW_NAME", "NoLabFlow")

VALID_DECISIONS = {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}

ResolveApprover = Callable[[Session, int, Role], Optional[int]]


class ApprovalWorkflow:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        resolve_approver: ResolveApprover = approver_directory.resolve_approver,
        lab_flow_name: str = LAB_FLOW_NAME,
        no_lab_flow_name: str = NO_LAB_FLOW_NAME,
    ):
        self.db = db
        self.notifier = notifier
        self.resolve_approver = resolve_approver
        self.lab_flow_name = lab_flow_name
        self.no_lab_flow_name = no_lab_flow_name
        self._audit: List[AuditLog] = []

    @contextmanager
    def _atomic(self, what: str):
        self._audit = []
        try:
            yield
            self.db.commit()
        except WorkflowError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("[workflow] %s failed; rolled back", what)
            raise PersistenceError(f"Could not {what}; no changes were applied") from e

    def _audit_row(self, action: str, request_id: int, actor_id: int, details: dict) -> None:
        self._audit.append(record_audit(self.db, action, request_id, actor_id, details, commit=False))

    def _after_commit(self, notifications: Sequence[Notification]) -> None:
        mirror_audit(self._audit)
        self._audit = []
        dispatch(self.notifier, notifications)

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def _pick_template(self, data) -> FlowTemplate:
        if data.flow_template_id is not None:
            return flow_store.get_template(self.db, data.flow_template_id)
        name = self.lab_flow_name if data.needs_lab else self.no_lab_flow_name
        t = flow_store.get_template_by_name(self.db, name)
        if not t:
            raise ConfigurationError(
                f"Flow template not found for {'lab' if data.needs_lab else 'no lab'} flow",
                {"flow_template_name": name},
            )
        return t

    def _participants(self, requester: Student, student_ids: Optional[Sequence[int]]) -> List[Student]:
        ids = list(dict.fromkeys(student_ids or [requester.id]))
        rows = self.db.query(Student).filter(Student.id.in_(ids)).all()
        by_id = {s.id: s for s in rows}
        missing = [i for i in ids if i not in by_id]
        if missing:
            raise ValidationError("One or more students not found", {"student_ids": missing})
        return [by_id[i] for i in ids]

    def create_request(self, requester_id: int, data) -> Request:
        """
        Persist a request together with one approval chain per participating group.

        Either the request, its participants, every approval and every step
        exist afterwards, or none of them do.
        """
        if data.end_date < data.start_date:
            raise ValidationError("End date must be after or equal to start date")
        if data.needs_lab and not data.lab_id:
            raise ValidationError("Lab ID is required when lab is needed")
        if data.student_ids is not None and len(data.student_ids) == 0:
            raise ValidationError("At least one student must be included in the request")

        requester = self.db.get(User, requester_id)
        student = get_student_by_user(self.db, requester_id) if requester else None
        if not student:
            raise ValidationError("RequestedBy must be a student")
        if data.lab_id is not None and not self.db.get(Lab, data.lab_id):
            raise ValidationError("Lab not found", {"lab_id": data.lab_id})

        participants = self._participants(student, data.student_ids)
        template = self._pick_template(data)
        steps = flow_store.get_template_steps(self.db, template.id)

        # group -> ordered approver user ids, resolved up front so nothing is written
        # for a chain that cannot be completed
        groups: Dict[int, List[int]] = {}
        missing = []
        for s in participants:
            if s.group_id in groups:
                continue
            chain = []
            for step in steps:
                uid = self.resolve_approver(self.db, s.group_id, Role(step.role))
                if uid is None:
                    missing.append({"group_id": s.group_id, "role": step.role})
                chain.append(uid)
            groups[s.group_id] = chain
        if missing:
            raise ConfigurationError(
                "No approver configured for one or more roles; fix the group approvers and resubmit",
                {"missing": missing, "flow_template": template.name},
            )

        notifications: List[Notification] = []
        with self._atomic("create request"):
            req = Request(
                type=data.type.value,
                category=data.category.value if data.category else None,
                needs_lab=data.needs_lab,
                reason=data.reason,
                description=data.description,
                start_date=data.start_date,
                end_date=data.end_date,
                lab_id=data.lab_id,
                requested_by_id=requester_id,
                flow_template_id=template.id,
            )
            req.students = [RequestStudent(student_id=s.id) for s in participants]
            for group_id, chain in groups.items():
                approval = Approval(group_id=group_id, current_step_index=0,
                                    status=ApprovalStatus.PENDING.value)
                approval.steps = [
                    ApprovalStep(sequence=step.sequence, role=step.role, user_id=uid,
                                 status=ApprovalStatus.PENDING.value)
                    for step, uid in zip(steps, chain)
                ]
                req.approvals.append(approval)
            self.db.add(req)
            self.db.flush()
            self._audit_row("REQUEST_CREATED", req.id, requester_id, {
                "type": req.type,
                "flow_template": template.name,
                "groups": list(groups.keys()),
                "students": [s.id for s in participants],
            })
            request_id = req.id
            for chain in groups.values():
                notifications.append(new_request_message(request_id, requester.name, chain[0]))

        requests_created_total.labels(type=data.type.value).inc()
        approval_chains_created_total.inc(len(groups))
        logger.info("[workflow] request %s created by user %s with %d approval chain(s)",
                    request_id, requester_id, len(groups))
        self._after_commit(notifications)
        return self.db.get(Request, request_id)

    # ------------------------------------------------------------------
    # decisions
    # ------------------------------------------------------------------

    def _recipients_for_group(self, req: Request, group_id: int) -> List[int]:
        ids = [rs.student.user_id for rs in req.students if rs.student.group_id == group_id]
        if req.requested_by_id not in ids:
            ids.append(req.requested_by_id)
        return ids

    def process_approval_step(
        self,
        approver_id: int,
        request_id: int,
        status: ApprovalStatus,
        comments: Optional[str] = None,
        group_id: Optional[int] = None,
    ) -> Request:
        """
        Decide the caller's current step on a request.

        Only an approval whose current step is PENDING and bound to
        `approver_id` can be decided. When the caller holds the current step in
        several groups of one request, all of them are decided unless
        `group_id` narrows the call to one group.
        """
        status = ApprovalStatus(status)
        if status not in VALID_DECISIONS:
            raise ValidationError(f"Invalid decision '{status.value}'. Must be APPROVED or REJECTED.")

        notifications: List[Notification] = []
        outcomes = []
        with self._atomic("record decision"):
            req = self.db.get(Request, request_id)
            if not req:
                raise NotFoundError(f"Request {request_id} not found")

            # row locks serialize concurrent decisions on the same request
            approvals = (
                self.db.query(Approval)
                .filter(Approval.request_id == request_id)
                .order_by(Approval.id.asc())
                .with_for_update()
                .populate_existing()
                .all()
            )
            actionable = []
            for a in approvals:
                if a.status != ApprovalStatus.PENDING.value:
                    continue
                if group_id is not None and a.group_id != group_id:
                    continue
                step = a.current_step
                if step and step.status == ApprovalStatus.PENDING.value and step.user_id == approver_id:
                    actionable.append((a, step))
            if not actionable:
                no_pending_step_total.inc()
                raise NoPendingStepError(details={"request_id": request_id})

            approver = self.db.get(User, approver_id)
            now = datetime.utcnow()
            for a, step in actionable:
                total = len(a.steps)
                done = self.db.execute(
                    update(ApprovalStep)
                    .where(ApprovalStep.id == step.id,
                           ApprovalStep.status == ApprovalStatus.PENDING.value)
                    .values(status=status.value, comments=comments, approved_at=now)
                    .execution_options(synchronize_session=False)
                )
                if done.rowcount != 1:
                    raise NoPendingStepError(details={"request_id": request_id})

                if status == ApprovalStatus.REJECTED:
                    new_status, new_index = ApprovalStatus.REJECTED, step.sequence
                elif step.sequence == total - 1:
                    new_status, new_index = ApprovalStatus.APPROVED, total
                else:
                    new_status, new_index = ApprovalStatus.PENDING, step.sequence + 1

                moved = self.db.execute(
                    update(Approval)
                    .where(Approval.id == a.id,
                           Approval.status == ApprovalStatus.PENDING.value,
                           Approval.current_step_index == step.sequence)
                    .values(status=new_status.value, current_step_index=new_index)
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount != 1:
                    raise NoPendingStepError(details={"request_id": request_id})

                self._audit_row("STEP_DECIDED", request_id, approver_id, {
                    "approval_id": a.id,
                    "group_id": a.group_id,
                    "sequence": step.sequence,
                    "role": step.role,
                    "decision": status.value,
                    "comments": comments or "",
                })
                if new_status == ApprovalStatus.PENDING:
                    nxt = next(s for s in a.steps if s.sequence == new_index)
                    notifications.append(awaiting_approval_message(
                        request_id, approver.name if approver else None, nxt.user_id))
                else:
                    self._audit_row("APPROVAL_COMPLETED", request_id, approver_id, {
                        "approval_id": a.id, "group_id": a.group_id, "status": new_status.value,
                    })
                    notifications.append(final_decision_message(
                        request_id,
                        a.group.name if a.group else None,
                        new_status == ApprovalStatus.APPROVED,
                        self._recipients_for_group(req, a.group_id),
                    ))
                outcomes.append((a.id, step.sequence, new_status))

        for approval_id, seq, new_status in outcomes:
            step_decisions_total.labels(decision=status.value).inc()
            if new_status != ApprovalStatus.PENDING:
                approvals_completed_total.labels(status=new_status.value).inc()
            logger.info("[workflow] request %s approval %s step %s %s by user %s -> %s",
                        request_id, approval_id, seq, status.value, approver_id, new_status.value)
        self._after_commit(notifications)
        return self.db.get(Request, request_id)

    # ------------------------------------------------------------------
    # requester actions
    # ------------------------------------------------------------------

    def cancel_request(self, requester_id: int, request_id: int) -> None:
        """Withdraw a request that is still pending; approvals and steps go with it."""
        notifications: List[Notification] = []
        with self._atomic("cancel request"):
            req = self.db.get(Request, request_id)
            if not req:
                raise NotFoundError(f"Request {request_id} not found")
            if req.requested_by_id != requester_id:
                raise ForbiddenError("Only the requester can cancel this request")
            approvals = (
                self.db.query(Approval)
                .filter(Approval.request_id == request_id)
                .with_for_update()
                .populate_existing()
                .all()
            )
            current = request_status(req)
            if current != ApprovalStatus.PENDING:
                raise ValidationError(f"Only pending requests can be cancelled (status is {current.value})")
            waiting = []
            for a in approvals:
                step = a.current_step
                if a.status == ApprovalStatus.PENDING.value and step and step.user_id not in waiting:
                    waiting.append(step.user_id)
            self._audit_row("REQUEST_CANCELLED", request_id, requester_id, {"notified": waiting})
            self.db.delete(req)
            notifications.append(cancelled_message(request_id, waiting))

        requests_cancelled_total.inc()
        logger.info("[workflow] request %s cancelled by user %s", request_id, requester_id)
        self._after_commit(notifications)

    def attach_proof(self, user_id: int, request_id: int, url: str) -> Request:
        url = (url or "").strip()
        if not url:
            raise ValidationError("Proof URL is required")
        with self._atomic("attach proof"):
            req = self.db.get(Request, request_id)
            if not req:
                raise NotFoundError(f"Request {request_id} not found")
            allowed = {req.requested_by_id} | {rs.student.user_id for rs in req.students}
            if user_id not in allowed:
                raise ForbiddenError("Only the requester or a participant can attach proof")
            req.proof_of_od = url
            self._audit_row("PROOF_ATTACHED", request_id, user_id, {"url": url})
        self._after_commit([])
        return self.db.get(Request, request_id)
