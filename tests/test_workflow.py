import pytest
from types import SimpleNamespace
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    ConfigurationError, ForbiddenError, NoPendingStepError, NotFoundError,
    PersistenceError, ValidationError,
)
from app.crud import group_approver
from app.models.audit import AuditLog
from app.models.enums import ApprovalStatus, RequestType, Role
from app.models.flow import FlowStep
from app.models.request import Approval, ApprovalStep, Request, RequestStudent
from app.services.status import request_status
from app.services.workflow import ApprovalWorkflow

APPROVED = ApprovalStatus.APPROVED
REJECTED = ApprovalStatus.REJECTED


def _chain(approval):
    return [(s.sequence, s.role, s.user_id, s.status) for s in approval.steps]


def _counts(db):
    return (
        db.query(Request).count(),
        db.query(RequestStudent).count(),
        db.query(Approval).count(),
        db.query(ApprovalStep).count(),
    )


def _by_group(req):
    return {a.group_id: a for a in req.approvals}


# --- creation -------------------------------------------------------------

def test_tutor_then_hod_scenario(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request())
    assert len(req.approvals) == 1
    a = req.approvals[0]
    assert a.group_id == world.g1.id
    assert a.current_step_index == 0
    assert a.status == "PENDING"
    assert _chain(a) == [
        (0, "TUTOR", world.alice.id, "PENDING"),
        (1, "HOD", world.bob.id, "PENDING"),
    ]

    with pytest.raises(NoPendingStepError):
        workflow.process_approval_step(world.bob.id, req.id, APPROVED)

    req = workflow.process_approval_step(world.alice.id, req.id, APPROVED, "Go ahead")
    a = req.approvals[0]
    assert a.steps[0].status == "APPROVED"
    assert a.steps[0].comments == "Go ahead"
    assert a.steps[0].approved_at is not None
    assert a.current_step_index == 1
    assert a.status == "PENDING"
    assert request_status(req) == ApprovalStatus.PENDING

    req = workflow.process_approval_step(world.bob.id, req.id, APPROVED)
    a = req.approvals[0]
    assert a.steps[1].status == "APPROVED"
    assert a.status == "APPROVED"
    assert a.current_step_index == 2
    assert request_status(req) == ApprovalStatus.APPROVED


def test_team_request_creates_one_chain_per_group(workflow, world, od_request, db):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id, world.s3.id]))
    assert _counts(db) == (1, 3, 2, 4)
    chains = _by_group(req)
    assert set(chains) == {world.g1.id, world.g2.id}
    for a in chains.values():
        assert a.current_step_index == 0
        assert a.status == "PENDING"
        assert [s.status for s in a.steps] == ["PENDING", "PENDING"]
    assert [s.user_id for s in chains[world.g1.id].steps] == [world.alice.id, world.bob.id]
    assert [s.user_id for s in chains[world.g2.id].steps] == [world.dave.id, world.bob.id]


def test_participants_default_to_requester(workflow, world, od_request):
    req = workflow.create_request(world.u2.id, od_request())
    assert [rs.student_id for rs in req.students] == [world.s2.id]
    assert req.requested_by_id == world.u2.id


def test_lab_requests_use_lab_flow_by_default(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(needs_lab=True, lab_id=world.lab.id))
    assert req.flow_template_id == world.lab_flow.id
    assert [(s.role, s.user_id) for s in req.approvals[0].steps] == [
        ("TUTOR", world.alice.id), ("LAB_INCHARGE", world.carol.id), ("HOD", world.bob.id),
    ]


def test_explicit_template_wins_over_default(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(flow_template_id=world.lab_flow.id))
    assert req.flow_template_id == world.lab_flow.id
    assert len(req.approvals[0].steps) == 3


def test_new_request_notifies_first_step_approvers(workflow, world, od_request, recorder):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    sent = recorder.of_type("new_request")
    assert sorted(r for n in sent for r in n.recipients) == sorted([world.alice.id, world.dave.id])
    assert all(n.data["requestId"] == req.id for n in sent)
    assert all("Sam" in n.body for n in sent)


@pytest.mark.parametrize("overrides, message", [
    ({"end_date": datetime(2026, 11, 1)}, "End date"),
    ({"needs_lab": True}, "Lab ID is required"),
    ({"lab_id": 999}, "Lab not found"),
    ({"student_ids": [999]}, "students not found"),
    ({"student_ids": []}, "At least one student"),
])
def test_invalid_payloads_are_rejected_without_writes(workflow, world, od_request, db, overrides, message):
    with pytest.raises(ValidationError, match=message):
        workflow.create_request(world.u1.id, od_request(**overrides))
    assert _counts(db) == (0, 0, 0, 0)


def test_only_students_can_request(workflow, world, od_request):
    with pytest.raises(ValidationError, match="must be a student"):
        workflow.create_request(world.alice.id, od_request())


def test_missing_group_approver_aborts_whole_request(workflow, world, od_request, db, recorder):
    ga = next(g for g in group_approver.list_by_group(db, world.g2.id) if g.role == "TUTOR")
    group_approver.remove_approver(db, ga.id)

    with pytest.raises(ConfigurationError) as exc:
        workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    assert exc.value.details["missing"] == [{"group_id": world.g2.id, "role": "TUTOR"}]
    assert _counts(db) == (0, 0, 0, 0)
    assert recorder.sent == []


def test_missing_default_template_is_a_configuration_error(db, world, od_request):
    wf = ApprovalWorkflow(db, no_lab_flow_name="GhostFlow")
    with pytest.raises(ConfigurationError, match="Flow template not found"):
        wf.create_request(world.u1.id, od_request())


def test_gapped_template_is_a_configuration_error(workflow, world, od_request, db):
    db.add(FlowStep(flow_template_id=world.no_lab.id, sequence=5, role=Role.LAB_INCHARGE.value))
    db.commit()
    with pytest.raises(ConfigurationError, match="numbered"):
        workflow.create_request(world.u1.id, od_request())


def test_storage_failure_rolls_back_everything(workflow, world, od_request, db, monkeypatch, recorder):
    def boom(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr("app.services.workflow.record_audit", boom)
    with pytest.raises(PersistenceError):
        workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    assert _counts(db) == (0, 0, 0, 0)
    assert recorder.sent == []


def test_broken_notifier_does_not_fail_creation(db, world, od_request):
    class Exploding:
        def send(self, notification):
            raise RuntimeError("push provider down")

    req = ApprovalWorkflow(db, notifier=Exploding()).create_request(world.u1.id, od_request())
    assert db.get(Request, req.id) is not None


# --- step processing ------------------------------------------------------

def test_steps_must_be_decided_in_order(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(needs_lab=True, lab_id=world.lab.id))
    for later in (world.carol.id, world.bob.id):
        with pytest.raises(NoPendingStepError):
            workflow.process_approval_step(later, req.id, APPROVED)

    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    with pytest.raises(NoPendingStepError):
        workflow.process_approval_step(world.bob.id, req.id, APPROVED)

    req = workflow.process_approval_step(world.carol.id, req.id, APPROVED)
    assert req.approvals[0].current_step_index == 2


def test_a_step_is_decided_once(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request())
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    with pytest.raises(NoPendingStepError, match="No pending step"):
        workflow.process_approval_step(world.alice.id, req.id, REJECTED)


def test_approved_chain_is_terminal(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request())
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    workflow.process_approval_step(world.bob.id, req.id, APPROVED)
    for who in (world.alice.id, world.bob.id):
        with pytest.raises(NoPendingStepError):
            workflow.process_approval_step(who, req.id, REJECTED)


def test_rejection_short_circuits_the_chain(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(needs_lab=True, lab_id=world.lab.id))
    req = workflow.process_approval_step(world.alice.id, req.id, REJECTED, "Attendance shortage")
    a = req.approvals[0]
    assert a.status == "REJECTED"
    assert a.current_step_index == 0
    assert [s.status for s in a.steps] == ["REJECTED", "PENDING", "PENDING"]
    assert all(s.approved_at is None for s in a.steps[1:])
    assert request_status(req) == ApprovalStatus.REJECTED

    for later in (world.carol.id, world.bob.id):
        with pytest.raises(NoPendingStepError):
            workflow.process_approval_step(later, req.id, APPROVED)


def test_rejection_in_one_group_dominates(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    workflow.process_approval_step(world.alice.id, req.id, REJECTED)
    workflow.process_approval_step(world.dave.id, req.id, APPROVED)
    req = workflow.process_approval_step(world.bob.id, req.id, APPROVED)

    chains = _by_group(req)
    assert chains[world.g1.id].status == "REJECTED"
    assert chains[world.g2.id].status == "APPROVED"
    assert request_status(req) == ApprovalStatus.REJECTED


def test_shared_approver_decides_every_group_at_once(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    workflow.process_approval_step(world.dave.id, req.id, APPROVED)
    req = workflow.process_approval_step(world.bob.id, req.id, APPROVED)
    assert {a.status for a in req.approvals} == {"APPROVED"}
    assert request_status(req) == ApprovalStatus.APPROVED


def test_group_id_narrows_a_shared_approver(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    workflow.process_approval_step(world.dave.id, req.id, APPROVED)
    req = workflow.process_approval_step(world.bob.id, req.id, APPROVED, group_id=world.g2.id)
    chains = _by_group(req)
    assert chains[world.g2.id].status == "APPROVED"
    assert chains[world.g1.id].status == "PENDING"
    assert chains[world.g1.id].current_step_index == 1


def test_groups_progress_independently(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    req = workflow.process_approval_step(world.dave.id, req.id, APPROVED)
    chains = _by_group(req)
    assert chains[world.g2.id].current_step_index == 1
    assert chains[world.g1.id].current_step_index == 0


def test_approver_is_frozen_at_creation(workflow, world, od_request, db):
    req = workflow.create_request(world.u1.id, od_request())
    group_approver.assign_approver(db, world.g1.id, world.t_dave.id, Role.TUTOR)
    with pytest.raises(NoPendingStepError):
        workflow.process_approval_step(world.dave.id, req.id, APPROVED)
    req = workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    assert req.approvals[0].current_step_index == 1


def test_decision_must_be_terminal_value(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request())
    with pytest.raises(ValidationError):
        workflow.process_approval_step(world.alice.id, req.id, ApprovalStatus.PENDING)


def test_unknown_request(workflow, world):
    with pytest.raises(NotFoundError):
        workflow.process_approval_step(world.alice.id, 12345, APPROVED)


def test_transition_notifications(workflow, world, od_request, recorder):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    assert [n.recipients for n in recorder.of_type("pending_approval")] == [[world.bob.id]]
    assert "Alice" in recorder.of_type("pending_approval")[0].body

    workflow.process_approval_step(world.dave.id, req.id, REJECTED)
    rejected = recorder.of_type("rejected")
    assert len(rejected) == 1
    # G2's student plus the requester from G1
    assert rejected[0].recipients == [world.u2.id, world.u1.id]
    assert "CSE-B" in rejected[0].body

    workflow.process_approval_step(world.bob.id, req.id, APPROVED)
    approved = recorder.of_type("approved")
    assert [n.recipients for n in approved] == [[world.u1.id]]


def test_audit_rows_follow_transitions(workflow, world, od_request, db):
    req = workflow.create_request(world.u1.id, od_request())
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    workflow.process_approval_step(world.bob.id, req.id, APPROVED)
    actions = [r.action for r in db.query(AuditLog).order_by(AuditLog.id).all()]
    assert actions == ["REQUEST_CREATED", "STEP_DECIDED", "STEP_DECIDED", "APPROVAL_COMPLETED"]


# --- concurrent decisions ----------------------------------------------

def _stale_current_step(monkeypatch, step):
    """Make the engine see `step` as the PENDING current step, as a racing caller would."""
    snapshot = SimpleNamespace(id=step.id, sequence=step.sequence, user_id=step.user_id,
                               role=step.role, status="PENDING")
    approval_id = step.approval_id
    monkeypatch.setattr(Approval, "current_step",
                        property(lambda self: snapshot if self.id == approval_id else None))


def _step_decided_rows(db):
    return db.query(AuditLog).filter(AuditLog.action == "STEP_DECIDED").count()


def test_losing_a_race_on_the_same_step(workflow, world, od_request, db, recorder, monkeypatch):
    req = workflow.create_request(world.u1.id, od_request())
    tutor_step = req.approvals[0].steps[0]
    _stale_current_step(monkeypatch, tutor_step)
    workflow.process_approval_step(world.alice.id, req.id, APPROVED, "first")
    sent = len(recorder.sent)

    # the second caller still reads the tutor step as pending; the guarded UPDATE matches no row
    with pytest.raises(NoPendingStepError):
        workflow.process_approval_step(world.alice.id, req.id, REJECTED, "second")

    db.expire_all()
    a = db.get(Request, req.id).approvals[0]
    assert a.status == "PENDING"
    assert a.current_step_index == 1
    assert (a.steps[0].status, a.steps[0].comments) == ("APPROVED", "first")
    assert _step_decided_rows(db) == 1
    assert len(recorder.sent) == sent


def test_approval_moved_underneath_a_decision(workflow, world, od_request, db, recorder, monkeypatch):
    req = workflow.create_request(world.u1.id, od_request())
    hod_step = req.approvals[0].steps[1]
    _stale_current_step(monkeypatch, hod_step)

    # the step row is still pending but the approval is not on that index; nothing may stick
    with pytest.raises(NoPendingStepError):
        workflow.process_approval_step(world.bob.id, req.id, APPROVED)

    db.expire_all()
    a = db.get(Request, req.id).approvals[0]
    assert a.current_step_index == 0
    assert [s.status for s in a.steps] == ["PENDING", "PENDING"]
    assert a.steps[1].approved_at is None
    assert _step_decided_rows(db) == 0
    assert recorder.of_type("approved") == []


# --- requester actions ----------------------------------------------------

def test_cancel_pending_request(workflow, world, od_request, db, recorder):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    workflow.process_approval_step(world.alice.id, req.id, APPROVED)
    workflow.cancel_request(world.u1.id, req.id)

    assert _counts(db) == (0, 0, 0, 0)
    cancelled = recorder.of_type("cancelled")
    assert sorted(cancelled[0].recipients) == sorted([world.bob.id, world.dave.id])
    assert db.query(AuditLog).filter(AuditLog.action == "REQUEST_CANCELLED").count() == 1


def test_only_requester_cancels(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s3.id]))
    with pytest.raises(ForbiddenError):
        workflow.cancel_request(world.u3.id, req.id)


def test_decided_request_cannot_be_cancelled(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request())
    workflow.process_approval_step(world.alice.id, req.id, REJECTED)
    with pytest.raises(ValidationError, match="Only pending requests"):
        workflow.cancel_request(world.u1.id, req.id)


def test_cancel_unknown_request(workflow, world):
    with pytest.raises(NotFoundError):
        workflow.cancel_request(world.u1.id, 404)


def test_attach_proof(workflow, world, od_request):
    req = workflow.create_request(world.u1.id, od_request(student_ids=[world.s1.id, world.s2.id]))
    req = workflow.attach_proof(world.u2.id, req.id, "https://files.example.edu/od/cert.pdf")
    assert req.proof_of_od == "https://files.example.edu/od/cert.pdf"

    with pytest.raises(ForbiddenError):
        workflow.attach_proof(world.u3.id, req.id, "https://files.example.edu/other.pdf")
    with pytest.raises(ValidationError):
        workflow.attach_proof(world.u1.id, req.id, "  ")


def test_leave_request_without_category(workflow, world, od_request):
    req = workflow.create_request(
        world.u3.id,
        od_request(type=RequestType.LEAVE, category=None, reason="Fever",
                   end_date=datetime(2026, 11, 3, 9, 0) + timedelta(days=2)),
    )
    assert req.type == "LEAVE"
    assert req.category is None
