from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from app.core.database import Base
from app.models.enums import ApprovalStatus

class Request(Base):
    """An OD/leave request. Its status is never stored; see app.services.status."""
    __tablename__ = "requests"
    __table_args__ = (CheckConstraint("end_date >= start_date", name="ck_requests_date_order"),)
    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(16), nullable=False)                 # "OD" | "LEAVE"
    category = Column(String(32), nullable=True)              # ODCategory, OD only
    needs_lab = Column(Boolean, default=False, nullable=False)
    reason = Column(String(1000), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    lab_id = Column(Integer, ForeignKey("labs.id"), nullable=True)
    requested_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    flow_template_id = Column(Integer, ForeignKey("flow_templates.id"), nullable=False, index=True)
    proof_of_od = Column(String(1024), nullable=True)         # URL of the uploaded proof
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    requested_by = relationship("User")
    lab = relationship("Lab")
    flow_template = relationship("FlowTemplate")
    students = relationship("RequestStudent", back_populates="request", cascade="all, delete-orphan")
    approvals = relationship(
        "Approval",
        back_populates="request",
        order_by="Approval.id",
        cascade="all, delete-orphan",
    )

class RequestStudent(Base):
    __tablename__ = "request_students"
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), primary_key=True)
    student_id = Column(Integer, ForeignKey("students.id"), primary_key=True, index=True)

    request = relationship("Request", back_populates="students")
    student = relationship("Student")

class Approval(Base):
    """One group's approval chain for one request."""
    __tablename__ = "approvals"
    __table_args__ = (UniqueConstraint("request_id", "group_id", name="uq_approvals_request_group"),)
    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    current_step_index = Column(Integer, default=0, nullable=False)   # == len(steps) once approved
    status = Column(String(16), default=ApprovalStatus.PENDING.value, nullable=False)

    request = relationship("Request", back_populates="approvals")
    group = relationship("Group")
    steps = relationship(
        "ApprovalStep",
        back_populates="approval",
        order_by="ApprovalStep.sequence",
        cascade="all, delete-orphan",
    )

    @property
    def current_step(self):
        for step in self.steps:
            if step.sequence == self.current_step_index:
                return step
        return None

class ApprovalStep(Base):
    __tablename__ = "approval_steps"
    __table_args__ = (UniqueConstraint("approval_id", "sequence", name="uq_approval_steps_approval_sequence"),)
    id = Column(Integer, primary_key=True, index=True)
    approval_id = Column(Integer, ForeignKey("approvals.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    role = Column(String(32), nullable=False)                 # copied from the flow step
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)   # frozen at creation
    status = Column(String(16), default=ApprovalStatus.PENDING.value, nullable=False)
    comments = Column(Text, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    approval = relationship("Approval", back_populates="steps")
    user = relationship("User")
