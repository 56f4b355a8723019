from __future__ import annotations
from typing import List, Optional, Sequence
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from app.models.enums import Role
from app.models.flow import FlowTemplate, FlowStep
from app.models.request import Request


def create_template(db: Session, name: str, roles: Optional[Sequence[Role]] = None) -> FlowTemplate:
    """Create a named template, optionally seeding its steps in the given order."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Flow template name is required")
    if get_template_by_name(db, name):
        raise ValidationError(f"Flow template '{name}' already exists")
    t = FlowTemplate(name=name)
    for seq, role in enumerate(roles or []):
        t.steps.append(FlowStep(sequence=seq, role=Role(role).value))
    db.add(t); db.commit(); db.refresh(t)
    return t

def list_templates(db: Session) -> List[FlowTemplate]:
    return db.query(FlowTemplate).order_by(FlowTemplate.name.asc()).all()

def get_template(db: Session, template_id: int) -> FlowTemplate:
    t = db.get(FlowTemplate, template_id)
    if not t:
        raise NotFoundError(f"Flow template {template_id} not found")
    return t

def get_template_by_name(db: Session, name: str) -> Optional[FlowTemplate]:
    return db.query(FlowTemplate).filter(FlowTemplate.name == name).first()

def is_referenced(db: Session, template_id: int) -> bool:
    return db.query(Request.id).filter(Request.flow_template_id == template_id).first() is not None

def delete_template(db: Session, template_id: int) -> None:
    t = get_template(db, template_id)
    if is_referenced(db, template_id):
        raise ValidationError("Flow template is referenced by existing requests")
    db.delete(t); db.commit()

def add_step(db: Session, template_id: int, role: Role, sequence: Optional[int] = None) -> FlowStep:
    t = get_template(db, template_id)
    top = db.query(func.max(FlowStep.sequence)).filter(FlowStep.flow_template_id == t.id).scalar()
    next_seq = 0 if top is None else top + 1
    if sequence is None:
        sequence = next_seq
    if sequence < 0:
        raise ValidationError("Sequence must be >= 0")
    if sequence > next_seq:
        raise ValidationError(f"Sequence must be contiguous; next free sequence is {next_seq}")
    existing = (
        db.query(FlowStep)
        .filter(FlowStep.flow_template_id == t.id, FlowStep.sequence == sequence)
        .first()
    )
    if existing:
        raise ValidationError("Sequence number must be unique within the flow template")
    step = FlowStep(flow_template_id=t.id, sequence=sequence, role=Role(role).value)
    db.add(step); db.commit(); db.refresh(step)
    return step

def delete_step(db: Session, template_id: int, step_id: int) -> None:
    """Remove a step of `template_id` and close the gap so sequences stay 0..n-1."""
    get_template(db, template_id)
    step = db.get(FlowStep, step_id)
    if not step or step.flow_template_id != template_id:
        raise NotFoundError(f"Flow step {step_id} not found in flow template {template_id}")
    if is_referenced(db, template_id):
        raise ValidationError("Flow template is referenced by existing requests")
    removed = step.sequence
    db.delete(step)
    db.flush()
    later = (
        db.query(FlowStep)
        .filter(FlowStep.flow_template_id == template_id, FlowStep.sequence > removed)
        .order_by(FlowStep.sequence.asc())
        .all()
    )
    for s in later:
        s.sequence -= 1
        db.flush()
    db.commit()

def get_template_steps(db: Session, template_id: int) -> List[FlowStep]:
    """Ordered steps of a template, checked to be usable for a new approval chain."""
    t = get_template(db, template_id)
    steps = sorted(t.steps, key=lambda s: s.sequence)
    if not steps:
        raise ConfigurationError(
            f"Flow template '{t.name}' has no steps",
            {"flow_template_id": t.id},
        )
    if [s.sequence for s in steps] != list(range(len(steps))):
        raise ConfigurationError(
            f"Flow template '{t.name}' steps must be numbered 0..{len(steps) - 1}",
            {"flow_template_id": t.id, "sequences": [s.sequence for s in steps]},
        )
    return steps
