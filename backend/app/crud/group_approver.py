from __future__ import annotations
from typing import List, Optional
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.directory import Group, GroupApprover, Teacher
from app.models.enums import Role


def assign_approver(db: Session, group_id: int, teacher_id: int, role: Role) -> GroupApprover:
    """Map (group, role) to a teacher; an existing mapping for the pair is replaced."""
    if not db.get(Group, group_id):
        raise NotFoundError(f"Group {group_id} not found")
    if not db.get(Teacher, teacher_id):
        raise NotFoundError(f"Teacher {teacher_id} not found")
    role = Role(role).value
    ga = (
        db.query(GroupApprover)
        .filter(GroupApprover.group_id == group_id, GroupApprover.role == role)
        .first()
    )
    if ga:
        ga.teacher_id = teacher_id
    else:
        ga = GroupApprover(group_id=group_id, teacher_id=teacher_id, role=role)
        db.add(ga)
    db.commit(); db.refresh(ga)
    return ga

def list_by_group(db: Session, group_id: int) -> List[GroupApprover]:
    return (
        db.query(GroupApprover)
        .filter(GroupApprover.group_id == group_id)
        .order_by(GroupApprover.role.asc())
        .all()
    )

def list_all(db: Session) -> List[GroupApprover]:
    return (
        db.query(GroupApprover)
        .order_by(GroupApprover.group_id.asc(), GroupApprover.role.asc())
        .all()
    )

def list_by_teacher(db: Session, teacher_id: int) -> List[GroupApprover]:
    return db.query(GroupApprover).filter(GroupApprover.teacher_id == teacher_id).all()

def remove_approver(db: Session, approver_id: int) -> None:
    ga = db.get(GroupApprover, approver_id)
    if not ga:
        raise NotFoundError(f"Group approver {approver_id} not found")
    db.delete(ga); db.commit()

def resolve_approver(db: Session, group_id: int, role: Role) -> Optional[int]:
    """User id of the teacher holding `role` for `group_id`, or None."""
    row = (
        db.query(Teacher.user_id)
        .join(GroupApprover, GroupApprover.teacher_id == Teacher.id)
        .filter(GroupApprover.group_id == group_id, GroupApprover.role == Role(role).value)
        .first()
    )
    return row[0] if row else None

def groups_for_teacher_user(db: Session, user_id: int) -> List[int]:
    rows = (
        db.query(GroupApprover.group_id)
        .join(Teacher, GroupApprover.teacher_id == Teacher.id)
        .filter(Teacher.user_id == user_id)
        .distinct()
        .all()
    )
    return [r[0] for r in rows]
