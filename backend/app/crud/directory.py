from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.directory import User, Department, Group, Student, Teacher, Lab
from app.models.enums import UserRole

# Thin creation helpers; full department/teacher/student/lab management is
# handled by the admin tooling, not this service.

def create_user(db: Session, email: str, name: Optional[str] = None,
                role: UserRole = UserRole.STUDENT, push_token: Optional[str] = None) -> User:
    u = User(email=email, name=name, role=UserRole(role).value, push_token=push_token)
    db.add(u); db.commit(); db.refresh(u)
    return u

def create_department(db: Session, name: str) -> Department:
    d = Department(name=name)
    db.add(d); db.commit(); db.refresh(d)
    return d

def create_group(db: Session, name: str, section: Optional[str] = None,
                 batch: Optional[str] = None, department_id: Optional[int] = None) -> Group:
    g = Group(name=name, section=section, batch=batch, department_id=department_id)
    db.add(g); db.commit(); db.refresh(g)
    return g

def create_student(db: Session, user_id: int, group_id: int, roll_no: str) -> Student:
    s = Student(user_id=user_id, group_id=group_id, roll_no=roll_no)
    db.add(s); db.commit(); db.refresh(s)
    return s

def create_teacher(db: Session, user_id: int, department_id: Optional[int] = None) -> Teacher:
    t = Teacher(user_id=user_id, department_id=department_id)
    db.add(t); db.commit(); db.refresh(t)
    return t

def create_lab(db: Session, name: str, department_id: Optional[int] = None) -> Lab:
    lab = Lab(name=name, department_id=department_id)
    db.add(lab); db.commit(); db.refresh(lab)
    return lab

def get_student_by_user(db: Session, user_id: int) -> Optional[Student]:
    return db.query(Student).filter(Student.user_id == user_id).first()

def set_push_token(db: Session, user_id: int, token: Optional[str]) -> User:
    u = db.get(User, user_id)
    if not u:
        raise NotFoundError(f"User {user_id} not found")
    u.push_token = (token or "").strip() or None
    db.commit(); db.refresh(u)
    return u
