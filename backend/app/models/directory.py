from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from app.core.database import Base
from app.models.enums import UserRole

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(String(16), default=UserRole.STUDENT.value, nullable=False)   # STUDENT | TEACHER | ADMIN
    push_token = Column(String(255), nullable=True)                           # Expo push token
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class Department(Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)

class Group(Base):
    __tablename__ = "groups"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    section = Column(String(32), nullable=True)
    batch = Column(String(32), nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)

    students = relationship("Student", back_populates="group")
    approvers = relationship("GroupApprover", back_populates="group", cascade="all, delete-orphan")

class Student(Base):
    __tablename__ = "students"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    roll_no = Column(String(64), unique=True, nullable=False)

    user = relationship("User")
    group = relationship("Group", back_populates="students")

class Teacher(Base):
    __tablename__ = "teachers"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)

    user = relationship("User")

class Lab(Base):
    __tablename__ = "labs"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)

class GroupApprover(Base):
    __tablename__ = "group_approvers"
    __table_args__ = (UniqueConstraint("group_id", "role", name="uq_group_approvers_group_role"),)
    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False, index=True)
    role = Column(String(32), nullable=False)            # Role enum value

    group = relationship("Group", back_populates="approvers")
    teacher = relationship("Teacher")
