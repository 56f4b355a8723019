from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from app.core.database import Base

class FlowTemplate(Base):
    __tablename__ = "flow_templates"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, index=True, nullable=False)   # e.g. LabFlow, NoLabFlow
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    steps = relationship(
        "FlowStep",
        back_populates="flow_template",
        order_by="FlowStep.sequence",
        cascade="all, delete-orphan",
    )

class FlowStep(Base):
    __tablename__ = "flow_steps"
    __table_args__ = (UniqueConstraint("flow_template_id", "sequence", name="uq_flow_steps_template_sequence"),)
    id = Column(Integer, primary_key=True, index=True)
    flow_template_id = Column(Integer, ForeignKey("flow_templates.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)            # 0-based, contiguous
    role = Column(String(32), nullable=False)             # Role enum value

    flow_template = relationship("FlowTemplate", back_populates="steps")
