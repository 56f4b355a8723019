from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime
from app.core.database import Base

class AuditLog(Base):
    __tablename__ = "audit_log"
    id = Column(Integer, primary_key=True)
    action = Column(String(128), index=True)             # e.g., REQUEST_CREATED, STEP_DECIDED, REQUEST_CANCELLED
    request_id = Column(Integer, index=True, nullable=True)   # no FK: rows outlive cancelled requests
    actor_id = Column(Integer, nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
