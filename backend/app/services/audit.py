from __future__ import annotations
import logging
from typing import Optional, Dict, Any, Iterable
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.utils.audit_sink import write_event

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    action: str,
    request_id: Optional[int],
    actor_id: Optional[int],
    details: Dict[str, Any],
    commit: bool = True,
) -> AuditLog:
    """
    Persist audit to DB and mirror to filesystem as JSONL.

    With commit=False the row only joins the caller's transaction; the caller
    mirrors it with mirror_audit() once its own commit went through.
    """
    row = AuditLog(action=action, request_id=request_id, actor_id=actor_id, details=details)
    db.add(row)
    if not commit:
        db.flush()
        return row
    db.commit()
    db.refresh(row)
    mirror_audit([row])
    return row


def mirror_audit(rows: Iterable[AuditLog]) -> None:
    for row in rows:
        try:
            write_event({
                "id": row.id,
                "action": row.action,
                "request_id": row.request_id,
                "actor_id": row.actor_id,
                "details": row.details or {},
                "created_at": row.created_at.isoformat() if row.created_at else datetime.utcnow().isoformat(),
            })
        except OSError as e:
            # the DB row is authoritative
            logger.warning("[audit] JSONL mirror failed for %s: %s", row.action, e)


def list_audit(db: Session, request_id: int, limit: int = 100) -> list[AuditLog]:
    return (
        db.query(AuditLog)
        .filter(AuditLog.request_id == request_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
