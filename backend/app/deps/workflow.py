from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.notifications import BackgroundNotifier
from app.services.workflow import ApprovalWorkflow

def get_workflow(request: Request, background_tasks: BackgroundTasks,
                 db: Session = Depends(get_db)) -> ApprovalWorkflow:
    """Engine bound to this call's session; pushes go out after the response."""
    notifier = getattr(request.app.state, "notifier", None)
    deferred = BackgroundNotifier(background_tasks, notifier) if notifier is not None else None
    return ApprovalWorkflow(db, notifier=deferred)
