"""
Notification dispatch for the approval workflow.

The workflow engine only builds `Notification` messages and hands them to a
notifier after its transaction committed. Delivery is best effort: every
failure is logged and swallowed so a flaky push provider never affects
request or approval state.
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Protocol

import requests
from sqlalchemy.orm import Session

from app.metrics import notifications_total
from app.models.directory import User
from app.utils.runtime_config import get_push_url, push_enabled

logger = logging.getLogger(__name__)

PUSH_TIMEOUT_SEC = float(os.getenv("PUSH_TIMEOUT_SEC", "10"))


@dataclass
class Notification:
    recipients: List[int]                 # user ids
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


def dispatch(notifier: Notifier | None, notifications: Iterable[Notification]) -> None:
    """Hand each message to the notifier; never raises."""
    if notifier is None:
        return
    for n in notifications:
        if not n.recipients:
            continue
        try:
            notifier.send(n)
        except Exception:
            notifications_total.labels(outcome="failed").inc()
            logger.exception("[notify] dispatch failed for %s -> %s", n.data.get("type"), n.recipients)


class PushNotifier:
    """Sends Expo push messages to the recipients' registered device tokens."""

    def __init__(self, session_factory: Callable[[], Session], timeout: float = PUSH_TIMEOUT_SEC):
        self.session_factory = session_factory
        self.timeout = timeout

    def _tokens(self, user_ids: List[int]) -> Dict[int, str]:
        db = self.session_factory()
        try:
            rows = db.query(User.id, User.push_token).filter(User.id.in_(user_ids)).all()
        finally:
            db.close()
        return {uid: tok for uid, tok in rows if tok}

    def send(self, notification: Notification) -> None:
        if not push_enabled():
            logger.info("[notify] push disabled; skipping '%s'", notification.title)
            notifications_total.labels(outcome="skipped").inc(len(notification.recipients))
            return
        tokens = self._tokens(list(notification.recipients))
        for uid in notification.recipients:
            token = tokens.get(uid)
            if not token:
                logger.info("[notify] user %s has no push token; skipping", uid)
                notifications_total.labels(outcome="skipped").inc()
                continue
            ok = self._push(token, notification)
            notifications_total.labels(outcome="sent" if ok else "failed").inc()

    def _push(self, token: str, n: Notification) -> bool:
        message = {"to": token, "sound": "default", "title": n.title, "body": n.body, "data": n.data}
        try:
            r = requests.post(
                get_push_url(),
                json=message,
                headers={"Accept": "application/json", "Accept-encoding": "gzip, deflate"},
                timeout=self.timeout,
            )
            if r.status_code >= 300:
                logger.warning("[notify] push HTTP %s: %s", r.status_code, r.text[:300])
                return False
            data = (r.json() or {}).get("data") or {}
            if isinstance(data, dict) and data.get("status") == "error":
                logger.warning("[notify] push service error: %s", data.get("message"))
                return False
            return True
        except (requests.RequestException, ValueError) as e:
            logger.warning("[notify] push send error: %s", e)
            return False


class BackgroundNotifier:
    """Defers sends to FastAPI background tasks so they run after the response."""

    def __init__(self, background_tasks, inner: Notifier):
        self.background_tasks = background_tasks
        self.inner = inner

    def send(self, notification: Notification) -> None:
        self.background_tasks.add_task(dispatch, self.inner, [notification])


# --- message builders ---

def new_request_message(request_id: int, requester_name: str | None, approver_id: int) -> Notification:
    return Notification(
        recipients=[approver_id],
        title="New OD Request",
        body=f"{requester_name or 'A student'} submitted a new OD request that needs your approval",
        data={"requestId": request_id, "type": "new_request"},
    )

def awaiting_approval_message(request_id: int, previous_approver: str | None, approver_id: int) -> Notification:
    return Notification(
        recipients=[approver_id],
        title="OD Request Awaiting Approval",
        body=f"An OD request approved by {previous_approver or 'a previous approver'} now requires your review",
        data={"requestId": request_id, "type": "pending_approval"},
    )

def final_decision_message(request_id: int, group_name: str | None, approved: bool,
                           recipients: List[int]) -> Notification:
    where = f" for {group_name}" if group_name else ""
    return Notification(
        recipients=recipients,
        title="OD Request Approved" if approved else "OD Request Rejected",
        body=(f"Your OD request has been fully approved{where}" if approved
              else f"Your OD request was rejected{where}"),
        data={"requestId": request_id, "type": "approved" if approved else "rejected"},
    )

def cancelled_message(request_id: int, recipients: List[int]) -> Notification:
    return Notification(
        recipients=recipients,
        title="OD Request Cancelled",
        body="An OD request awaiting your approval was cancelled by the student",
        data={"requestId": request_id, "type": "cancelled"},
    )
