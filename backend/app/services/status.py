from __future__ import annotations
from typing import Iterable

from app.models.enums import ApprovalStatus


def derive_request_status(approval_statuses: Iterable[str]) -> ApprovalStatus:
    """A request's status is never stored; it is folded from its approvals."""
    # any rejection dominates; approval needs every member approved
    values = [ApprovalStatus(s) for s in approval_statuses]
    if ApprovalStatus.REJECTED in values:
        return ApprovalStatus.REJECTED
    if values and all(v == ApprovalStatus.APPROVED for v in values):
        return ApprovalStatus.APPROVED
    return ApprovalStatus.PENDING


def request_status(request) -> ApprovalStatus:
    return derive_request_status(a.status for a in request.approvals)
