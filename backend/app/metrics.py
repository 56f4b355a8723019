# backend/app/metrics.py
from prometheus_client import Counter, Histogram

# === Core metrics (definitions ONLY here) ===
requests_created_total = Counter(
    "od_requests_created_total", "OD/leave requests created", ["type"]
)

approval_chains_created_total = Counter(
    "approval_chains_created_total", "Per-group approval chains instantiated"
)

step_decisions_total = Counter(
    "approval_step_decisions_total", "Approval step decisions", ["decision"]
)

approvals_completed_total = Counter(
    "approvals_completed_total", "Approval chains that reached a terminal status", ["status"]
)

no_pending_step_total = Counter(
    "approval_no_pending_step_total", "Decisions refused because no step was pending for the caller"
)

requests_cancelled_total = Counter(
    "od_requests_cancelled_total", "Requests cancelled by their requester"
)

notifications_total = Counter(
    "notifications_total", "Push notification attempts", ["outcome"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds", "Request latency"
)

def init_metrics_zero():
    # create label combos at 0 so Grafana never sees “no data”
    for t in ("OD", "LEAVE"):
        requests_created_total.labels(type=t).inc(0)
    for d in ("APPROVED", "REJECTED"):
        step_decisions_total.labels(decision=d).inc(0)
        approvals_completed_total.labels(status=d).inc(0)
    for o in ("sent", "skipped", "failed"):
        notifications_total.labels(outcome=o).inc(0)

    # unlabeled counters – make them visible
    approval_chains_created_total.inc(0)
    no_pending_step_total.inc(0)
    requests_cancelled_total.inc(0)
