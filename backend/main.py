from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from sqlalchemy import text, inspect
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
import logging, time, uvicorn

# Import our modules
from app.core.logging import setup_logging
from app.core.database import get_db, engine, Base, SessionLocal
from app.core.exceptions import WorkflowError
from app import models  # noqa: F401  registers every table on Base
from app.api import requests as requests_api, flows as flows_api, group_approvers as approvers_api, users as users_api
from app.deps.auth import require_role
from app.metrics import init_metrics_zero, request_latency_seconds
from app.models.enums import UserRole
from app.services.notifications import PushNotifier
from app.utils.runtime_config import get_push_url, push_enabled, set_push_config

setup_logging()
logger = logging.getLogger(__name__)

APP_VERSION = "0.3.0"

logger.info("Database engine: %s (%s)", engine.url.render_as_string(hide_password=True), engine.name)

# FastAPI app
app = FastAPI(
    title="OD Request Workflow API",
    description="OD/leave requests with per-group sequential approval chains",
    version=APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

# push delivery; tests swap this for a recording notifier
app.state.notifier = PushNotifier(SessionLocal)

app.include_router(requests_api.router)
app.include_router(flows_api.router)
app.include_router(approvers_api.router)
app.include_router(users_api.router)

@app.on_event("startup")
def on_startup():
    logger.info("Creating tables on startup...")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("Error creating tables")
        raise
    logger.info("Tables now: %s", inspect(engine).get_table_names())
    init_metrics_zero()

@app.middleware("http")
async def time_requests(request: Request, call_next):
    start = time.perf_counter()
    try:
        return await call_next(request)
    finally:
        request_latency_seconds.observe(time.perf_counter() - start)

@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code.value, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        # Test database connection
        db.execute(text("SELECT 1"))
        tables = inspect(engine).get_table_names()
        return {
            "status": "healthy",
            "database": "connected",
            "tables": tables,
            "timestamp": datetime.now()
        }
    except Exception as e:
        logger.warning("health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now()
        }

@app.get("/public/healthz", include_in_schema=False)
def public_healthz(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception:
        return Response(content='{"status":"error"}', media_type="application/json", status_code=503)

@app.get("/public/version", include_in_schema=False)
def public_version():
    return {"name": "od-workflow-api", "version": APP_VERSION}

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

class PushConfigIn(BaseModel):
    enabled: Optional[bool] = None
    url: Optional[str] = None

@app.post("/config/push", response_model=dict)
def api_set_push_config(body: PushConfigIn, user=Depends(require_role(UserRole.ADMIN))):
    if body.url is not None and not body.url.strip().startswith("https://"):
        raise HTTPException(status_code=400, detail="Push URL must be https")
    set_push_config(enabled=body.enabled, url=body.url)
    return {"saved": True, "enabled": push_enabled(), "url": get_push_url()}

@app.get("/config/push", response_model=dict)
def api_get_push_config(user=Depends(require_role(UserRole.ADMIN))):
    return {"enabled": push_enabled(), "url": get_push_url()}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
