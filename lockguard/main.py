import logging
import secrets

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from lockguard import db
from lockguard.config import load_config
from lockguard.engine import get_engine, init_engine
from lockguard.errors import EngineCorrupted, InvalidIdentifier
from lockguard.models import (
    AttemptView,
    AuditEvent,
    LockedAccountView,
    LockoutStats,
    LockStatus,
    LoginCheckRequest,
    LoginResultRequest,
    UnlockRequest,
    UnlockResponse,
)

config = load_config("config.json")
logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Login Lockout Engine")

# also starts the sweeper when enable_sweeper is set
init_engine(config)


@app.on_event("shutdown")
def shutdown():
    get_engine().close()


@app.exception_handler(InvalidIdentifier)
def invalid_identifier_handler(request: Request, exc: InvalidIdentifier):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(EngineCorrupted)
def engine_corrupted_handler(request: Request, exc: EngineCorrupted):
    logger.critical("lockout engine unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "lockout engine unavailable"})


def _require_admin(token: str):
    if not token or not secrets.compare_digest(token, config.admin_token):
        raise HTTPException(status_code=403, detail="invalid admin token")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/login/check", response_model=LockStatus)
def login_check(req: LoginCheckRequest):
    engine = get_engine()
    return engine.check_and_consume(engine.identifier_for(req.ip, req.username))


@app.post("/login/result", response_model=LockStatus)
def login_result(req: LoginResultRequest):
    engine = get_engine()
    identifier = engine.identifier_for(req.ip, req.username)
    if req.success:
        engine.record_success(identifier)
        return engine.check_and_consume(identifier)
    return engine.record_failure(identifier, req.username)


@app.get("/admin/lockouts/stats", response_model=LockoutStats)
def admin_stats(x_admin_token: str = Header(default="")):
    _require_admin(x_admin_token)
    return get_engine().stats()


@app.get("/admin/lockouts/locked", response_model=list[LockedAccountView])
def admin_locked(x_admin_token: str = Header(default="")):
    _require_admin(x_admin_token)
    return get_engine().list_locked()


@app.get("/admin/lockouts/attempts", response_model=list[AttemptView])
def admin_attempts(x_admin_token: str = Header(default="")):
    _require_admin(x_admin_token)
    return get_engine().list_all()


@app.post("/admin/lockouts/unlock", response_model=UnlockResponse)
def admin_unlock(req: UnlockRequest, x_admin_token: str = Header(default="")):
    _require_admin(x_admin_token)
    was_locked = get_engine().unlock(req.identifier, actor=req.actor)
    return UnlockResponse(identifier=req.identifier.strip(), was_locked=was_locked)


@app.get("/admin/lockouts/audit", response_model=list[AuditEvent])
def admin_audit(
    limit: int = Query(default=100, ge=1, le=1000),
    identifier: str | None = None,
    x_admin_token: str = Header(default=""),
):
    _require_admin(x_admin_token)
    if db.SessionLocal is None:
        raise HTTPException(status_code=404, detail="audit database not configured")
    return db.recent_events(limit, identifier)
