import csv
import io
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from io import BytesIO
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from . import approvals, store
from .ai_model import ModelClient
from .auth import claim_org_id, highest_role, optional_jwt_claims, resolve_org_id, role_required
from .catalog import (
    THEME_LABELS,
    ControlTheme,
    ImplementationStatus,
    completion_percentage,
    control_stats,
)
from .db import engine, init_db, seed_controls_if_empty
from .errors import (
    BadRequestError,
    IntakeValidationError,
    ISMSError,
    PersistenceError,
    UpstreamGenerationError,
)
from .intake_agent import DraftScope, generate_draft_scope, require_valid_responses
from .logging_config import log_event
from .questionnaire import INTAKE_QUESTIONS, QUESTION_CATEGORIES, calculate_progress
from .risk_matrix import RISK_MATRIX, RiskLevel
from .seeder import seed_starter_data


# --- Schemas ---
class AssetType(str, Enum):
    hardware = "hardware"
    software = "software"
    data = "data"
    service = "service"
    people = "people"


class Criticality(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class Treatment(str, Enum):
    accept = "accept"
    mitigate = "mitigate"
    transfer = "transfer"
    avoid = "avoid"


class RiskStatus(str, Enum):
    draft = "draft"
    approved = "approved"


class StageAcceptable(str, Enum):
    stage_1 = "stage_1"
    stage_2 = "stage_2"
    both = "both"


class AssetCreate(BaseModel):
    name: str = Field(min_length=1)
    asset_type: AssetType
    description: Optional[str] = None
    owner_id: Optional[str] = None
    criticality: Criticality = Criticality.medium
    in_scope: bool = True


class AssetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    asset_type: Optional[AssetType] = None
    description: Optional[str] = None
    owner_id: Optional[str] = None
    criticality: Optional[Criticality] = None
    in_scope: Optional[bool] = None


class Asset(BaseModel):
    id: str
    organization_id: str
    name: str
    asset_type: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    criticality: str
    in_scope: bool
    created_at: str
    updated_at: str


class RiskCreate(BaseModel):
    asset_id: Optional[str] = None
    threat: str = Field(min_length=1)
    vulnerability: Optional[str] = None
    impact: RiskLevel = RiskLevel.medium
    likelihood: RiskLevel = RiskLevel.medium
    treatment: Treatment = Treatment.mitigate
    treatment_plan: Optional[str] = None
    owner_id: Optional[str] = None


class RiskUpdate(BaseModel):
    asset_id: Optional[str] = None
    threat: Optional[str] = Field(default=None, min_length=1)
    vulnerability: Optional[str] = None
    impact: Optional[RiskLevel] = None
    likelihood: Optional[RiskLevel] = None
    treatment: Optional[Treatment] = None
    treatment_plan: Optional[str] = None
    owner_id: Optional[str] = None


class Risk(BaseModel):
    id: str
    organization_id: str
    asset_id: Optional[str] = None
    asset_name: Optional[str] = None
    threat: str
    vulnerability: Optional[str] = None
    impact: str
    likelihood: str
    risk_level: str
    treatment: str
    treatment_plan: Optional[str] = None
    status: str
    owner_id: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    created_at: str
    updated_at: str


class ApprovalIn(BaseModel):
    comment: Optional[str] = None


class Control(BaseModel):
    control_id: str
    name: str
    intent: Optional[str] = None
    theme: str
    applicable: bool
    justification: Optional[str] = None
    implementation_status: str


class ControlUpdate(BaseModel):
    applicable: Optional[bool] = None
    justification: Optional[str] = None
    implementation_status: Optional[ImplementationStatus] = None


class SoARecord(BaseModel):
    id: str
    organization_id: str
    control_id: str
    control_name: str
    control_intent: Optional[str] = None
    control_theme: str
    applicable: bool
    justification: Optional[str] = None
    implementation_status: str
    linked_risks: List[str] = []
    linked_evidence: List[str] = []
    locked_for_audit: bool
    locked_by: Optional[str] = None
    locked_at: Optional[str] = None
    created_at: str
    updated_at: str


class SoAUpdate(BaseModel):
    applicable: Optional[bool] = None
    justification: Optional[str] = None
    linked_risks: Optional[List[str]] = None
    linked_evidence: Optional[List[str]] = None


class EvidenceCreate(BaseModel):
    control_id: str
    title: str = Field(min_length=1)
    description: Optional[str] = None
    evidence_type: str = "other"
    evidence_url: str = Field(min_length=1)
    stage_acceptable: StageAcceptable = StageAcceptable.stage_2


class EvidenceUpdate(BaseModel):
    control_id: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    evidence_type: Optional[str] = None
    evidence_url: Optional[str] = Field(default=None, min_length=1)
    stage_acceptable: Optional[StageAcceptable] = None


class Evidence(BaseModel):
    id: str
    organization_id: str
    control_id: str
    title: str
    description: Optional[str] = None
    evidence_type: str
    evidence_url: str
    stage_acceptable: str
    uploaded_by: Optional[str] = None
    uploaded_at: str
    verified: bool = False
    created_at: str
    updated_at: str


class ApprovalLog(BaseModel):
    id: str
    organization_id: str
    object_type: str
    object_id: str
    action: str
    approved_by: Optional[str] = None
    approved_at: str
    comment: Optional[str] = None
    metadata: Dict[str, Any] = {}
    request_id: Optional[str] = None


class IntakeResponsesIn(BaseModel):
    responses: Dict[str, Any]


class GenerateScopeIn(BaseModel):
    responses: Dict[str, Any] = {}


class ApproveScopeIn(BaseModel):
    model_config = {"populate_by_name": True}

    draft_scope: Optional[DraftScope] = Field(default=None, alias="draftScope")
    comment: Optional[str] = None
    responses: Optional[Dict[str, Any]] = None


# --- App ---
def get_model_client(request: Request) -> ModelClient:
    return request.app.state.model_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    seed_controls_if_empty()
    # Configuration only; the API key is checked on first generation call
    app.state.model_client = ModelClient.from_env()
    yield


openapi_tags = [
    {"name": "Health", "description": "Service status and metrics"},
    {"name": "Intake", "description": "Context questionnaire and AI-drafted ISMS scope"},
    {"name": "Assets", "description": "Information asset register"},
    {"name": "Risks", "description": "Risk register and approvals"},
    {"name": "Controls", "description": "ISO 27001:2022 Annex A controls"},
    {"name": "SoA", "description": "Statement of Applicability"},
    {"name": "Evidence", "description": "Audit evidence links"},
    {"name": "Approvals", "description": "Approval audit trail"},
    {"name": "Reports", "description": "Dashboard and certification report data"},
    {"name": "Exports", "description": "CSV/XLSX exports"},
]

app = FastAPI(
    title="ISO 27001 ISMS API",
    version="0.1.0",
    description="API for ISO/IEC 27001:2022 readiness: intake, scope, assets, risks, Annex A controls, evidence and SoA.",
    lifespan=lifespan,
    openapi_tags=openapi_tags,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=(os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",") if os.getenv("CORS_ALLOWED_ORIGINS") else ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request ID + metrics middleware ---
if 'REQUEST_COUNT' not in globals():
    REQUEST_COUNT = Counter(
        "http_requests_total",
        "Total HTTP requests",
        labelnames=("method", "route", "status"),
    )
if 'ERROR_COUNT' not in globals():
    ERROR_COUNT = Counter(
        "http_requests_errors_total",
        "Total HTTP error responses",
        labelnames=("method", "route", "status"),
    )

# duration histogram (seconds) with per-route label
if 'REQUEST_DURATION' not in globals():
    REQUEST_DURATION = Histogram(
        "http_request_duration_seconds",
        "HTTP request duration in seconds",
        labelnames=("method", "route", "status"),
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    )


def _record(request: Request, status: int, duration_ms: float):
    route_label = getattr(request.scope.get("route"), "path", request.url.path)
    REQUEST_COUNT.labels(method=request.method, route=route_label, status=str(status)).inc()
    if status >= 400:
        ERROR_COUNT.labels(method=request.method, route=route_label, status=str(status)).inc()
    REQUEST_DURATION.labels(method=request.method, route=route_label, status=str(status)).observe(duration_ms / 1000.0)


@app.middleware("http")
async def add_request_id_and_collect_metrics(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    start = time.perf_counter()
    request.state.request_id = req_id
    claims = optional_jwt_claims(request.headers.get("authorization"))
    request.state.org_id = resolve_org_id(claims, request.headers.get("X-Org-ID"))
    fields = {
        "request_id": req_id,
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query,
        "org_id": request.state.org_id,
        "client_ip": getattr(request.client, "host", None),
        "user_agent": request.headers.get("user-agent"),
    }
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        _record(request, 500, duration_ms)
        log_event("request_error", logging.ERROR, status=500, duration_ms=round(duration_ms, 2), error=str(exc), **fields)
        raise
    response.headers["X-Request-ID"] = req_id
    duration_ms = (time.perf_counter() - start) * 1000.0
    _record(request, response.status_code, duration_ms)
    log_event("request", status=response.status_code, duration_ms=round(duration_ms, 2), **fields)
    return response


# Security headers
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    if os.getenv("ENV", "dev").lower() == "prod":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    return response


# --- Error mapping ---
@app.exception_handler(ISMSError)
async def isms_error_handler(request: Request, exc: ISMSError):
    body: Dict[str, Any] = {"error": str(exc) if exc.expose else exc.public_message}
    if isinstance(exc, IntakeValidationError):
        body["missing"] = exc.missing
    if isinstance(exc, UpstreamGenerationError):
        body["retryable"] = exc.retryable
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    log_event(
        "request_failed",
        level,
        request_id=getattr(request.state, "request_id", None),
        error_type=type(exc).__name__,
        status=exc.status_code,
        detail=str(exc),
    )
    return JSONResponse(body, status_code=exc.status_code)


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError):
    log_event("db_error", logging.ERROR, request_id=getattr(request.state, "request_id", None), error=str(exc))
    return await isms_error_handler(request, PersistenceError())


# --- Principal resolution ---
def _principal(min_role: str):
    check = role_required(min_role)

    def _dep(request: Request, claims: Dict[str, Any] = Depends(check)) -> Dict[str, Any]:
        org_id = resolve_org_id(claims, request.headers.get("X-Org-ID"))
        role = highest_role(claims.get("roles", [])) or "auditor"
        subject = str(claims.get("sub") or claims.get("auth") or "anonymous")
        with engine.begin() as conn:
            user = store.ensure_user(conn, subject, org_id, role, email=claims.get("email"), full_name=claims.get("name"))
        # Tokens without an org claim stay in the org the user was bootstrapped into
        if claims.get("auth") != "dev-mode" and not claim_org_id(claims):
            org_id = user["organization_id"]
        return {**user, "organization_id": org_id, "role": role}

    return _dep


can_read = _principal("auditor")
can_write = _principal("contributor")


def _check_page(limit: int, offset: int):
    if limit < 1 or limit > 200:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 200")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")


def _changes(payload: BaseModel) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    return changes


# --- Basic in-memory rate limiter for exports ---
_RATE_STATE = {}


def rate_limit(key: str, limit: int = 30, window_sec: int = 60):
    now = int(time.time())
    window = now // window_sec
    k = (key, window)
    count = _RATE_STATE.get(k, 0) + 1
    _RATE_STATE[k] = count
    # Drop finished windows for every client, not just this one
    for stale in [s for s in _RATE_STATE if s[1] < window]:
        del _RATE_STATE[stale]
    if count > limit:
        raise HTTPException(status_code=429, detail="Rate limit exceeded")


# --- Health ---
@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["Health"])
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# --- Intake ---
@app.get("/intake/questions", tags=["Intake"])
def intake_questions(_user=Depends(can_read)):
    return {
        "questions": [q.model_dump(mode="json") for q in INTAKE_QUESTIONS],
        "categories": QUESTION_CATEGORIES,
    }


@app.get("/intake/responses", tags=["Intake"])
def get_intake_responses(user=Depends(can_read)):
    with engine.connect() as conn:
        responses = store.get_intake_responses(conn, user["organization_id"])
    return {"responses": responses, "progress": calculate_progress(responses)}


@app.put("/intake/responses", tags=["Intake"])
def save_intake_responses(payload: IntakeResponsesIn, user=Depends(can_write)):
    with engine.begin() as conn:
        store.save_intake_responses(conn, user["organization_id"], payload.responses)
        responses = store.get_intake_responses(conn, user["organization_id"])
    return {"responses": responses, "progress": calculate_progress(responses)}


@app.get("/intake/progress", tags=["Intake"])
def intake_progress(user=Depends(can_read)):
    with engine.connect() as conn:
        responses = store.get_intake_responses(conn, user["organization_id"])
    return {"progress": calculate_progress(responses), "total": len(INTAKE_QUESTIONS)}


@app.post("/intake/generate-scope", tags=["Intake"])
def generate_scope(payload: GenerateScopeIn, _user=Depends(can_write), client: ModelClient = Depends(get_model_client)):
    require_valid_responses(payload.responses)
    draft = generate_draft_scope(client, payload.responses)
    return {"success": True, "draftScope": draft.model_dump(by_alias=True)}


@app.post("/intake/approve-scope", tags=["Intake"])
def approve_scope(payload: ApproveScopeIn, request: Request, user=Depends(can_read)):
    approvals.require_approver(user, "Insufficient permissions to approve scope")
    if payload.draft_scope is None:
        raise BadRequestError("Draft scope is required")
    org_id = user["organization_id"]
    scope_id = approvals.approve_scope(
        engine,
        user,
        payload.draft_scope,
        comment=payload.comment,
        responses=payload.responses,
        request_id=getattr(request.state, "request_id", None),
    )
    responses = payload.responses
    if not responses:
        with engine.connect() as conn:
            responses = store.get_intake_responses(conn, org_id)
    seeded = seed_starter_data(engine, org_id, payload.draft_scope, responses)
    return {
        "success": True,
        "scopeId": scope_id,
        "message": "ISMS scope approved successfully",
        "seeded": seeded.model_dump(),
    }


@app.get("/intake/scope", tags=["Intake"])
def get_scope(user=Depends(can_read)):
    scope = approvals.get_saved_scope(engine, user["organization_id"])
    if scope is None:
        raise HTTPException(status_code=404, detail="Scope not approved yet")
    return scope


# --- Assets ---
@app.get("/assets", response_model=List[Asset], tags=["Assets"])
def list_assets(
    response: Response,
    asset_type: Optional[AssetType] = None,
    in_scope: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    user=Depends(can_read),
):
    _check_page(limit, offset)
    with engine.connect() as conn:
        rows, total = store.list_assets(conn, user["organization_id"], asset_type=asset_type, in_scope=in_scope, limit=limit, offset=offset)
    response.headers["X-Total-Count"] = str(total)
    return rows


@app.post("/assets", response_model=Asset, status_code=201, tags=["Assets"])
def create_asset(payload: AssetCreate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.create_asset(conn, user["organization_id"], payload.model_dump())


@app.get("/assets/{asset_id}", response_model=Asset, tags=["Assets"])
def get_asset(asset_id: str, user=Depends(can_read)):
    with engine.connect() as conn:
        return store.get_asset(conn, user["organization_id"], asset_id)


@app.patch("/assets/{asset_id}", response_model=Asset, tags=["Assets"])
def update_asset(asset_id: str, payload: AssetUpdate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.update_asset(conn, user["organization_id"], asset_id, _changes(payload))


@app.delete("/assets/{asset_id}", status_code=204, tags=["Assets"])
def delete_asset(asset_id: str, user=Depends(can_write)):
    with engine.begin() as conn:
        store.delete_asset(conn, user["organization_id"], asset_id)
    return Response(status_code=204)


# --- Risks ---
@app.get("/risks/matrix", tags=["Risks"])
def risk_matrix(user=Depends(can_read)):
    with engine.connect() as conn:
        counts = store.risk_matrix_counts(conn, user["organization_id"])
    matrix = {i.value: {lk.value: lvl.value for lk, lvl in row.items()} for i, row in RISK_MATRIX.items()}
    return {"matrix": matrix, "counts": counts}


@app.get("/risks", response_model=List[Risk], tags=["Risks"])
def list_risks(
    response: Response,
    status: Optional[RiskStatus] = None,
    risk_level: Optional[RiskLevel] = None,
    asset_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    user=Depends(can_read),
):
    _check_page(limit, offset)
    with engine.connect() as conn:
        rows, total = store.list_risks(conn, user["organization_id"], status=status, level=risk_level, asset_id=asset_id, limit=limit, offset=offset)
    response.headers["X-Total-Count"] = str(total)
    return rows


@app.post("/risks", response_model=Risk, status_code=201, tags=["Risks"])
def create_risk(payload: RiskCreate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.create_risk(conn, user["organization_id"], payload.model_dump())


@app.get("/risks/{risk_id}", response_model=Risk, tags=["Risks"])
def get_risk(risk_id: str, user=Depends(can_read)):
    with engine.connect() as conn:
        return store.get_risk(conn, user["organization_id"], risk_id)


@app.patch("/risks/{risk_id}", response_model=Risk, tags=["Risks"])
def update_risk(risk_id: str, payload: RiskUpdate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.update_risk(conn, user["organization_id"], risk_id, _changes(payload))


@app.delete("/risks/{risk_id}", status_code=204, tags=["Risks"])
def delete_risk(risk_id: str, user=Depends(can_write)):
    with engine.begin() as conn:
        store.delete_risk(conn, user["organization_id"], risk_id)
    return Response(status_code=204)


@app.post("/risks/{risk_id}/approve", response_model=Risk, tags=["Risks"])
def approve_risk(risk_id: str, request: Request, payload: Optional[ApprovalIn] = None, user=Depends(can_read)):
    return approvals.approve_risk(
        engine,
        user,
        risk_id,
        comment=payload.comment if payload else None,
        request_id=getattr(request.state, "request_id", None),
    )


# --- Controls ---
def _stats_payload(controls: List[Dict[str, Any]]) -> Dict[str, Any]:
    stats = control_stats(controls)
    by_theme = {}
    for theme in ControlTheme:
        theme_stats = control_stats([c for c in controls if c["theme"] == theme.value])
        by_theme[theme.value] = {
            "label": THEME_LABELS[theme],
            **theme_stats,
            "completion": completion_percentage(theme_stats),
        }
    return {**stats, "completion": completion_percentage(stats), "by_theme": by_theme}


@app.get("/controls", response_model=List[Control], tags=["Controls"])
def list_controls(theme: Optional[ControlTheme] = None, status: Optional[ImplementationStatus] = None, user=Depends(can_read)):
    with engine.connect() as conn:
        return store.list_controls(conn, user["organization_id"], theme=theme, status=status)


@app.get("/controls/stats", tags=["Controls"])
def controls_stats(user=Depends(can_read)):
    with engine.connect() as conn:
        controls = store.list_controls(conn, user["organization_id"])
    return _stats_payload(controls)


@app.get("/controls/{control_id}", response_model=Control, tags=["Controls"])
def get_control(control_id: str, user=Depends(can_read)):
    with engine.connect() as conn:
        return store.get_control(conn, user["organization_id"], control_id)


@app.put("/controls/{control_id}", response_model=Control, tags=["Controls"])
def update_control(control_id: str, payload: ControlUpdate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.save_control_setting(conn, user["organization_id"], control_id, _changes(payload))


# --- Statement of Applicability ---
SOA_EXPORT_HEADERS = [
    "control_id",
    "control_name",
    "control_theme",
    "applicable",
    "justification",
    "implementation_status",
    "linked_risks",
    "linked_evidence",
    "locked_for_audit",
    "locked_at",
]


@app.get("/soa", response_model=List[SoARecord], tags=["SoA"])
def list_soa(applicable: Optional[bool] = None, user=Depends(can_read)):
    with engine.connect() as conn:
        return store.list_soa(conn, user["organization_id"], applicable=applicable)


@app.post("/soa/lock", tags=["SoA"])
def lock_soa(request: Request, payload: Optional[ApprovalIn] = None, user=Depends(can_read)):
    locked = approvals.lock_soa_for_audit(
        engine,
        user,
        comment=payload.comment if payload else None,
        request_id=getattr(request.state, "request_id", None),
    )
    return {"success": True, "locked": locked}


@app.patch("/soa/{soa_id}", response_model=SoARecord, tags=["SoA"])
def update_soa(soa_id: str, payload: SoAUpdate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.update_soa(conn, user["organization_id"], soa_id, _changes(payload))


@app.post("/soa/{soa_id}/unlock", response_model=SoARecord, tags=["SoA"])
def unlock_soa(soa_id: str, request: Request, user=Depends(can_read)):
    return approvals.unlock_soa_record(engine, user, soa_id, request_id=getattr(request.state, "request_id", None))


# --- Evidence ---
@app.get("/evidence/controls", tags=["Evidence"])
def evidence_controls(user=Depends(can_read)):
    with engine.connect() as conn:
        return {"control_ids": store.controls_with_evidence(conn, user["organization_id"])}


@app.get("/evidence", response_model=List[Evidence], tags=["Evidence"])
def list_evidence(response: Response, control_id: Optional[str] = None, limit: int = 50, offset: int = 0, user=Depends(can_read)):
    _check_page(limit, offset)
    with engine.connect() as conn:
        rows, total = store.list_evidence(conn, user["organization_id"], control_id=control_id, limit=limit, offset=offset)
    response.headers["X-Total-Count"] = str(total)
    return rows


@app.post("/evidence", response_model=Evidence, status_code=201, tags=["Evidence"])
def create_evidence(payload: EvidenceCreate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.create_evidence(conn, user["organization_id"], payload.model_dump(), uploaded_by=user.get("id"))


@app.get("/evidence/{evidence_id}", response_model=Evidence, tags=["Evidence"])
def get_evidence(evidence_id: str, user=Depends(can_read)):
    with engine.connect() as conn:
        return store.get_evidence(conn, user["organization_id"], evidence_id)


@app.patch("/evidence/{evidence_id}", response_model=Evidence, tags=["Evidence"])
def update_evidence(evidence_id: str, payload: EvidenceUpdate, user=Depends(can_write)):
    with engine.begin() as conn:
        return store.update_evidence(conn, user["organization_id"], evidence_id, _changes(payload))


@app.delete("/evidence/{evidence_id}", status_code=204, tags=["Evidence"])
def delete_evidence(evidence_id: str, user=Depends(can_write)):
    with engine.begin() as conn:
        store.delete_evidence(conn, user["organization_id"], evidence_id)
    return Response(status_code=204)


# --- Approval logs ---
@app.get("/approval-logs", response_model=List[ApprovalLog], tags=["Approvals"])
def list_approval_logs(
    response: Response,
    object_type: Optional[str] = None,
    object_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    user=Depends(can_read),
):
    _check_page(limit, offset)
    with engine.connect() as conn:
        rows, total = store.list_approval_logs(conn, user["organization_id"], object_type=object_type, object_id=object_id, limit=limit, offset=offset)
    response.headers["X-Total-Count"] = str(total)
    return rows


# --- Dashboard / report ---
def _asset_summary(assets: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total": len(assets),
        "in_scope": sum(1 for a in assets if a["in_scope"]),
        "critical": sum(1 for a in assets if a["criticality"] == "critical"),
        "high": sum(1 for a in assets if a["criticality"] == "high"),
    }


def _risk_summary(risks: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total": len(risks),
        "high": sum(1 for r in risks if r["risk_level"] == "high"),
        "medium": sum(1 for r in risks if r["risk_level"] == "medium"),
        "low": sum(1 for r in risks if r["risk_level"] == "low"),
        "approved": sum(1 for r in risks if r["status"] == "approved"),
        "draft": sum(1 for r in risks if r["status"] == "draft"),
    }


def _evidence_summary(evidence: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total": len(evidence),
        "verified": sum(1 for e in evidence if e["verified"]),
        "stage_1": sum(1 for e in evidence if e["stage_acceptable"] in ("stage_1", "both")),
        "stage_2": sum(1 for e in evidence if e["stage_acceptable"] in ("stage_2", "both")),
        "controls_covered": len({e["control_id"] for e in evidence}),
    }


def _load_registers(org_id: str) -> Dict[str, Any]:
    with engine.connect() as conn:
        assets, _ = store.list_assets(conn, org_id, limit=None)
        risks, _ = store.list_risks(conn, org_id, limit=None)
        evidence, _ = store.list_evidence(conn, org_id, limit=None)
        return {
            "responses": store.get_intake_responses(conn, org_id),
            "controls": store.list_controls(conn, org_id),
            "soa": store.list_soa(conn, org_id),
            "assets": assets,
            "risks": risks,
            "evidence": evidence,
        }


@app.get("/dashboard/summary", tags=["Reports"])
def dashboard_summary(user=Depends(can_read)):
    org_id = user["organization_id"]
    data = _load_registers(org_id)
    scope = approvals.get_saved_scope(engine, org_id)
    return {
        "organization_id": org_id,
        "intake_progress": calculate_progress(data["responses"]),
        "scope_approved": scope is not None,
        "scope_approved_at": scope["approved_at"] if scope else None,
        "assets": _asset_summary(data["assets"]),
        "risks": _risk_summary(data["risks"]),
        "controls": _stats_payload(data["controls"]),
        "evidence": _evidence_summary(data["evidence"]),
        "soa": {
            "total": len(data["soa"]),
            "applicable": sum(1 for s in data["soa"] if s["applicable"]),
            "locked": sum(1 for s in data["soa"] if s["locked_for_audit"]),
        },
    }


@app.get("/report", tags=["Reports"])
def report(user=Depends(can_read)):
    """Everything a certification readiness report renders, in one payload."""
    org_id = user["organization_id"]
    data = _load_registers(org_id)
    return {
        "organization_id": org_id,
        "organization": data["responses"],
        "scope": approvals.get_saved_scope(engine, org_id),
        "controls": {"stats": _stats_payload(data["controls"]), "items": data["controls"]},
        "risks": {"summary": _risk_summary(data["risks"]), "items": data["risks"]},
        "assets": {"summary": _asset_summary(data["assets"]), "items": data["assets"]},
        "evidence": {"summary": _evidence_summary(data["evidence"]), "items": data["evidence"]},
        "soa": data["soa"],
    }


# --- Exports ---
def _rows_to_csv(rows, headers):
    sio = io.StringIO()
    writer = csv.writer(sio)
    writer.writerow(headers)
    for r in rows:
        writer.writerow([r.get(h) for h in headers])
    return sio.getvalue()


def _soa_export_rows(org_id: str) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        records = store.list_soa(conn, org_id)
    rows = []
    for r in records:
        row = {h: r.get(h) for h in SOA_EXPORT_HEADERS}
        row["applicable"] = "yes" if r["applicable"] else "no"
        row["locked_for_audit"] = "yes" if r["locked_for_audit"] else "no"
        row["linked_risks"] = ";".join(r["linked_risks"])
        row["linked_evidence"] = ";".join(r["linked_evidence"])
        rows.append(row)
    return rows


@app.get("/export/soa.csv", tags=["Exports"])
def export_soa_csv(request: Request, user=Depends(can_read)):
    rate_limit(f"export:{request.client.host if request.client else 'local'}")
    csv_text = _rows_to_csv(_soa_export_rows(user["organization_id"]), SOA_EXPORT_HEADERS)
    return Response(content=csv_text, media_type="text/csv", headers={"Content-Disposition": "attachment; filename=soa.csv"})


@app.get("/export/soa.xlsx", tags=["Exports"])
def export_soa_xlsx(request: Request, user=Depends(can_read)):
    rate_limit(f"export:{request.client.host if request.client else 'local'}")
    from openpyxl import Workbook

    wb = Workbook()
    ws = wb.active
    ws.title = "soa"
    ws.append(SOA_EXPORT_HEADERS)
    for r in _soa_export_rows(user["organization_id"]):
        ws.append([r.get(h) for h in SOA_EXPORT_HEADERS])
    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    return Response(
        content=bio.read(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=soa.xlsx"},
    )
