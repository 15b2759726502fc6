"""Starter registers for a newly approved organization.

Builds assets from the intake answers, draft risks from the scope's risk
areas, and one organization-control plus one SoA row per Annex A control.
Runs once per organization: if any asset exists the whole seed is skipped.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.engine import Engine

from . import db
from .intake_agent import AnnexAAssumption, DraftScope
from .logging_config import log_event
from .store import count_assets


CLOUD_PROVIDER_LABELS: Dict[str, str] = {
    "aws": "Amazon Web Services (AWS)",
    "azure": "Microsoft Azure",
    "gcp": "Google Cloud Platform",
    "google_workspace": "Google Workspace",
    "microsoft_365": "Microsoft 365",
    "heroku": "Heroku",
    "vercel": "Vercel",
    "digitalocean": "DigitalOcean",
    "on_premise": "On-premise Infrastructure",
    "other": "Other Cloud Services",
}

DATA_TYPE_LABELS: Dict[str, str] = {
    "pii": "Customer PII",
    "phi": "Protected Health Information",
    "financial": "Financial & Payment Data",
    "intellectual_property": "Intellectual Property",
    "customer_data": "Customer Business Data",
    "employee_data": "Employee HR Data",
    "authentication": "Authentication Credentials",
}

WORKSPACE_LABELS: Dict[str, str] = {
    "google_workspace": "Google Workspace",
    "microsoft_365": "Microsoft 365",
    "slack_based": "Slack",
    "notion": "Notion",
    "other": "Collaboration Platform",
}

# Workspace answers that are also cloud provider answers
WORKSPACE_CLOUD_OVERLAP = {"google_workspace", "microsoft_365"}

DATA_CRITICALITY: Dict[str, str] = {
    "pii": "high",
    "phi": "critical",
    "financial": "critical",
    "intellectual_property": "high",
    "customer_data": "high",
    "employee_data": "medium",
    "authentication": "critical",
}

BASELINE_ASSETS = [
    ("Employee Laptops", "hardware", "Company-issued or BYOD workstations used by employees", "high"),
    ("Corporate Email", "service", "Organization email service for business communications", "high"),
    ("Source Code Repository", "software", "Version control system hosting application source code", "high"),
    ("Engineering Team", "people", "Software engineering and development personnel", "high"),
    ("Operations Team", "people", "IT operations and infrastructure personnel", "medium"),
]

# Order matters: first matching keyword group wins.
VULNERABILITY_RULES = [
    (("access", "authentication"), "Insufficient access controls or authentication mechanisms"),
    (("data", "privacy"), "Inadequate data protection or encryption controls"),
    (("vendor", "supply", "third"), "Lack of vendor risk assessment and monitoring processes"),
    (("incident", "breach"), "Insufficient incident detection and response capabilities"),
    (("compliance", "regulatory"), "Gaps in regulatory compliance monitoring and documentation"),
    (("availability", "disaster", "continuity"), "Insufficient business continuity and disaster recovery planning"),
    (("employee", "insider", "awareness"), "Insufficient security awareness training and policy enforcement"),
]
DEFAULT_VULNERABILITY = "Controls not yet assessed for this risk area"

NOT_APPLICABLE_JUSTIFICATION = "Determined not applicable based on organization context"
SOA_DEFAULT_JUSTIFICATION = "Applicability to be confirmed during risk assessment"


class SeedResult(BaseModel):
    skipped: bool = False
    assets: int = 0
    risks: int = 0
    organization_controls: int = 0
    soa_records: int = 0
    errors: Dict[str, str] = {}


def default_vulnerability(risk_area: str) -> str:
    lower = risk_area.lower()
    for keywords, text_ in VULNERABILITY_RULES:
        if any(k in lower for k in keywords):
            return text_
    return DEFAULT_VULNERABILITY


def _as_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def build_asset_rows(org_id: str, responses: Mapping[str, Any]) -> List[Dict[str, Any]]:
    assets: List[Dict[str, Any]] = []
    seen = set()

    def add(name: str, asset_type: str, description: str, criticality: str = "medium"):
        if name in seen:
            return
        seen.add(name)
        assets.append({
            "organization_id": org_id,
            "name": name,
            "asset_type": asset_type,
            "description": description,
            "criticality": criticality,
            "in_scope": True,
        })

    providers = _as_list(responses.get("cloud_providers"))
    for provider in providers:
        label = CLOUD_PROVIDER_LABELS.get(provider, provider)
        add(label, "software", f"Cloud platform: {label}", "high")

    workspace = responses.get("primary_workspace")
    if workspace and not (workspace in WORKSPACE_CLOUD_OVERLAP and workspace in providers):
        add(WORKSPACE_LABELS.get(workspace, workspace), "software", "Primary collaboration and productivity platform", "high")

    for dt in _as_list(responses.get("data_types")):
        if dt == "none":
            continue
        label = DATA_TYPE_LABELS.get(dt, dt)
        add(label, "data", f"Sensitive data: {label}", DATA_CRITICALITY.get(dt, "medium"))

    for name, asset_type, description, criticality in BASELINE_ASSETS:
        add(name, asset_type, description, criticality)
    return assets


def build_risk_rows(org_id: str, risk_areas: Sequence[str]) -> List[Dict[str, Any]]:
    return [
        {
            "organization_id": org_id,
            "threat": area,
            "vulnerability": default_vulnerability(area),
            "impact": "medium",
            "likelihood": "medium",
            "risk_level": "medium",
            "treatment": "mitigate",
            "status": "draft",
        }
        for area in risk_areas
    ]


def _assumption_map(assumptions: Sequence[AnnexAAssumption]) -> Dict[str, AnnexAAssumption]:
    return {a.control_id: a for a in assumptions}


def build_organization_control_rows(org_id: str, control_ids: Sequence[str], assumptions: Sequence[AnnexAAssumption]) -> List[Dict[str, Any]]:
    by_id = _assumption_map(assumptions)
    rows = []
    for cid in control_ids:
        a = by_id.get(cid)
        if a is not None and a.applicability == "likely_not_applicable":
            rows.append({
                "organization_id": org_id,
                "control_id": cid,
                "applicable": False,
                "justification": a.reasoning or NOT_APPLICABLE_JUSTIFICATION,
                "implementation_status": "not_applicable",
            })
        else:
            rows.append({
                "organization_id": org_id,
                "control_id": cid,
                "applicable": True,
                "justification": a.reasoning if a is not None else None,
                "implementation_status": "gap",
            })
    return rows


def build_soa_rows(org_id: str, control_ids: Sequence[str], assumptions: Sequence[AnnexAAssumption]) -> List[Dict[str, Any]]:
    by_id = _assumption_map(assumptions)
    rows = []
    for cid in control_ids:
        a = by_id.get(cid)
        rows.append({
            "organization_id": org_id,
            "control_id": cid,
            "applicable": not (a is not None and a.applicability == "likely_not_applicable"),
            "justification": (a.reasoning if a is not None else None) or SOA_DEFAULT_JUSTIFICATION,
            "linked_risks": db.dumps([]),
            "linked_evidence": db.dumps([]),
            "locked_for_audit": False,
        })
    return rows


def _stamp(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    now = db.utcnow()
    return [{"id": db.new_id(), **r, "created_at": now, "updated_at": now} for r in rows]


def _insert(conn, table_name: str, rows: List[Dict[str, Any]]) -> None:
    cols = list(rows[0].keys())
    conn.execute(
        text(f"INSERT INTO {table_name} ({', '.join(cols)}) VALUES ({', '.join(':' + c for c in cols)})"),
        rows,
    )


def seed_starter_data(engine: Engine, org_id: str, draft: DraftScope, responses: Optional[Mapping[str, Any]] = None) -> SeedResult:
    result = SeedResult()
    try:
        with engine.connect() as conn:
            existing = count_assets(conn, org_id)
            control_ids = list(conn.execute(text("SELECT control_id FROM controls")).scalars().all())
    except Exception as exc:
        log_event("seed_check_failed", logging.ERROR, organization_id=org_id, error=str(exc))
        result.errors["check"] = str(exc)
        return result
    if existing > 0:
        log_event("seed_skipped", organization_id=org_id, existing_assets=existing)
        result.skipped = True
        return result

    asset_rows = _stamp(build_asset_rows(org_id, responses or {}))
    risk_rows = _stamp(build_risk_rows(org_id, draft.risk_areas))
    assumptions = draft.annex_a_assumptions
    groups = [
        ("assets", asset_rows, lambda conn, rows: _insert(conn, "assets", rows)),
        ("risks", risk_rows, lambda conn, rows: _insert(conn, "risks", rows)),
        (
            "organization_controls",
            _stamp(build_organization_control_rows(org_id, control_ids, assumptions)),
            lambda conn, rows: db.upsert(conn, db.organization_controls_table, rows, ("organization_id", "control_id")),
        ),
        (
            "soa_records",
            _stamp(build_soa_rows(org_id, control_ids, assumptions)),
            lambda conn, rows: db.upsert(conn, db.soa_records_table, rows, ("organization_id", "control_id")),
        ),
    ]
    for name, rows, write in groups:
        if not rows:
            continue
        try:
            with engine.begin() as conn:
                write(conn, rows)
        except Exception as exc:
            log_event("seed_group_failed", logging.ERROR, organization_id=org_id, group=name, error=str(exc))
            result.errors[name] = str(exc)
            continue
        setattr(result, name, len(rows))

    log_event(
        "seed_completed",
        organization_id=org_id,
        assets=result.assets,
        risks=result.risks,
        organization_controls=result.organization_controls,
        soa_records=result.soa_records,
        errors=list(result.errors),
    )
    return result
