"""Organization-scoped reads and writes for every ISMS entity.

Every function takes an open connection and the caller's organization id.
Rows owned by another organization are indistinguishable from missing rows.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection

from . import db
from .catalog import DEFAULT_APPLICABLE, DEFAULT_STATUS, ImplementationStatus
from .errors import BadRequestError, ConflictError, NotFoundError
from .risk_matrix import risk_level


ASSET_COLUMNS = ("name", "asset_type", "description", "owner_id", "criticality", "in_scope")
RISK_COLUMNS = ("asset_id", "threat", "vulnerability", "impact", "likelihood", "treatment", "treatment_plan", "owner_id")
SOA_COLUMNS = ("applicable", "justification", "linked_risks", "linked_evidence")
EVIDENCE_COLUMNS = ("control_id", "title", "description", "evidence_type", "evidence_url", "stage_acceptable")

# Columns that may be changed but never cleared
ASSET_REQUIRED = ("name", "asset_type", "criticality", "in_scope")
RISK_REQUIRED = ("threat", "impact", "likelihood", "treatment")
SOA_REQUIRED = ("applicable",)
CONTROL_REQUIRED = ("applicable", "implementation_status")
EVIDENCE_REQUIRED = ("control_id", "title", "evidence_type", "evidence_url", "stage_acceptable")


def _row(row: Optional[Mapping[str, Any]], bools: Sequence[str] = (), json_cols: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    d = dict(row)
    for k in bools:
        if k in d and d[k] is not None:
            d[k] = bool(d[k])
    for k in json_cols:
        if k in d:
            d[k] = db.loads(d[k], default=[])
    return d


def _value(v: Any) -> Any:
    return v.value if hasattr(v, "value") else v


def _page(conn: Connection, table: str, where: str, params: Dict[str, Any], order: str, limit: Optional[int], offset: int, select: str = "*") -> Tuple[List[Mapping[str, Any]], int]:
    """One page of rows plus the unpaged total. ``limit=None`` returns everything."""
    total = conn.execute(text(f"SELECT COUNT(*) FROM {table} WHERE {where}"), params).scalar_one()
    sql = f"SELECT {select} FROM {table} WHERE {where} ORDER BY {order}"
    if limit is not None:
        sql += " LIMIT :limit OFFSET :offset"
        params = {**params, "limit": limit, "offset": offset}
    rows = conn.execute(text(sql), params).mappings().all()
    return list(rows), int(total or 0)


def _reject_nulls(changes: Mapping[str, Any], required: Sequence[str]) -> None:
    nulls = [k for k in required if k in changes and changes[k] is None]
    if nulls:
        raise BadRequestError(f"Fields cannot be null: {', '.join(nulls)}")


def _update(conn: Connection, table: str, org_id: str, row_id: str, updates: Dict[str, Any]) -> None:
    updates = dict(updates)
    updates["updated_at"] = db.utcnow()
    set_clause = ", ".join(f"{k} = :{k}" for k in updates.keys())
    res = conn.execute(
        text(f"UPDATE {table} SET {set_clause} WHERE id = :id AND organization_id = :org"),
        {**updates, "id": row_id, "org": org_id},
    )
    if res.rowcount == 0:
        raise NotFoundError(f"{table} row {row_id} not found")


def _delete(conn: Connection, table: str, org_id: str, row_id: str) -> None:
    res = conn.execute(text(f"DELETE FROM {table} WHERE id = :id AND organization_id = :org"), {"id": row_id, "org": org_id})
    if res.rowcount == 0:
        raise NotFoundError(f"{table} row {row_id} not found")


# --- Organizations and users ---
def ensure_organization(conn: Connection, org_id: str, name: Optional[str] = None) -> None:
    now = db.utcnow()
    db.upsert(
        conn,
        db.organizations_table,
        {"id": org_id, "name": name or org_id, "created_at": now, "updated_at": now},
        ("id",),
        update_cols=(),
    )


def update_organization_profile(conn: Connection, org_id: str, responses: Mapping[str, Any]) -> None:
    fields = {
        "name": responses.get("org_name"),
        "industry": responses.get("industry"),
        "headcount": responses.get("headcount"),
        "geography": db.dumps(responses.get("geography")) if isinstance(responses.get("geography"), list) else responses.get("geography"),
    }
    fields = {k: v for k, v in fields.items() if v not in (None, "")}
    if not fields:
        return
    fields["updated_at"] = db.utcnow()
    set_clause = ", ".join(f"{k} = :{k}" for k in fields)
    conn.execute(text(f"UPDATE organizations SET {set_clause} WHERE id = :id"), {**fields, "id": org_id})


def ensure_user(conn: Connection, subject: str, org_id: str, role: str, email: Optional[str] = None, full_name: Optional[str] = None) -> Dict[str, Any]:
    ensure_organization(conn, org_id)
    now = db.utcnow()
    db.upsert(
        conn,
        db.users_table,
        {
            "id": db.new_id(),
            "auth_subject": subject,
            "organization_id": org_id,
            "email": email,
            "full_name": full_name,
            "role": role,
            "created_at": now,
            "updated_at": now,
        },
        ("auth_subject",),
        update_cols=("role", "updated_at"),
    )
    row = conn.execute(text("SELECT * FROM users WHERE auth_subject = :sub"), {"sub": subject}).mappings().first()
    return dict(row)


# --- Intake ---
def get_intake_responses(conn: Connection, org_id: str) -> Dict[str, Any]:
    rows = conn.execute(
        text("SELECT question_key, response FROM intake_responses WHERE organization_id = :org ORDER BY question_key"),
        {"org": org_id},
    ).mappings().all()
    return {r["question_key"]: db.loads(r["response"]) for r in rows}


def save_intake_responses(conn: Connection, org_id: str, responses: Mapping[str, Any]) -> int:
    now = db.utcnow()
    rows = [
        {
            "id": db.new_id(),
            "organization_id": org_id,
            "question_key": key,
            "response": db.dumps(value),
            "created_at": now,
            "updated_at": now,
        }
        for key, value in responses.items()
    ]
    db.upsert(conn, db.intake_responses_table, rows, ("organization_id", "question_key"))
    return len(rows)


# --- Scope and approval log ---
def save_scope(conn: Connection, org_id: str, scope: Mapping[str, Any], approved_by: Optional[str]) -> str:
    now = db.utcnow()
    db.upsert(
        conn,
        db.isms_scopes_table,
        {
            "id": db.new_id(),
            "organization_id": org_id,
            "scope_statement": scope.get("scope_statement") or "",
            "boundaries": db.dumps(scope.get("boundaries") or {}),
            "exclusions": "\n".join(scope.get("exclusions") or []),
            "interested_parties": db.dumps(scope.get("interested_parties") or []),
            "regulatory_requirements": db.dumps(scope.get("regulatory_requirements") or []),
            "approved_by": approved_by,
            "approved_at": now,
            "created_at": now,
            "updated_at": now,
        },
        ("organization_id",),
    )
    return conn.execute(text("SELECT id FROM isms_scopes WHERE organization_id = :org"), {"org": org_id}).scalar_one()


def get_scope(conn: Connection, org_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(text("SELECT * FROM isms_scopes WHERE organization_id = :org"), {"org": org_id}).mappings().first()
    if row is None:
        return None
    d = dict(row)
    d["boundaries"] = db.loads(d.get("boundaries"), default={})
    d["interested_parties"] = db.loads(d.get("interested_parties"), default=[])
    d["regulatory_requirements"] = db.loads(d.get("regulatory_requirements"), default=[])
    d["exclusions"] = [line for line in (d.get("exclusions") or "").split("\n") if line]
    return d


def insert_approval_log(
    conn: Connection,
    org_id: str,
    object_type: str,
    object_id: str,
    action: str,
    approved_by: Optional[str],
    comment: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> str:
    log_id = db.new_id()
    conn.execute(
        text(
            "INSERT INTO approval_logs (id, organization_id, object_type, object_id, action, approved_by, approved_at, comment, metadata, request_id) "
            "VALUES (:id, :org, :object_type, :object_id, :action, :approved_by, :approved_at, :comment, :metadata, :request_id)"
        ),
        {
            "id": log_id,
            "org": org_id,
            "object_type": object_type,
            "object_id": object_id,
            "action": action,
            "approved_by": approved_by,
            "approved_at": db.utcnow(),
            "comment": comment,
            "metadata": db.dumps(dict(metadata)) if metadata is not None else None,
            "request_id": request_id,
        },
    )
    return log_id


def _log_row(row) -> Dict[str, Any]:
    d = dict(row)
    d["metadata"] = db.loads(d.get("metadata"), default={})
    return d


def list_approval_logs(conn: Connection, org_id: str, object_type: Optional[str] = None, object_id: Optional[str] = None, limit: Optional[int] = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
    where = "organization_id = :org"
    params: Dict[str, Any] = {"org": org_id}
    if object_type:
        where += " AND object_type = :object_type"
        params["object_type"] = object_type
    if object_id:
        where += " AND object_id = :object_id"
        params["object_id"] = object_id
    rows, total = _page(conn, "approval_logs", where, params, "approved_at DESC, id DESC", limit, offset)
    return [_log_row(r) for r in rows], total


def latest_approval_log(conn: Connection, org_id: str, object_type: str, object_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    rows, _ = list_approval_logs(conn, org_id, object_type=object_type, object_id=object_id, limit=1)
    return rows[0] if rows else None


# --- Assets ---
def count_assets(conn: Connection, org_id: str) -> int:
    return int(conn.execute(text("SELECT COUNT(*) FROM assets WHERE organization_id = :org"), {"org": org_id}).scalar_one() or 0)


def list_assets(conn: Connection, org_id: str, asset_type: Optional[str] = None, in_scope: Optional[bool] = None, limit: Optional[int] = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
    where = "organization_id = :org"
    params: Dict[str, Any] = {"org": org_id}
    if asset_type:
        where += " AND asset_type = :asset_type"
        params["asset_type"] = _value(asset_type)
    if in_scope is not None:
        where += " AND in_scope = :in_scope"
        params["in_scope"] = bool(in_scope)
    rows, total = _page(conn, "assets", where, params, "name, id", limit, offset)
    return [_row(r, bools=("in_scope",)) for r in rows], total


def get_asset(conn: Connection, org_id: str, asset_id: str) -> Dict[str, Any]:
    row = conn.execute(
        text("SELECT * FROM assets WHERE id = :id AND organization_id = :org"), {"id": asset_id, "org": org_id}
    ).mappings().first()
    if row is None:
        raise NotFoundError("Asset not found")
    return _row(row, bools=("in_scope",))


def create_asset(conn: Connection, org_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    now = db.utcnow()
    asset_id = db.new_id()
    row = {c: _value(data.get(c)) for c in ASSET_COLUMNS}
    row["criticality"] = row["criticality"] or "medium"
    row["in_scope"] = True if row["in_scope"] is None else bool(row["in_scope"])
    conn.execute(
        text(
            "INSERT INTO assets (id, organization_id, name, asset_type, description, owner_id, criticality, in_scope, created_at, updated_at) "
            "VALUES (:id, :org, :name, :asset_type, :description, :owner_id, :criticality, :in_scope, :now, :now)"
        ),
        {**row, "id": asset_id, "org": org_id, "now": now},
    )
    return get_asset(conn, org_id, asset_id)


def update_asset(conn: Connection, org_id: str, asset_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    _reject_nulls(changes, ASSET_REQUIRED)
    updates = {k: _value(v) for k, v in changes.items() if k in ASSET_COLUMNS}
    if updates:
        _update(conn, "assets", org_id, asset_id, updates)
    return get_asset(conn, org_id, asset_id)


def delete_asset(conn: Connection, org_id: str, asset_id: str) -> None:
    conn.execute(
        text("UPDATE risks SET asset_id = NULL WHERE asset_id = :id AND organization_id = :org"),
        {"id": asset_id, "org": org_id},
    )
    _delete(conn, "assets", org_id, asset_id)


# --- Risks ---
_RISK_SELECT = "r.*, a.name AS asset_name"
_RISK_FROM = "risks r LEFT JOIN assets a ON a.id = r.asset_id AND a.organization_id = r.organization_id"


def _check_asset(conn: Connection, org_id: str, asset_id: Optional[str]) -> None:
    if asset_id:
        exists = conn.execute(
            text("SELECT 1 FROM assets WHERE id = :id AND organization_id = :org"), {"id": asset_id, "org": org_id}
        ).first()
        if not exists:
            raise NotFoundError("Asset not found")


def list_risks(conn: Connection, org_id: str, status: Optional[str] = None, level: Optional[str] = None, asset_id: Optional[str] = None, limit: Optional[int] = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
    where = "r.organization_id = :org"
    params: Dict[str, Any] = {"org": org_id}
    if status:
        where += " AND r.status = :status"
        params["status"] = _value(status)
    if level:
        where += " AND r.risk_level = :level"
        params["level"] = _value(level)
    if asset_id:
        where += " AND r.asset_id = :asset_id"
        params["asset_id"] = asset_id
    rows, total = _page(conn, _RISK_FROM, where, params, "r.created_at DESC, r.id", limit, offset, select=_RISK_SELECT)
    return [dict(r) for r in rows], total


def get_risk(conn: Connection, org_id: str, risk_id: str) -> Dict[str, Any]:
    row = conn.execute(
        text(f"SELECT {_RISK_SELECT} FROM {_RISK_FROM} WHERE r.id = :id AND r.organization_id = :org"),
        {"id": risk_id, "org": org_id},
    ).mappings().first()
    if row is None:
        raise NotFoundError("Risk not found")
    return dict(row)


def create_risk(conn: Connection, org_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    row = {c: _value(data.get(c)) for c in RISK_COLUMNS}
    row["impact"] = row["impact"] or "medium"
    row["likelihood"] = row["likelihood"] or "medium"
    row["treatment"] = row["treatment"] or "mitigate"
    _check_asset(conn, org_id, row["asset_id"])
    now = db.utcnow()
    risk_id = db.new_id()
    conn.execute(
        text(
            "INSERT INTO risks (id, organization_id, asset_id, threat, vulnerability, impact, likelihood, risk_level, treatment, treatment_plan, status, owner_id, created_at, updated_at) "
            "VALUES (:id, :org, :asset_id, :threat, :vulnerability, :impact, :likelihood, :risk_level, :treatment, :treatment_plan, 'draft', :owner_id, :now, :now)"
        ),
        {**row, "id": risk_id, "org": org_id, "risk_level": risk_level(row["impact"], row["likelihood"]).value, "now": now},
    )
    return get_risk(conn, org_id, risk_id)


def update_risk(conn: Connection, org_id: str, risk_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply an edit. Any edit sends the risk back to draft."""
    _reject_nulls(changes, RISK_REQUIRED)
    current = get_risk(conn, org_id, risk_id)
    updates = {k: _value(v) for k, v in changes.items() if k in RISK_COLUMNS}
    if "asset_id" in updates:
        _check_asset(conn, org_id, updates["asset_id"])
    impact = updates.get("impact") or current["impact"]
    likelihood = updates.get("likelihood") or current["likelihood"]
    updates["risk_level"] = risk_level(impact, likelihood).value
    updates["status"] = "draft"
    updates["approved_by"] = None
    updates["approved_at"] = None
    _update(conn, "risks", org_id, risk_id, updates)
    return get_risk(conn, org_id, risk_id)


def mark_risk_approved(conn: Connection, org_id: str, risk_id: str, approved_by: Optional[str]) -> Dict[str, Any]:
    _update(conn, "risks", org_id, risk_id, {"status": "approved", "approved_by": approved_by, "approved_at": db.utcnow()})
    return get_risk(conn, org_id, risk_id)


def delete_risk(conn: Connection, org_id: str, risk_id: str) -> None:
    _delete(conn, "risks", org_id, risk_id)


def risk_matrix_counts(conn: Connection, org_id: str) -> Dict[str, Dict[str, int]]:
    levels = ("low", "medium", "high")
    grid = {i: {lk: 0 for lk in levels} for i in levels}
    rows = conn.execute(
        text("SELECT impact, likelihood, COUNT(*) AS n FROM risks WHERE organization_id = :org GROUP BY impact, likelihood"),
        {"org": org_id},
    ).mappings().all()
    for r in rows:
        if r["impact"] in grid and r["likelihood"] in grid[r["impact"]]:
            grid[r["impact"]][r["likelihood"]] = int(r["n"])
    return grid


# --- Controls ---
def _merge_control(row: Mapping[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d["applicable"] = DEFAULT_APPLICABLE if d.get("applicable") is None else bool(d["applicable"])
    d["implementation_status"] = d.get("implementation_status") or DEFAULT_STATUS.value
    return d


_CONTROL_SELECT = (
    "SELECT c.control_id, c.name, c.intent, c.theme, oc.applicable, oc.justification, oc.implementation_status "
    "FROM controls c LEFT JOIN organization_controls oc ON oc.control_id = c.control_id AND oc.organization_id = :org"
)


def list_controls(conn: Connection, org_id: str, theme: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"org": org_id}
    sql = _CONTROL_SELECT
    if theme:
        sql += " WHERE c.theme = :theme"
        params["theme"] = _value(theme)
    rows = conn.execute(text(sql), params).mappings().all()
    merged = [_merge_control(r) for r in rows]
    if status:
        merged = [c for c in merged if c["implementation_status"] == _value(status)]
    return sorted(merged, key=lambda c: _control_sort_key(c["control_id"]))


def _control_sort_key(control_id: str) -> Tuple[int, ...]:
    parts = control_id.replace("A.", "", 1).split(".")
    return tuple(int(p) if p.isdigit() else 0 for p in parts)


def get_control(conn: Connection, org_id: str, control_id: str) -> Dict[str, Any]:
    row = conn.execute(text(_CONTROL_SELECT + " WHERE c.control_id = :cid"), {"org": org_id, "cid": control_id}).mappings().first()
    if row is None:
        raise NotFoundError("Control not found")
    return _merge_control(row)


def save_control_setting(conn: Connection, org_id: str, control_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    _reject_nulls(changes, CONTROL_REQUIRED)
    current = get_control(conn, org_id, control_id)
    merged = {
        "applicable": current["applicable"],
        "justification": current.get("justification"),
        "implementation_status": current["implementation_status"],
    }
    merged.update({k: _value(v) for k, v in changes.items() if k in merged})
    if not merged["applicable"]:
        merged["implementation_status"] = ImplementationStatus.not_applicable.value
    elif merged["implementation_status"] == ImplementationStatus.not_applicable.value:
        merged["implementation_status"] = DEFAULT_STATUS.value
    now = db.utcnow()
    db.upsert(
        conn,
        db.organization_controls_table,
        {
            "id": db.new_id(),
            "organization_id": org_id,
            "control_id": control_id,
            "applicable": bool(merged["applicable"]),
            "justification": merged["justification"],
            "implementation_status": merged["implementation_status"],
            "created_at": now,
            "updated_at": now,
        },
        ("organization_id", "control_id"),
    )
    return get_control(conn, org_id, control_id)


# --- Statement of Applicability ---
_SOA_SELECT = (
    "SELECT s.*, c.name AS control_name, c.intent AS control_intent, c.theme AS control_theme, "
    "COALESCE(oc.implementation_status, :default_status) AS implementation_status "
    "FROM soa_records s JOIN controls c ON c.control_id = s.control_id "
    "LEFT JOIN organization_controls oc ON oc.control_id = s.control_id AND oc.organization_id = s.organization_id"
)


def _soa_row(row) -> Dict[str, Any]:
    return _row(row, bools=("applicable", "locked_for_audit"), json_cols=("linked_risks", "linked_evidence"))


def list_soa(conn: Connection, org_id: str, applicable: Optional[bool] = None) -> List[Dict[str, Any]]:
    sql = _SOA_SELECT + " WHERE s.organization_id = :org"
    params: Dict[str, Any] = {"org": org_id, "default_status": DEFAULT_STATUS.value}
    if applicable is not None:
        sql += " AND s.applicable = :applicable"
        params["applicable"] = bool(applicable)
    rows = conn.execute(text(sql), params).mappings().all()
    return sorted((_soa_row(r) for r in rows), key=lambda s: _control_sort_key(s["control_id"]))


def get_soa(conn: Connection, org_id: str, soa_id: str) -> Dict[str, Any]:
    row = conn.execute(
        text(_SOA_SELECT + " WHERE s.id = :id AND s.organization_id = :org"),
        {"id": soa_id, "org": org_id, "default_status": DEFAULT_STATUS.value},
    ).mappings().first()
    if row is None:
        raise NotFoundError("SoA record not found")
    return _soa_row(row)


def update_soa(conn: Connection, org_id: str, soa_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    _reject_nulls(changes, SOA_REQUIRED)
    current = get_soa(conn, org_id, soa_id)
    if current["locked_for_audit"]:
        raise ConflictError("SoA record is locked for audit")
    updates: Dict[str, Any] = {}
    for k, v in changes.items():
        if k not in SOA_COLUMNS:
            continue
        updates[k] = db.dumps(list(v or [])) if k in ("linked_risks", "linked_evidence") else v
    if updates:
        _update(conn, "soa_records", org_id, soa_id, updates)
    return get_soa(conn, org_id, soa_id)


def lock_soa(conn: Connection, org_id: str, locked_by: Optional[str]) -> int:
    now = db.utcnow()
    res = conn.execute(
        text(
            "UPDATE soa_records SET locked_for_audit = :locked, locked_by = :by, locked_at = :now, updated_at = :now "
            "WHERE organization_id = :org"
        ),
        {"locked": True, "by": locked_by, "now": now, "org": org_id},
    )
    return int(res.rowcount or 0)


def unlock_soa(conn: Connection, org_id: str, soa_id: str) -> Dict[str, Any]:
    _update(conn, "soa_records", org_id, soa_id, {"locked_for_audit": False, "locked_by": None, "locked_at": None})
    return get_soa(conn, org_id, soa_id)


# --- Evidence ---
def _evidence_row(row) -> Dict[str, Any]:
    d = dict(row)
    d["verified"] = False
    return d


def list_evidence(conn: Connection, org_id: str, control_id: Optional[str] = None, limit: Optional[int] = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
    where = "organization_id = :org"
    params: Dict[str, Any] = {"org": org_id}
    if control_id:
        where += " AND control_id = :cid"
        params["cid"] = control_id
    rows, total = _page(conn, "evidence", where, params, "uploaded_at DESC, id", limit, offset)
    return [_evidence_row(r) for r in rows], total


def get_evidence(conn: Connection, org_id: str, evidence_id: str) -> Dict[str, Any]:
    row = conn.execute(
        text("SELECT * FROM evidence WHERE id = :id AND organization_id = :org"), {"id": evidence_id, "org": org_id}
    ).mappings().first()
    if row is None:
        raise NotFoundError("Evidence not found")
    return _evidence_row(row)


def _check_control(conn: Connection, control_id: str) -> None:
    if not conn.execute(text("SELECT 1 FROM controls WHERE control_id = :cid"), {"cid": control_id}).first():
        raise NotFoundError("Control not found")


def create_evidence(conn: Connection, org_id: str, data: Mapping[str, Any], uploaded_by: Optional[str]) -> Dict[str, Any]:
    row = {c: _value(data.get(c)) for c in EVIDENCE_COLUMNS}
    row["stage_acceptable"] = row["stage_acceptable"] or "stage_2"
    _check_control(conn, row["control_id"])
    now = db.utcnow()
    evidence_id = db.new_id()
    conn.execute(
        text(
            "INSERT INTO evidence (id, organization_id, control_id, title, description, evidence_type, evidence_url, stage_acceptable, uploaded_by, uploaded_at, created_at, updated_at) "
            "VALUES (:id, :org, :control_id, :title, :description, :evidence_type, :evidence_url, :stage_acceptable, :uploaded_by, :now, :now, :now)"
        ),
        {**row, "id": evidence_id, "org": org_id, "uploaded_by": uploaded_by, "now": now},
    )
    return get_evidence(conn, org_id, evidence_id)


def update_evidence(conn: Connection, org_id: str, evidence_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    _reject_nulls(changes, EVIDENCE_REQUIRED)
    updates = {k: _value(v) for k, v in changes.items() if k in EVIDENCE_COLUMNS}
    if updates.get("control_id"):
        _check_control(conn, updates["control_id"])
    if updates:
        _update(conn, "evidence", org_id, evidence_id, updates)
    return get_evidence(conn, org_id, evidence_id)


def delete_evidence(conn: Connection, org_id: str, evidence_id: str) -> None:
    _delete(conn, "evidence", org_id, evidence_id)


def controls_with_evidence(conn: Connection, org_id: str) -> List[str]:
    rows = conn.execute(
        text("SELECT DISTINCT control_id FROM evidence WHERE organization_id = :org"), {"org": org_id}
    ).scalars().all()
    return sorted(rows, key=_control_sort_key)
