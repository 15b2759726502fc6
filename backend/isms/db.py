import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.engine import Connection, Engine

from .catalog import ANNEX_A_CONTROLS


ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_DB_URL = os.getenv("DATABASE_URL", f"sqlite:///{ROOT_DIR}/backend/isms.db")

engine: Engine = create_engine(DEFAULT_DB_URL, future=True)
metadata = MetaData()


organizations_table = Table(
    "organizations",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("industry", String),
    Column("headcount", String),
    Column("geography", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

users_table = Table(
    "users",
    metadata,
    Column("id", String, primary_key=True),
    Column("auth_subject", String, nullable=False),
    Column("organization_id", String, ForeignKey("organizations.id"), nullable=False),
    Column("email", String),
    Column("full_name", String),
    Column("role", String, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    UniqueConstraint("auth_subject", name="uq_users_auth_subject"),
)

intake_responses_table = Table(
    "intake_responses",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("question_key", String, nullable=False),
    Column("response", String),  # JSON
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    UniqueConstraint("organization_id", "question_key", name="uq_intake_responses_org_key"),
)

isms_scopes_table = Table(
    "isms_scopes",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("scope_statement", String, nullable=False),
    Column("boundaries", String),  # JSON
    Column("exclusions", String),
    Column("interested_parties", String),  # JSON
    Column("regulatory_requirements", String),  # JSON
    Column("approved_by", String),
    Column("approved_at", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    UniqueConstraint("organization_id", name="uq_isms_scopes_org"),
)

approval_logs_table = Table(
    "approval_logs",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("object_type", String, nullable=False),
    Column("object_id", String, nullable=False),
    Column("action", String, nullable=False),
    Column("approved_by", String),
    Column("approved_at", String, nullable=False),
    Column("comment", String),
    Column("metadata", String),  # JSON
    Column("request_id", String),
    Index("ix_approval_logs_object", "object_type", "object_id"),
    Index("ix_approval_logs_org_approved", "organization_id", "approved_at"),
)

assets_table = Table(
    "assets",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False, index=True),
    Column("name", String, nullable=False),
    Column("asset_type", String, nullable=False),
    Column("description", String),
    Column("owner_id", String),
    Column("criticality", String, nullable=False),
    Column("in_scope", Boolean, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

risks_table = Table(
    "risks",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False, index=True),
    Column("asset_id", String, ForeignKey("assets.id", ondelete="SET NULL")),
    Column("threat", String, nullable=False),
    Column("vulnerability", String),
    Column("impact", String, nullable=False),
    Column("likelihood", String, nullable=False),
    Column("risk_level", String, nullable=False),
    Column("treatment", String, nullable=False),
    Column("treatment_plan", String),
    Column("status", String, nullable=False),
    Column("owner_id", String),
    Column("approved_by", String),
    Column("approved_at", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

controls_table = Table(
    "controls",
    metadata,
    Column("control_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("intent", String),
    Column("theme", String, nullable=False),
)

organization_controls_table = Table(
    "organization_controls",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("control_id", String, ForeignKey("controls.control_id"), nullable=False),
    Column("applicable", Boolean, nullable=False),
    Column("justification", String),
    Column("implementation_status", String, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    UniqueConstraint("organization_id", "control_id", name="uq_organization_controls_org_control"),
)

soa_records_table = Table(
    "soa_records",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("control_id", String, ForeignKey("controls.control_id"), nullable=False),
    Column("applicable", Boolean, nullable=False),
    Column("justification", String),
    Column("linked_risks", String),  # JSON list of risk ids
    Column("linked_evidence", String),  # JSON list of evidence ids
    Column("locked_for_audit", Boolean, nullable=False),
    Column("locked_by", String),
    Column("locked_at", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    UniqueConstraint("organization_id", "control_id", name="uq_soa_records_org_control"),
)

evidence_table = Table(
    "evidence",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False, index=True),
    Column("control_id", String, ForeignKey("controls.control_id"), nullable=False),
    Column("title", String, nullable=False),
    Column("description", String),
    Column("evidence_type", String, nullable=False),
    Column("evidence_url", String, nullable=False),
    Column("stage_acceptable", String, nullable=False),
    Column("uploaded_by", String),
    Column("uploaded_at", String, nullable=False),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)


def init_db(bind: Optional[Engine] = None):
    metadata.create_all(bind or engine)


def seed_controls_if_empty(bind: Optional[Engine] = None) -> int:
    with (bind or engine).begin() as conn:
        cnt = conn.execute(text("SELECT COUNT(1) FROM controls")).scalar_one()
        if cnt and int(cnt) > 0:
            return 0
        conn.execute(
            text(
                "INSERT INTO controls (control_id, name, intent, theme) VALUES (:control_id, :name, :intent, :theme) "
                "ON CONFLICT (control_id) DO NOTHING"
            ),
            [dict(c) for c in ANNEX_A_CONTROLS],
        )
    return len(ANNEX_A_CONTROLS)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value)


def loads(value: Optional[str], default: Any = None) -> Any:
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        return value
    return json.loads(value)


def _unique_keys(table: Table) -> List[tuple]:
    keys = [tuple(c.name for c in table.primary_key.columns)]
    for cons in table.constraints:
        if isinstance(cons, UniqueConstraint):
            keys.append(tuple(c.name for c in cons.columns))
    return keys


def upsert(
    conn: Connection,
    table: Table,
    values: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
    conflict_cols: Sequence[str],
    update_cols: Optional[Sequence[str]] = None,
):
    """Insert rows or overwrite them on a declared unique key.

    ``conflict_cols`` must name a unique constraint (or the primary key) that
    exists on ``table``. Columns not listed in ``update_cols`` keep their
    stored value on conflict; by default everything except the key, ``id`` and
    ``created_at`` is overwritten.
    """
    if tuple(conflict_cols) not in _unique_keys(table):
        raise ValueError(f"{table.name} has no unique constraint on {tuple(conflict_cols)}")
    rows: List[Dict[str, Any]] = [dict(values)] if isinstance(values, Mapping) else [dict(v) for v in values]
    if not rows:
        return None
    cols = list(rows[0].keys())
    if update_cols is None:
        update_cols = [c for c in cols if c not in conflict_cols and c not in ("id", "created_at")]
    sql = (
        f"INSERT INTO {table.name} ({', '.join(cols)}) VALUES ({', '.join(':' + c for c in cols)}) "
        f"ON CONFLICT ({', '.join(conflict_cols)}) "
    )
    if update_cols:
        sql += "DO UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in update_cols)
    else:
        sql += "DO NOTHING"
    return conn.execute(text(sql), rows if len(rows) > 1 else rows[0])
