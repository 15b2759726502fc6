"""Human sign-off on AI drafts, risks and the Statement of Applicability.

Each approval writes the approved state and appends to ``approval_logs``.
The log has no update or delete path.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.engine import Engine

from . import store
from .errors import PermissionDenied, PersistenceError
from .intake_agent import DraftScope
from .logging_config import log_event


APPROVER_ROLES = {"admin", "consultant"}
DEFAULT_SCOPE_COMMENT = "ISMS scope approved via intake questionnaire"


def require_approver(user: Mapping[str, Any], message: str = "Insufficient permissions to approve") -> None:
    if user.get("role") not in APPROVER_ROLES:
        raise PermissionDenied(message)


def approve_scope(
    engine: Engine,
    user: Mapping[str, Any],
    draft: DraftScope,
    comment: Optional[str] = None,
    responses: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> str:
    """Persist an approved scope and record who approved it.

    Only the scope write is fatal. The audit row and the response snapshot are
    best effort: their failures are logged and the approval still stands.
    """
    require_approver(user, "Insufficient permissions to approve scope")
    org_id = user["organization_id"]
    approver = user.get("id")

    try:
        with engine.begin() as conn:
            scope_id = store.save_scope(conn, org_id, draft.model_dump(), approver)
    except Exception as exc:
        log_event("scope_save_failed", logging.ERROR, organization_id=org_id, error=str(exc))
        raise PersistenceError("Failed to save scope") from exc

    metadata = {
        "source": "intake_agent",
        "annexAAssumptions": [a.model_dump(by_alias=True) for a in draft.annex_a_assumptions],
        "riskAreas": list(draft.risk_areas),
        "recommendations": list(draft.recommendations),
    }
    try:
        with engine.begin() as conn:
            store.insert_approval_log(
                conn, org_id, "scope", scope_id, "approved", approver,
                comment=comment or DEFAULT_SCOPE_COMMENT,
                metadata=metadata,
                request_id=request_id,
            )
    except Exception as exc:
        log_event("approval_log_failed", logging.ERROR, organization_id=org_id, object_type="scope", error=str(exc))

    if responses:
        try:
            with engine.begin() as conn:
                store.save_intake_responses(conn, org_id, responses)
                store.update_organization_profile(conn, org_id, responses)
        except Exception as exc:
            log_event("intake_responses_save_failed", logging.ERROR, organization_id=org_id, error=str(exc))

    log_event("scope_approved", organization_id=org_id, scope_id=scope_id, approved_by=approver)
    return scope_id


def get_saved_scope(engine: Engine, org_id: str) -> Optional[Dict[str, Any]]:
    with engine.connect() as conn:
        scope = store.get_scope(conn, org_id)
        if scope is None:
            return None
        log = store.latest_approval_log(conn, org_id, "scope")
    meta = (log or {}).get("metadata") or {}
    scope["annex_a_assumptions"] = meta.get("annexAAssumptions", [])
    scope["risk_areas"] = meta.get("riskAreas", [])
    scope["recommendations"] = meta.get("recommendations", [])
    return scope


def approve_risk(engine: Engine, user: Mapping[str, Any], risk_id: str, comment: Optional[str] = None, request_id: Optional[str] = None) -> Dict[str, Any]:
    require_approver(user, "Insufficient permissions to approve risks")
    org_id = user["organization_id"]
    with engine.begin() as conn:
        risk = store.mark_risk_approved(conn, org_id, risk_id, user.get("id"))
        store.insert_approval_log(
            conn, org_id, "risk", risk_id, "approved", user.get("id"),
            comment=comment,
            metadata={"risk_level": risk["risk_level"], "treatment": risk["treatment"]},
            request_id=request_id,
        )
    log_event("risk_approved", organization_id=org_id, risk_id=risk_id, approved_by=user.get("id"))
    return risk


def lock_soa_for_audit(engine: Engine, user: Mapping[str, Any], comment: Optional[str] = None, request_id: Optional[str] = None) -> int:
    require_approver(user, "Insufficient permissions to lock the Statement of Applicability")
    org_id = user["organization_id"]
    with engine.begin() as conn:
        locked = store.lock_soa(conn, org_id, user.get("id"))
        store.insert_approval_log(
            conn, org_id, "soa", org_id, "locked", user.get("id"),
            comment=comment,
            metadata={"records": locked},
            request_id=request_id,
        )
    log_event("soa_locked", organization_id=org_id, records=locked)
    return locked


def unlock_soa_record(engine: Engine, user: Mapping[str, Any], soa_id: str, request_id: Optional[str] = None) -> Dict[str, Any]:
    require_approver(user, "Insufficient permissions to unlock SoA records")
    org_id = user["organization_id"]
    with engine.begin() as conn:
        record = store.unlock_soa(conn, org_id, soa_id)
        store.insert_approval_log(conn, org_id, "soa", soa_id, "unlocked", user.get("id"), request_id=request_id)
    log_event("soa_unlocked", organization_id=org_id, soa_id=soa_id)
    return record
