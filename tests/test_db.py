import pytest
from sqlalchemy import create_engine, text

from backend.isms import db, store
from backend.isms.errors import BadRequestError, ConflictError, NotFoundError


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'unit.db'}", future=True)
    db.init_db(eng)
    db.seed_controls_if_empty(eng)
    return eng


def test_controls_seeded_once(engine):
    assert db.seed_controls_if_empty(engine) == 0
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM controls")).scalar_one() == 93


def test_upsert_requires_declared_unique_key(engine):
    with engine.begin() as conn:
        with pytest.raises(ValueError):
            db.upsert(conn, db.intake_responses_table, {"question_key": "x"}, ("question_key",))


def test_upsert_overwrites_on_conflict(engine):
    with engine.begin() as conn:
        store.save_intake_responses(conn, "org", {"org_name": "Acme", "geography": ["europe"]})
        store.save_intake_responses(conn, "org", {"org_name": "Acme Ltd"})
        responses = store.get_intake_responses(conn, "org")
        n = conn.execute(text("SELECT COUNT(*) FROM intake_responses")).scalar_one()
    assert responses == {"geography": ["europe"], "org_name": "Acme Ltd"}
    assert n == 2


def test_user_bootstrap_is_idempotent(engine):
    with engine.begin() as conn:
        first = store.ensure_user(conn, "sub-1", "org", "contributor")
        second = store.ensure_user(conn, "sub-1", "org", "admin")
        orgs = conn.execute(text("SELECT COUNT(*) FROM organizations")).scalar_one()
    assert first["id"] == second["id"]
    assert second["role"] == "admin"
    assert orgs == 1


def test_scope_is_one_row_per_org(engine):
    scope = {"scope_statement": "v1", "exclusions": ["Office Wi-Fi"], "boundaries": {"logical": ["AWS"]}}
    with engine.begin() as conn:
        first = store.save_scope(conn, "org", scope, approved_by="u1")
        second = store.save_scope(conn, "org", {**scope, "scope_statement": "v2"}, approved_by="u2")
        saved = store.get_scope(conn, "org")
    assert first == second
    assert saved["scope_statement"] == "v2"
    assert saved["approved_by"] == "u2"
    assert saved["exclusions"] == ["Office Wi-Fi"]
    assert saved["boundaries"] == {"logical": ["AWS"]}


def test_rows_are_scoped_to_their_organization(engine):
    with engine.begin() as conn:
        asset = store.create_asset(conn, "org-a", {"name": "CRM", "asset_type": "software"})
        with pytest.raises(NotFoundError):
            store.get_asset(conn, "org-b", asset["id"])
        with pytest.raises(NotFoundError):
            store.update_asset(conn, "org-b", asset["id"], {"name": "Hijacked"})
        with pytest.raises(NotFoundError):
            store.create_risk(conn, "org-b", {"asset_id": asset["id"], "threat": "Theft"})
        assert store.list_assets(conn, "org-b") == ([], 0)
    assert asset["criticality"] == "medium"
    assert asset["in_scope"] is True


def test_control_applicability_drives_status(engine):
    with engine.begin() as conn:
        c = store.save_control_setting(conn, "org", "A.7.4", {"applicable": False, "implementation_status": "implemented"})
        assert (c["applicable"], c["implementation_status"]) == (False, "not_applicable")
        c = store.save_control_setting(conn, "org", "A.7.4", {"applicable": True})
        assert c["implementation_status"] == "gap"
        untouched = store.get_control(conn, "org", "A.7.5")
    assert untouched["applicable"] is True
    assert untouched["implementation_status"] == "gap"


def test_locked_soa_rejects_updates(engine):
    with engine.begin() as conn:
        now = db.utcnow()
        conn.execute(
            text(
                "INSERT INTO soa_records (id, organization_id, control_id, applicable, linked_risks, linked_evidence, locked_for_audit, created_at, updated_at) "
                "VALUES ('s1', 'org', 'A.5.1', :t, '[]', '[]', :f, :now, :now)"
            ),
            {"t": True, "f": False, "now": now},
        )
        assert store.lock_soa(conn, "org", "u1") == 1
        with pytest.raises(ConflictError):
            store.update_soa(conn, "org", "s1", {"justification": "late edit"})
        record = store.unlock_soa(conn, "org", "s1")
        assert record["locked_for_audit"] is False
        record = store.update_soa(conn, "org", "s1", {"linked_evidence": ["e1", "e2"]})
    assert record["linked_evidence"] == ["e1", "e2"]
    assert record["control_name"] == "Policies for information security"


def test_approval_log_lists_newest_first(engine):
    with engine.begin() as conn:
        store.insert_approval_log(conn, "org", "risk", "r1", "approved", "u1", comment="first")
        store.insert_approval_log(conn, "org", "risk", "r1", "approved", "u1", comment="second", metadata={"k": 1})
        store.insert_approval_log(conn, "other", "risk", "r9", "approved", "u9")
        rows, total = store.list_approval_logs(conn, "org", object_id="r1")
    assert total == 2
    assert {r["comment"] for r in rows} == {"first", "second"}
    assert any(r["metadata"] == {"k": 1} for r in rows)


def test_required_columns_cannot_be_cleared(engine):
    with engine.begin() as conn:
        asset = store.create_asset(conn, "org", {"name": "CRM", "asset_type": "software"})
        risk = store.create_risk(conn, "org", {"asset_id": asset["id"], "threat": "Theft", "impact": "high"})
        with pytest.raises(BadRequestError):
            store.update_risk(conn, "org", risk["id"], {"impact": None})
        with pytest.raises(BadRequestError):
            store.update_asset(conn, "org", asset["id"], {"criticality": None})
        with pytest.raises(BadRequestError):
            store.save_control_setting(conn, "org", "A.5.1", {"applicable": None})
        unchanged = store.get_risk(conn, "org", risk["id"])
    assert unchanged["impact"] == "high"
    assert unchanged["risk_level"] == risk["risk_level"]
