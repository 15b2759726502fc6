import pytest
from sqlalchemy import create_engine, text

from backend.isms import db, seeder
from backend.isms.intake_agent import AnnexAAssumption, DraftScope


RESPONSES = {
    "cloud_providers": ["aws", "google_workspace", "custom_cloud"],
    "primary_workspace": "google_workspace",
    "data_types": ["phi", "employee_data", "none"],
}


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'seed.db'}", future=True)
    db.init_db(eng)
    db.seed_controls_if_empty(eng)
    return eng


def _draft(**kw):
    base = {
        "scopeStatement": "Scope",
        "riskAreas": ["Ransomware on endpoints", "Third-party SaaS outage"],
        "annexAAssumptions": [
            {"controlId": "A.7.1", "applicability": "likely_not_applicable", "reasoning": "No offices"},
            {"controlId": "A.7.2", "applicability": "likely_not_applicable"},
            {"controlId": "A.8.1", "applicability": "likely_applicable", "reasoning": "Laptops in use"},
        ],
    }
    base.update(kw)
    return DraftScope.model_validate(base)


@pytest.mark.parametrize(
    "area,expected",
    [
        ("Unauthorized access to production", "Insufficient access controls or authentication mechanisms"),
        # "access" wins over "data" because it is checked first
        ("Data access by former employees", "Insufficient access controls or authentication mechanisms"),
        ("Customer data leakage", "Inadequate data protection or encryption controls"),
        ("Third-party processor failure", "Lack of vendor risk assessment and monitoring processes"),
        ("Delayed breach notification", "Insufficient incident detection and response capabilities"),
        ("Regulatory fines", "Gaps in regulatory compliance monitoring and documentation"),
        ("Disaster at hosting region", "Insufficient business continuity and disaster recovery planning"),
        ("Insider misuse", "Insufficient security awareness training and policy enforcement"),
        ("Ransomware", seeder.DEFAULT_VULNERABILITY),
    ],
)
def test_default_vulnerability(area, expected):
    assert seeder.default_vulnerability(area) == expected


def test_asset_rows_from_intake():
    rows = seeder.build_asset_rows("org-1", RESPONSES)
    names = [r["name"] for r in rows]
    assert names[:3] == ["Amazon Web Services (AWS)", "Google Workspace", "custom_cloud"]
    # workspace already listed as a cloud provider
    assert names.count("Google Workspace") == 1
    assert "Protected Health Information" in names
    by_name = {r["name"]: r for r in rows}
    assert by_name["Protected Health Information"]["criticality"] == "critical"
    assert by_name["Employee HR Data"]["criticality"] == "medium"
    assert by_name["Employee HR Data"]["asset_type"] == "data"
    assert names[-5:] == [a[0] for a in seeder.BASELINE_ASSETS]
    assert len(rows) == 3 + 2 + 5
    assert all(r["organization_id"] == "org-1" and r["in_scope"] for r in rows)


def test_workspace_added_when_not_a_cloud_provider():
    rows = seeder.build_asset_rows("o", {"cloud_providers": ["aws"], "primary_workspace": "slack_based"})
    assert "Slack" in [r["name"] for r in rows]
    rows = seeder.build_asset_rows("o", {"primary_workspace": "microsoft_365"})
    assert rows[0]["name"] == "Microsoft 365"


def test_baseline_only_without_answers():
    rows = seeder.build_asset_rows("o", {})
    assert len(rows) == len(seeder.BASELINE_ASSETS)


def test_control_rows_follow_assumptions():
    assumptions = _draft().annex_a_assumptions
    ids = ["A.5.1", "A.7.1", "A.7.2", "A.8.1"]
    oc = {r["control_id"]: r for r in seeder.build_organization_control_rows("o", ids, assumptions)}
    assert oc["A.5.1"] == {"organization_id": "o", "control_id": "A.5.1", "applicable": True, "justification": None, "implementation_status": "gap"}
    assert oc["A.7.1"]["applicable"] is False
    assert oc["A.7.1"]["implementation_status"] == "not_applicable"
    assert oc["A.7.1"]["justification"] == "No offices"
    assert oc["A.7.2"]["justification"] == seeder.NOT_APPLICABLE_JUSTIFICATION
    assert oc["A.8.1"]["justification"] == "Laptops in use"

    soa = {r["control_id"]: r for r in seeder.build_soa_rows("o", ids, assumptions)}
    assert soa["A.5.1"]["justification"] == seeder.SOA_DEFAULT_JUSTIFICATION
    assert soa["A.7.1"]["applicable"] is False
    assert soa["A.7.2"]["justification"] == seeder.SOA_DEFAULT_JUSTIFICATION
    assert soa["A.8.1"]["applicable"] is True
    assert all(r["locked_for_audit"] is False and r["linked_risks"] == "[]" for r in soa.values())


def test_needs_review_stays_applicable():
    assumptions = [AnnexAAssumption(control_id="A.5.7", applicability="needs_review")]
    row = seeder.build_organization_control_rows("o", ["A.5.7"], assumptions)[0]
    assert row["applicable"] is True


def test_seed_starter_data(engine):
    result = seeder.seed_starter_data(engine, "org-1", _draft(), RESPONSES)
    assert result.skipped is False
    assert result.errors == {}
    assert (result.assets, result.risks, result.organization_controls, result.soa_records) == (10, 2, 93, 93)
    with engine.connect() as conn:
        risks = conn.execute(text("SELECT threat, status, risk_level, treatment FROM risks ORDER BY threat")).mappings().all()
        na = conn.execute(
            text("SELECT COUNT(*) FROM soa_records WHERE organization_id = 'org-1' AND applicable = :f"), {"f": False}
        ).scalar_one()
    assert [r["threat"] for r in risks] == ["Ransomware on endpoints", "Third-party SaaS outage"]
    assert all(r["status"] == "draft" and r["risk_level"] == "medium" and r["treatment"] == "mitigate" for r in risks)
    assert na == 2


def test_seed_skips_when_assets_exist(engine):
    seeder.seed_starter_data(engine, "org-1", _draft(), RESPONSES)
    again = seeder.seed_starter_data(engine, "org-1", _draft(riskAreas=["Something new"]), RESPONSES)
    assert again.skipped is True
    assert again.risks == 0
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM risks")).scalar_one() == 2
    # another organization is seeded independently
    other = seeder.seed_starter_data(engine, "org-2", _draft(), {})
    assert other.skipped is False
    assert other.assets == len(seeder.BASELINE_ASSETS)


def test_seed_overwrites_earlier_control_settings(engine):
    from backend.isms import store

    with engine.begin() as conn:
        store.save_control_setting(conn, "org-1", "A.5.1", {"implementation_status": "implemented"})
    seeder.seed_starter_data(engine, "org-1", _draft(), {})
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT COUNT(*) FROM organization_controls WHERE organization_id = 'org-1'")
        ).scalar_one()
        a51 = store.get_control(conn, "org-1", "A.5.1")
    assert rows == 93
    assert a51["implementation_status"] == "gap"


def test_failed_group_does_not_abort_others(engine, monkeypatch):
    monkeypatch.setattr(seeder, "build_risk_rows", lambda org_id, areas: [{"organization_id": org_id, "threat": None}])
    result = seeder.seed_starter_data(engine, "org-3", _draft(), RESPONSES)
    assert "risks" in result.errors
    assert result.risks == 0
    assert result.assets == 10
    assert result.soa_records == 93
