import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from backend.isms.ai_model import ModelClient, _extract_json
from backend.isms.errors import (
    IntakeValidationError,
    ModelConfigurationError,
    UpstreamGenerationError,
    UpstreamTimeoutError,
)
from backend.isms.intake_agent import (
    DraftScope,
    build_scope_prompt,
    generate_draft_scope,
    require_valid_responses,
    validate_intake_responses,
)
from backend.isms.questionnaire import REQUIRED_KEYS


DRAFT = {
    "scopeStatement": "The ISMS covers the production SaaS platform.",
    "boundaries": {"physical": [], "logical": ["AWS"], "organizational": ["Engineering"]},
    "exclusions": [],
    "interestedParties": [],
    "regulatoryRequirements": [],
    "annexAAssumptions": [
        {"controlId": "A.7.1", "controlName": "Physical security perimeters", "applicability": "likely_not_applicable", "reasoning": "Fully remote"}
    ],
    "riskAreas": ["Insider threat"],
    "recommendations": [],
}


def _responses():
    return {k: (["x"] if k in ("geography", "data_types", "cloud_providers") else "x") for k in REQUIRED_KEYS}


def _completion(content, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.text = "upstream said no"
    resp.json.return_value = {"choices": [{"message": {"content": content}}]}
    return resp


def test_validation_lists_missing_keys_in_question_order():
    responses = _responses()
    responses["org_name"] = ""
    responses["geography"] = []
    del responses["remote_work"]
    valid, missing = validate_intake_responses(responses)
    assert valid is False
    assert missing == ["org_name", "geography", "remote_work"]
    with pytest.raises(IntakeValidationError) as ei:
        require_valid_responses(responses)
    assert ei.value.missing == missing


def test_validation_passes_complete_answers():
    assert validate_intake_responses(_responses()) == (True, [])


def test_prompt_embeds_responses_as_json():
    prompt = build_scope_prompt({"org_name": "Acme"})
    assert '"org_name": "Acme"' in prompt
    assert "{responses}" not in prompt
    assert '"scopeStatement"' in prompt


def test_draft_scope_aliases():
    draft = DraftScope.model_validate(DRAFT)
    assert draft.annex_a_assumptions[0].control_id == "A.7.1"
    assert draft.risk_areas == ["Insider threat"]
    dumped = draft.model_dump(by_alias=True)
    assert dumped["annexAAssumptions"][0]["controlId"] == "A.7.1"
    # missing fields fall back to empty values
    empty = DraftScope.model_validate({})
    assert empty.scope_statement == "" and empty.boundaries.logical == []


def test_draft_scope_nulls_fall_back_to_defaults():
    draft = DraftScope.model_validate(
        {
            "scopeStatement": None,
            "boundaries": None,
            "exclusions": None,
            "riskAreas": None,
            "interestedParties": [{"name": "Customers", "expectations": None}],
            "annexAAssumptions": [{"controlId": "A.8.1", "applicability": None, "reasoning": None}],
        }
    )
    assert draft.scope_statement == ""
    assert draft.boundaries.physical == [] and draft.exclusions == [] and draft.risk_areas == []
    assert draft.interested_parties[0].expectations == []
    assert draft.annex_a_assumptions[0].reasoning == ""
    assert draft.annex_a_assumptions[0].applicability == "needs_review"
    # defaults are copied, not shared
    draft.risk_areas.append("Phishing")
    assert DraftScope.model_validate({"riskAreas": None}).risk_areas == []


def test_generate_draft_scope_over_http():
    client = ModelClient(http_base="https://llm.example", api_key="k", model="m", timeout=5)
    with patch.object(requests.Session, "post", return_value=_completion("```json\n" + json.dumps(DRAFT) + "\n```")) as post:
        draft = generate_draft_scope(client, _responses())
    assert draft.scope_statement == DRAFT["scopeStatement"]
    url = post.call_args[0][0]
    body = json.loads(post.call_args[1]["data"])
    assert url == "https://llm.example/v1/chat/completions"
    assert body["model"] == "m"
    assert body["temperature"] == 0.3
    assert body["response_format"] == {"type": "json_object"}
    assert post.call_args[1]["timeout"] == 5


def test_timeout_is_retryable():
    client = ModelClient(api_key="k")
    with patch.object(requests.Session, "post", side_effect=requests.Timeout("slow")):
        with pytest.raises(UpstreamTimeoutError) as ei:
            generate_draft_scope(client, _responses())
    assert ei.value.retryable is True
    assert ei.value.status_code == 504


@pytest.mark.parametrize(
    "response",
    [
        _completion("not json at all"),
        _completion("", status=200),
        _completion("{}", status=500),
        _completion(json.dumps({"riskAreas": "should be a list"})),
    ],
)
def test_bad_upstream_output_is_generation_error(response):
    client = ModelClient(api_key="k")
    with patch.object(requests.Session, "post", return_value=response):
        with pytest.raises(UpstreamGenerationError) as ei:
            generate_draft_scope(client, _responses())
    assert not isinstance(ei.value, UpstreamTimeoutError)
    assert ei.value.status_code == 502


def test_missing_api_key_fails_only_when_called(monkeypatch):
    monkeypatch.delenv("LLM_HTTP_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = ModelClient.from_env()
    assert client.api_key is None
    with pytest.raises(ModelConfigurationError):
        generate_draft_scope(client, _responses())


def test_extract_json():
    assert _extract_json('{"a": 1}') == {"a": 1}
    assert _extract_json('Here you go: {"a": 1} thanks') == {"a": 1}
    assert _extract_json("[1, 2]") is None
    assert _extract_json("") is None
