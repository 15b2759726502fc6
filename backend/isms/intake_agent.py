"""Context intake agent: turns questionnaire answers into a draft ISMS scope.

The agent only drafts. Nothing it returns is persisted until a human approves
it through :func:`backend.isms.approvals.approve_scope`.
"""
import copy
import json
import logging
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from .ai_model import ModelClient
from .errors import IntakeValidationError, UpstreamGenerationError, UpstreamTimeoutError
from .logging_config import log_event
from .questionnaire import REQUIRED_KEYS


class _CamelModel(BaseModel):
    model_config = {"populate_by_name": True}

    @field_validator("*", mode="before")
    @classmethod
    def null_as_default(cls, value: Any, info: ValidationInfo) -> Any:
        # Models emit null for fields they have nothing to say about
        if value is None:
            return copy.deepcopy(cls.model_fields[info.field_name].get_default(call_default_factory=True))
        return value


class ScopeBoundaries(_CamelModel):
    physical: List[str] = []
    logical: List[str] = []
    organizational: List[str] = []


class InterestedParty(_CamelModel):
    name: str = ""
    type: str = "external"  # internal | external
    expectations: List[str] = []
    requirements: List[str] = []


class RegulatoryRequirement(_CamelModel):
    regulation: str = ""
    description: str = ""
    applicable: bool = False
    reasoning: str = ""


class AnnexAAssumption(_CamelModel):
    control_id: str = Field("", alias="controlId")
    control_name: str = Field("", alias="controlName")
    applicability: str = "needs_review"  # likely_applicable | likely_not_applicable | needs_review
    reasoning: str = ""


class DraftScope(_CamelModel):
    scope_statement: str = Field("", alias="scopeStatement")
    boundaries: ScopeBoundaries = ScopeBoundaries()
    exclusions: List[str] = []
    interested_parties: List[InterestedParty] = Field([], alias="interestedParties")
    regulatory_requirements: List[RegulatoryRequirement] = Field([], alias="regulatoryRequirements")
    annex_a_assumptions: List[AnnexAAssumption] = Field([], alias="annexAAssumptions")
    risk_areas: List[str] = Field([], alias="riskAreas")
    recommendations: List[str] = []


INTAKE_SYSTEM_PROMPT = """You are the Context Intake Agent for an ISO 27001 compliance management system.

Your role is to analyze organization context and generate a draft ISMS scope that will be reviewed and approved by humans.

CRITICAL RULES:
1. You DRAFT - humans APPROVE. Never assume anything is final.
2. Be conservative in your assumptions - when uncertain, flag for review.
3. All outputs must reference specific ISO 27001:2022 clauses or Annex A controls where relevant.
4. Consider the organization's size, industry, and risk profile in all recommendations.
5. Focus on what's NECESSARY for certification, not what's ideal.

When analyzing responses, consider:
- Industry-specific regulations (HIPAA for healthcare, PCI DSS for payment data, etc.)
- Geographic regulations (GDPR for EU, CCPA for California, etc.)
- Customer expectations based on their types (enterprise customers have stricter requirements)
- Technical complexity based on their stack and development practices
- Timeline urgency for prioritization

Output JSON only, no markdown formatting."""

SCOPE_GENERATION_PROMPT = """Based on the intake questionnaire responses, generate a comprehensive draft ISMS scope.

Intake Responses:
{responses}

Generate a JSON response with this exact structure:
{
  "scopeStatement": "A 2-3 sentence description of what the ISMS covers",
  "boundaries": {
    "physical": ["List of physical locations/assets in scope"],
    "logical": ["List of systems, applications, networks in scope"],
    "organizational": ["List of departments, teams, processes in scope"]
  },
  "exclusions": ["Specific items explicitly excluded with justification"],
  "interestedParties": [
    {
      "name": "Party name",
      "type": "internal or external",
      "expectations": ["What they expect"],
      "requirements": ["Specific requirements they impose"]
    }
  ],
  "regulatoryRequirements": [
    {
      "regulation": "Regulation name",
      "description": "Brief description",
      "applicable": true/false,
      "reasoning": "Why applicable or not"
    }
  ],
  "annexAAssumptions": [
    {
      "controlId": "A.X.X",
      "controlName": "Control name",
      "applicability": "likely_applicable|likely_not_applicable|needs_review",
      "reasoning": "Brief reasoning"
    }
  ],
  "riskAreas": ["Key risk areas to focus on based on the profile"],
  "recommendations": ["Specific recommendations for this organization"]
}

Focus on:
1. Making the scope clear and auditable
2. Identifying ALL relevant interested parties
3. Flagging ALL potentially applicable regulations
4. Only include Annex A assumptions for controls that clearly apply or don't apply based on the context
5. Being conservative - when in doubt, mark as "needs_review\""""


def validate_intake_responses(responses: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    missing: List[str] = []
    for key in REQUIRED_KEYS:
        value = responses.get(key)
        if value is None or value == "":
            missing.append(key)
        elif isinstance(value, list) and len(value) == 0:
            missing.append(key)
    return len(missing) == 0, missing


def require_valid_responses(responses: Mapping[str, Any]) -> None:
    valid, missing = validate_intake_responses(responses)
    if not valid:
        raise IntakeValidationError(missing)


def build_scope_prompt(responses: Mapping[str, Any]) -> str:
    formatted = json.dumps(dict(responses), indent=2)
    return SCOPE_GENERATION_PROMPT.replace("{responses}", formatted)


def generate_draft_scope(client: ModelClient, responses: Mapping[str, Any]) -> DraftScope:
    prompt = build_scope_prompt(responses)
    try:
        raw: Dict[str, Any] = client.generate_structured(INTAKE_SYSTEM_PROMPT, prompt, temperature=0.3)
        draft = DraftScope.model_validate(raw)
    except UpstreamTimeoutError as exc:
        log_event("draft_scope_failed", logging.ERROR, error=str(exc), retryable=True)
        raise UpstreamTimeoutError() from exc
    except (UpstreamGenerationError, ValidationError) as exc:
        log_event("draft_scope_failed", logging.ERROR, error=str(exc), retryable=False)
        raise UpstreamGenerationError("Failed to generate draft ISMS scope") from exc
    log_event(
        "draft_scope_generated",
        org_name=responses.get("org_name"),
        assumptions=len(draft.annex_a_assumptions),
        risk_areas=len(draft.risk_areas),
    )
    return draft
