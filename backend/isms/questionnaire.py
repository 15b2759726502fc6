import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel


class QuestionType(str, Enum):
    text = "text"
    textarea = "textarea"
    number = "number"
    select = "select"
    multi_select = "multi-select"


class QuestionCategory(str, Enum):
    organization = "organization"
    data = "data"
    technology = "technology"
    compliance = "compliance"
    customers = "customers"


class QuestionOption(BaseModel):
    value: str
    label: str


class IntakeQuestion(BaseModel):
    id: str
    question: str
    description: Optional[str] = None
    type: QuestionType
    options: List[QuestionOption] = []
    placeholder: Optional[str] = None
    required: bool = True
    category: QuestionCategory


def _opts(*pairs) -> List[QuestionOption]:
    return [QuestionOption(value=v, label=lbl) for v, lbl in pairs]


INTAKE_QUESTIONS: List[IntakeQuestion] = [
    # Organization profile
    IntakeQuestion(
        id="org_name",
        question="What is your organization name?",
        description="Legal name of your organization",
        type=QuestionType.text,
        placeholder="Acme Corporation",
        category=QuestionCategory.organization,
    ),
    IntakeQuestion(
        id="industry",
        question="What industry does your organization operate in?",
        description="Primary business sector",
        type=QuestionType.select,
        options=_opts(
            ("technology", "Technology / Software"),
            ("fintech", "Financial Technology (FinTech)"),
            ("healthcare", "Healthcare / HealthTech"),
            ("financial_services", "Financial Services / Banking"),
            ("ecommerce", "E-commerce / Retail"),
            ("manufacturing", "Manufacturing"),
            ("professional_services", "Professional Services / Consulting"),
            ("education", "Education / EdTech"),
            ("government", "Government / Public Sector"),
            ("media", "Media / Entertainment"),
            ("other", "Other"),
        ),
        category=QuestionCategory.organization,
    ),
    IntakeQuestion(
        id="headcount",
        question="How many employees does your organization have?",
        description="Total headcount including contractors",
        type=QuestionType.select,
        options=_opts(
            ("1-10", "1-10 employees"),
            ("11-50", "11-50 employees"),
            ("51-100", "51-100 employees"),
            ("101-200", "101-200 employees"),
            ("201-500", "201-500 employees"),
            ("501-1000", "501-1000 employees"),
            ("1000+", "1000+ employees"),
        ),
        category=QuestionCategory.organization,
    ),
    IntakeQuestion(
        id="geography",
        question="Where are your primary operations located?",
        description="Select all regions where you have significant operations",
        type=QuestionType.multi_select,
        options=_opts(
            ("north_america", "North America"),
            ("europe", "Europe (EU/UK)"),
            ("asia_pacific", "Asia Pacific"),
            ("middle_east", "Middle East"),
            ("latin_america", "Latin America"),
            ("africa", "Africa"),
            ("australia", "Australia / New Zealand"),
        ),
        category=QuestionCategory.organization,
    ),
    # Data & information
    IntakeQuestion(
        id="data_types",
        question="What types of sensitive data does your organization handle?",
        description="Select all that apply - this determines regulatory requirements",
        type=QuestionType.multi_select,
        options=_opts(
            ("pii", "Personal Identifiable Information (PII)"),
            ("phi", "Protected Health Information (PHI)"),
            ("financial", "Financial / Payment Card Data"),
            ("intellectual_property", "Intellectual Property / Trade Secrets"),
            ("customer_data", "Customer Business Data"),
            ("employee_data", "Employee HR Data"),
            ("authentication", "Authentication Credentials"),
            ("none", "No sensitive data"),
        ),
        category=QuestionCategory.data,
    ),
    IntakeQuestion(
        id="data_volume",
        question="Approximately how many customer/user records do you manage?",
        description="This helps scope your data protection requirements",
        type=QuestionType.select,
        options=_opts(
            ("less_1000", "Less than 1,000"),
            ("1000_10000", "1,000 - 10,000"),
            ("10000_100000", "10,000 - 100,000"),
            ("100000_1m", "100,000 - 1 million"),
            ("1m_plus", "More than 1 million"),
        ),
        category=QuestionCategory.data,
    ),
    # Technology stack
    IntakeQuestion(
        id="cloud_providers",
        question="Which cloud platforms do you use?",
        description="Select all that apply",
        type=QuestionType.multi_select,
        options=_opts(
            ("aws", "Amazon Web Services (AWS)"),
            ("azure", "Microsoft Azure"),
            ("gcp", "Google Cloud Platform"),
            ("google_workspace", "Google Workspace"),
            ("microsoft_365", "Microsoft 365"),
            ("heroku", "Heroku"),
            ("vercel", "Vercel"),
            ("digitalocean", "DigitalOcean"),
            ("on_premise", "On-premise / Self-hosted"),
            ("other", "Other"),
        ),
        category=QuestionCategory.technology,
    ),
    IntakeQuestion(
        id="primary_workspace",
        question="What is your primary collaboration platform?",
        description="Where your team communicates and shares documents",
        type=QuestionType.select,
        options=_opts(
            ("google_workspace", "Google Workspace (Gmail, Drive, Docs)"),
            ("microsoft_365", "Microsoft 365 (Outlook, SharePoint, Teams)"),
            ("slack_based", "Slack + Other tools"),
            ("notion", "Notion"),
            ("other", "Other"),
        ),
        category=QuestionCategory.technology,
    ),
    IntakeQuestion(
        id="development_practices",
        question="Do you develop software or applications?",
        description="This determines which technical controls are relevant",
        type=QuestionType.select,
        options=_opts(
            ("yes_internal", "Yes - We build software for internal use"),
            ("yes_external", "Yes - We build software for customers (SaaS/product)"),
            ("yes_both", "Yes - Both internal and customer-facing"),
            ("no", "No - We use third-party software only"),
        ),
        category=QuestionCategory.technology,
    ),
    IntakeQuestion(
        id="remote_work",
        question="What is your work arrangement?",
        description="This affects physical and endpoint security controls",
        type=QuestionType.select,
        options=_opts(
            ("fully_remote", "Fully remote (no office)"),
            ("hybrid", "Hybrid (office + remote)"),
            ("office_only", "Office-based only"),
        ),
        category=QuestionCategory.technology,
    ),
    # Compliance goals
    IntakeQuestion(
        id="compliance_drivers",
        question="What is driving your ISO 27001 certification?",
        description="Select all that apply",
        type=QuestionType.multi_select,
        options=_opts(
            ("customer_requirement", "Customer/Contract requirement"),
            ("enterprise_sales", "Enterprise sales enablement"),
            ("regulatory", "Regulatory requirement"),
            ("risk_management", "Proactive risk management"),
            ("competitive", "Competitive advantage"),
            ("investor", "Investor/Board requirement"),
            ("insurance", "Cyber insurance requirement"),
        ),
        category=QuestionCategory.compliance,
    ),
    IntakeQuestion(
        id="existing_certifications",
        question="Do you have any existing security certifications or frameworks?",
        description="Select all that apply",
        type=QuestionType.multi_select,
        options=_opts(
            ("soc2", "SOC 2"),
            ("iso27001_old", "ISO 27001 (previous version)"),
            ("hipaa", "HIPAA"),
            ("pci_dss", "PCI DSS"),
            ("gdpr", "GDPR compliance program"),
            ("nist", "NIST CSF"),
            ("none", "None"),
        ),
        category=QuestionCategory.compliance,
    ),
    IntakeQuestion(
        id="certification_timeline",
        question="What is your target timeline for ISO 27001 certification?",
        description="When do you need to be audit-ready?",
        type=QuestionType.select,
        options=_opts(
            ("3_months", "3 months or less"),
            ("6_months", "3-6 months"),
            ("12_months", "6-12 months"),
            ("no_rush", "No specific timeline"),
        ),
        category=QuestionCategory.compliance,
    ),
    # Customer context
    IntakeQuestion(
        id="customer_types",
        question="Who are your primary customers?",
        description="This helps determine interested parties and requirements",
        type=QuestionType.multi_select,
        options=_opts(
            ("enterprise", "Enterprise (Fortune 500, large corporations)"),
            ("smb", "Small & Medium Business"),
            ("startups", "Startups"),
            ("government", "Government / Public Sector"),
            ("consumers", "Individual Consumers (B2C)"),
            ("healthcare", "Healthcare Organizations"),
            ("financial", "Financial Institutions"),
        ),
        category=QuestionCategory.customers,
    ),
    IntakeQuestion(
        id="customer_security_requirements",
        question="Do your customers typically require security questionnaires or audits?",
        description="This indicates the level of security scrutiny you face",
        type=QuestionType.select,
        options=_opts(
            ("frequently", "Yes, frequently (multiple per month)"),
            ("sometimes", "Sometimes (a few per quarter)"),
            ("rarely", "Rarely (once or twice a year)"),
            ("never", "Never"),
        ),
        category=QuestionCategory.customers,
    ),
]

QUESTION_CATEGORIES: List[Dict[str, str]] = [
    {"id": QuestionCategory.organization.value, "label": "Organization Profile"},
    {"id": QuestionCategory.data.value, "label": "Data & Information"},
    {"id": QuestionCategory.technology.value, "label": "Technology Stack"},
    {"id": QuestionCategory.compliance.value, "label": "Compliance Goals"},
    {"id": QuestionCategory.customers.value, "label": "Customer Context"},
]

REQUIRED_KEYS: List[str] = [q.id for q in INTAKE_QUESTIONS if q.required]


def questions_by_category(category: QuestionCategory) -> List[IntakeQuestion]:
    return [q for q in INTAKE_QUESTIONS if q.category == category]


def is_answered(question: IntakeQuestion, value: Any) -> bool:
    if question.type == QuestionType.multi_select:
        return isinstance(value, list) and len(value) > 0
    return value is not None and value != ""


def calculate_progress(responses: Mapping[str, Any]) -> int:
    """Percentage of the fixed question list answered in ``responses``.

    Keys that are not questions are ignored, so the denominator is always the
    number of questions. Halves round up.
    """
    answered = sum(1 for q in INTAKE_QUESTIONS if is_answered(q, responses.get(q.id)))
    return int(math.floor(answered * 100 / len(INTAKE_QUESTIONS) + 0.5))
