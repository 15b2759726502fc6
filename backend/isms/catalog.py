import json
import math
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional


CATALOG_FILE = Path(__file__).resolve().parent / "data" / "annex_a_controls.json"


class ControlTheme(str, Enum):
    organizational = "organizational"
    people = "people"
    physical = "physical"
    technological = "technological"


class ImplementationStatus(str, Enum):
    implemented = "implemented"
    partial = "partial"
    gap = "gap"
    not_applicable = "not_applicable"


THEME_LABELS: Dict[ControlTheme, str] = {
    ControlTheme.organizational: "Organizational Controls",
    ControlTheme.people: "People Controls",
    ControlTheme.physical: "Physical Controls",
    ControlTheme.technological: "Technological Controls",
}

# ISO/IEC 27001:2022 Annex A
THEME_COUNTS: Dict[ControlTheme, int] = {
    ControlTheme.organizational: 37,
    ControlTheme.people: 8,
    ControlTheme.physical: 14,
    ControlTheme.technological: 34,
}

DEFAULT_APPLICABLE = True
DEFAULT_STATUS = ImplementationStatus.gap


def load_catalog(path: Path = CATALOG_FILE) -> List[Dict[str, str]]:
    return json.loads(path.read_text(encoding="utf-8"))


ANNEX_A_CONTROLS: List[Dict[str, str]] = load_catalog()
_BY_CONTROL_ID: Dict[str, Dict[str, str]] = {c["control_id"]: c for c in ANNEX_A_CONTROLS}


def get_control(control_id: str) -> Optional[Dict[str, str]]:
    return _BY_CONTROL_ID.get(control_id)


def controls_by_theme(controls: Optional[Iterable[Mapping[str, Any]]] = None) -> Dict[str, List[Mapping[str, Any]]]:
    source = ANNEX_A_CONTROLS if controls is None else list(controls)
    grouped: Dict[str, List[Mapping[str, Any]]] = {t.value: [] for t in ControlTheme}
    for c in source:
        grouped.setdefault(c["theme"], []).append(c)
    return grouped


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, ImplementationStatus) else str(status)


def control_stats(controls: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    """Count controls by applicability and implementation status.

    Implementation counts only consider applicable controls; a control marked
    not applicable never contributes to completeness.
    """
    rows = list(controls)
    applicable = [c for c in rows if c.get("applicable", DEFAULT_APPLICABLE)]
    statuses = [_status_value(c.get("implementation_status", DEFAULT_STATUS)) for c in applicable]
    return {
        "total": len(rows),
        "applicable": len(applicable),
        "not_applicable": len(rows) - len(applicable),
        "implemented": statuses.count(ImplementationStatus.implemented.value),
        "partial": statuses.count(ImplementationStatus.partial.value),
        "gap": statuses.count(ImplementationStatus.gap.value),
    }


def completion_percentage(stats: Mapping[str, int]) -> int:
    applicable = stats.get("applicable", 0)
    if not applicable:
        return 0
    done = stats.get("implemented", 0) + stats.get("partial", 0)
    return int(math.floor(done * 100 / applicable + 0.5))
