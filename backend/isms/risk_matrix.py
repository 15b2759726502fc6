from enum import Enum
from typing import Dict


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


# Rows are impact, columns likelihood.
RISK_MATRIX: Dict[RiskLevel, Dict[RiskLevel, RiskLevel]] = {
    RiskLevel.low: {
        RiskLevel.low: RiskLevel.low,
        RiskLevel.medium: RiskLevel.low,
        RiskLevel.high: RiskLevel.medium,
    },
    RiskLevel.medium: {
        RiskLevel.low: RiskLevel.low,
        RiskLevel.medium: RiskLevel.medium,
        RiskLevel.high: RiskLevel.high,
    },
    RiskLevel.high: {
        RiskLevel.low: RiskLevel.medium,
        RiskLevel.medium: RiskLevel.high,
        RiskLevel.high: RiskLevel.high,
    },
}


def risk_level(impact, likelihood) -> RiskLevel:
    return RISK_MATRIX[RiskLevel(impact)][RiskLevel(likelihood)]
