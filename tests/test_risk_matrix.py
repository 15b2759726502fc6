import pytest

from backend.isms.risk_matrix import RISK_MATRIX, RiskLevel, risk_level


@pytest.mark.parametrize(
    "impact,likelihood,expected",
    [
        ("low", "low", "low"),
        ("low", "medium", "low"),
        ("low", "high", "medium"),
        ("medium", "low", "low"),
        ("medium", "medium", "medium"),
        ("medium", "high", "high"),
        ("high", "low", "medium"),
        ("high", "medium", "high"),
        ("high", "high", "high"),
    ],
)
def test_risk_level(impact, likelihood, expected):
    assert risk_level(impact, likelihood) == RiskLevel(expected)


def test_matrix_covers_every_pair():
    assert set(RISK_MATRIX) == set(RiskLevel)
    for row in RISK_MATRIX.values():
        assert set(row) == set(RiskLevel)


def test_unknown_level_rejected():
    with pytest.raises(ValueError):
        risk_level("critical", "low")
