from backend.isms.questionnaire import (
    INTAKE_QUESTIONS,
    REQUIRED_KEYS,
    QuestionCategory,
    calculate_progress,
    is_answered,
    questions_by_category,
)


def _question(qid):
    return next(q for q in INTAKE_QUESTIONS if q.id == qid)


def test_fifteen_questions_in_five_categories():
    assert len(INTAKE_QUESTIONS) == 15
    assert len({q.id for q in INTAKE_QUESTIONS}) == 15
    counts = {c: len(questions_by_category(c)) for c in QuestionCategory}
    assert sum(counts.values()) == 15
    assert all(n > 0 for n in counts.values())
    assert REQUIRED_KEYS[0] == "org_name"
    assert len(REQUIRED_KEYS) == 15


def test_select_questions_have_options():
    for q in INTAKE_QUESTIONS:
        if q.type.value in ("select", "multi-select"):
            assert q.options, q.id


def test_is_answered():
    assert is_answered(_question("org_name"), "Acme")
    assert not is_answered(_question("org_name"), "")
    assert not is_answered(_question("org_name"), None)
    assert is_answered(_question("geography"), ["europe"])
    assert not is_answered(_question("geography"), [])
    # a bare string is not an answer to a multi-select
    assert not is_answered(_question("geography"), "europe")


def test_progress_rounds_and_ignores_unknown_keys():
    assert calculate_progress({}) == 0
    assert calculate_progress({"org_name": "Acme"}) == 7  # 6.67
    assert calculate_progress({"org_name": "Acme", "industry": "fintech"}) == 13  # 13.33
    assert calculate_progress({"org_name": "Acme", "not_a_question": "x"}) == 7
    all_answered = {
        q.id: (["x"] if q.type.value == "multi-select" else "x") for q in INTAKE_QUESTIONS
    }
    assert calculate_progress(all_answered) == 100
