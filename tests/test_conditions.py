from agent_workflow.core.engine.conditions import evaluate


def test_absent_condition_always_holds():
    for outcome in ["", "anything", "hello world"]:
        assert evaluate(outcome, None)


def test_condition_is_substring_match():
    assert evaluate("hello world", "hello")
    assert evaluate("hello world", "o w")
    assert not evaluate("hello world", "xyz")


def test_condition_is_case_sensitive():
    assert not evaluate("Hello world", "hello")


def test_empty_condition_matches_any_outcome():
    assert evaluate("", "")
    assert evaluate("x", "")
