import pytest

from medquiz.core.errors import SchemaViolationError
from medquiz.services.validation import (
    QuestionViolation,
    display_options,
    find_violation,
    normalize_options,
    rendered_text,
    validate_question,
)


def test_single_option_rejected():
    assert find_violation(["only"], 0) is QuestionViolation.INSUFFICIENT_OPTIONS


def test_missing_options_rejected():
    assert find_violation(None, 0) is QuestionViolation.INSUFFICIENT_OPTIONS
    assert find_violation([], 0) is QuestionViolation.INSUFFICIENT_OPTIONS


def test_index_equal_to_count_rejected():
    assert find_violation(["A", "B"], 2) is QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE


def test_negative_and_non_integer_index_rejected():
    assert find_violation(["A", "B"], -1) is QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE
    assert find_violation(["A", "B"], "1") is QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE
    assert find_violation(["A", "B"], True) is QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE
    assert find_violation(["A", "B"], None) is QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE


def test_two_distinct_options_with_index_one_accepted():
    assert find_violation(["A", "B"], 1) is None
    validate_question(["A", "B"], 1)


def test_duplicates_compared_after_trimming():
    assert find_violation(["A", " A "], 0) is QuestionViolation.DUPLICATE_OPTION


def test_empty_text_rejected():
    assert find_violation(["A", "   "], 0) is QuestionViolation.EMPTY_OPTION_TEXT
    assert find_violation([{"text": "A"}, {"text": ""}], 0) is QuestionViolation.EMPTY_OPTION_TEXT


def test_checks_run_in_order():
    # duplicate empties report the duplicate first, and a bad index is only checked last
    assert find_violation(["", ""], 5) is QuestionViolation.DUPLICATE_OPTION
    assert find_violation(["A", ""], 5) is QuestionViolation.EMPTY_OPTION_TEXT


def test_validate_question_raises_with_field():
    with pytest.raises(SchemaViolationError) as exc:
        validate_question(["A", "B"], 2, identifier="q9")
    assert exc.value.violation == "AnswerIndexOutOfRange"
    assert exc.value.field == "correct_answer_index"
    assert exc.value.identifier == "q9"
    assert exc.value.status_code == 422

    with pytest.raises(SchemaViolationError) as exc:
        validate_question(["A"], 0)
    assert exc.value.field == "options"
    assert exc.value.to_dict()["violation"] == "InsufficientOptions"


def test_rendered_text_fallbacks():
    assert rendered_text("x") == "x"
    assert rendered_text({"text": "t", "label": "l"}) == "t"
    assert rendered_text({"label": "l"}) == "l"
    assert rendered_text({"value": 3}) == "3"
    assert rendered_text({}) == ""
    assert rendered_text(None) == ""


def test_normalize_options():
    assert normalize_options(["A ", {"text": "B", "id": 7, "is_correct": True, "alt_text": "bee"}]) == [
        {"id": 1, "text": "A"},
        {"id": 7, "text": "B", "alt_text": "bee"},
    ]


def test_display_options_uses_placeholder(caplog):
    assert display_options([{"text": "A"}, {"id": 2}], "q1") == ["A", "Option B"]
    assert "q1" in caplog.text
