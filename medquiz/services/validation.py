"""
Question payload validation.

Pure functions: safe to call speculatively before any write. Checks run in a
fixed order and stop at the first failure.
"""
from typing import Any, Dict, List, Optional, Sequence
import enum
import logging

from medquiz.core.errors import SchemaViolationError

logger = logging.getLogger(__name__)

MIN_OPTIONS = 2

# The only option keys ever stored or served; anything else (is_correct, ...) is dropped.
OPTION_FIELDS = ("id", "text", "image_url", "alt_text")


class QuestionViolation(str, enum.Enum):
    INSUFFICIENT_OPTIONS = "InsufficientOptions"
    DUPLICATE_OPTION = "DuplicateOption"
    EMPTY_OPTION_TEXT = "EmptyOptionText"
    ANSWER_INDEX_OUT_OF_RANGE = "AnswerIndexOutOfRange"


def rendered_text(option: Any) -> str:
    """Text a client would display for one stored or submitted option."""
    if option is None:
        return ""
    if isinstance(option, str):
        return option
    if isinstance(option, dict):
        for key in ("text", "label"):
            value = option.get(key)
            if isinstance(value, str) and value:
                return value
        if option.get("value") is not None:
            return str(option["value"])
        return ""
    return str(option)


def find_violation(options: Sequence[Any], correct_answer_index: int) -> Optional[QuestionViolation]:
    """Return the first violated rule, or None when the payload is valid."""
    if options is None or len(options) < MIN_OPTIONS:
        return QuestionViolation.INSUFFICIENT_OPTIONS

    texts = [rendered_text(o).strip() for o in options]
    if len(set(texts)) != len(texts):
        return QuestionViolation.DUPLICATE_OPTION

    if any(t == "" for t in texts):
        return QuestionViolation.EMPTY_OPTION_TEXT

    if isinstance(correct_answer_index, bool) or not isinstance(correct_answer_index, int):
        return QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE
    if not 0 <= correct_answer_index < len(options):
        return QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE

    return None


_MESSAGES = {
    QuestionViolation.INSUFFICIENT_OPTIONS: "Question must have at least {min} options",
    QuestionViolation.DUPLICATE_OPTION: "Options must be unique",
    QuestionViolation.EMPTY_OPTION_TEXT: "All options must have text",
    QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE: "Correct answer index ({index}) must be within [0, {count})",
}


def validate_question(
    options: Sequence[Any],
    correct_answer_index: int,
    identifier: Optional[str] = None,
) -> None:
    """Raise SchemaViolationError naming the first violated rule."""
    violation = find_violation(options, correct_answer_index)
    if violation is None:
        return
    message = _MESSAGES[violation].format(
        min=MIN_OPTIONS,
        index=correct_answer_index,
        count=len(options or []),
    )
    field = "correct_answer_index" if violation is QuestionViolation.ANSWER_INDEX_OUT_OF_RANGE else "options"
    raise SchemaViolationError(violation.value, message, identifier=identifier, field=field)


def normalize_options(options: Sequence[Any]) -> List[Dict[str, Any]]:
    """Store every option as an object with a 1-based id and its text; other keys are dropped."""
    normalized = []
    for position, option in enumerate(options, start=1):
        if isinstance(option, dict):
            item = {k: option[k] for k in OPTION_FIELDS if option.get(k) is not None}
            item["id"] = item.get("id", position)
            item["text"] = rendered_text(option).strip()
        else:
            item = {"id": position, "text": rendered_text(option).strip()}
        normalized.append(item)
    return normalized


def public_options(options: Sequence[Any]) -> List[Any]:
    """Stored options as objects, limited to the fields a student may see."""
    result = []
    for option in options or []:
        if isinstance(option, dict):
            result.append({k: option[k] for k in OPTION_FIELDS if k in option})
        else:
            result.append(option)
    return result


def display_options(options: Sequence[Any], question_id: Optional[str] = None) -> List[str]:
    """Flatten stored options to the plain string list student clients render."""
    result = []
    malformed = False
    for position, option in enumerate(options or []):
        text = rendered_text(option)
        if not text:
            malformed = True
            text = f"Option {chr(65 + position)}"
        result.append(text)
    if malformed:
        logger.warning(f"Malformed options on question {question_id}; applied placeholder text")
    return result
