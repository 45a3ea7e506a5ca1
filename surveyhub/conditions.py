"""Visibility rules between questions.

A question carrying conditions is shown only when every condition holds for
the answer given to the question it depends on.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def _as_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(answer: str, expected: str, numeric: Callable[[float, float], bool],
             textual: Callable[[str, str], bool]) -> bool:
    left, right = _as_number(answer), _as_number(expected)
    if left is not None and right is not None:
        return numeric(left, right)
    return textual(answer, expected)


def _equals(answer: str, expected: str) -> bool:
    return _compare(answer, expected, lambda a, b: a == b, lambda a, b: a == b)


def _greater_than(answer: str, expected: str) -> bool:
    return _compare(answer, expected, lambda a, b: a > b, lambda a, b: a > b)


def _less_than(answer: str, expected: str) -> bool:
    return _compare(answer, expected, lambda a, b: a < b, lambda a, b: a < b)


OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "equals": _equals,
    "not_equals": lambda answer, expected: not _equals(answer, expected),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "contains": lambda answer, expected: expected in answer,
}


def normalize_operator(operator: str) -> str:
    """``"not equals"``, ``"not-equals"`` and ``"NOT_EQUALS"`` all mean the same."""
    return "_".join((operator or "").strip().lower().replace("-", " ").split())


def condition_holds(condition, answers: Dict[int, List[str]]) -> bool:
    given = answers.get(condition.dependent_on_question_id)
    if not given:
        return False
    check = OPERATORS.get(normalize_operator(condition.operator))
    if check is None:
        logger.debug("Unknown condition operator %r ignored", condition.operator)
        return True
    return any(check(value, condition.dependent_on_value or "") for value in given)


def is_visible(question, answers: Dict[int, List[str]]) -> bool:
    return all(condition_holds(condition, answers) for condition in question.conditions)


def visible_questions(questions: Iterable, answers: Dict[int, List[str]]) -> List:
    return [question for question in questions if is_visible(question, answers)]
