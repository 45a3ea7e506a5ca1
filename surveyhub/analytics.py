"""Per-question summaries and tabular export of a survey's responses.

Both functions take a fully loaded survey (questions with options,
responses with answers) and never touch storage.
"""
from typing import Any, Callable, Dict, Iterator, List, Optional

import pandas as pd

from .models import SummaryKind

EXPORT_FIXED_COLUMNS = ["ResponseID", "Timestamp"]
INTEGER_PATTERN = r"[+-]?\d+"


def _values_for(survey, question_id: int) -> Iterator[str]:
    # Response-then-answer encounter order.
    for response in survey.responses:
        for answer in response.answers:
            if answer.question_id == question_id:
                yield answer.value


def _answer_series(values: Iterator[str]) -> pd.Series:
    return pd.Series(list(values), dtype=object)


def _summarize_choice(values: Iterator[str]) -> Dict[str, Any]:
    return {"optionCounts": _answer_series(values).value_counts(sort=False).to_dict()}


def _summarize_numeric(values: Iterator[str]) -> Dict[str, Any]:
    answers = _answer_series(values).astype(str).str.strip()
    # Whole numbers only; "4.5" and "n/a" are skipped.
    integral = answers.where(answers.str.fullmatch(INTEGER_PATTERN))
    numbers = pd.to_numeric(integral, errors="coerce").dropna()
    if numbers.empty:
        return {}
    return {"average": float(numbers.mean())}


def _summarize_free_text(values: Iterator[str]) -> Dict[str, Any]:
    return {"answers": list(values)}


SUMMARIZERS: Dict[SummaryKind, Callable[[Iterator[str]], Dict[str, Any]]] = {
    SummaryKind.CHOICE: _summarize_choice,
    SummaryKind.NUMERIC: _summarize_numeric,
    SummaryKind.FREE_TEXT: _summarize_free_text,
}


def summarize_question(survey, question) -> Optional[Dict[str, Any]]:
    question_type = question.question_type
    if question_type is None or question_type.summary_kind is None:
        return None
    summarize = SUMMARIZERS[question_type.summary_kind]
    return summarize(_values_for(survey, question.id))


def compute_analytics(survey) -> Dict[str, Any]:
    question_analytics: Dict[str, Dict[str, Any]] = {}
    for question in survey.questions:
        summary = summarize_question(survey, question)
        if summary is not None:
            question_analytics[str(question.id)] = summary
    return {
        "totalResponses": len(survey.responses),
        "questionAnalytics": question_analytics,
    }


def build_export_frame(survey) -> pd.DataFrame:
    """One row per response; one column per question in survey order.

    Several answers to the same question (checkboxes) share one cell.
    """
    questions = list(survey.questions)
    rows: List[List[Any]] = []
    for response in survey.responses:
        by_question: Dict[int, List[str]] = {}
        for answer in response.answers:
            by_question.setdefault(answer.question_id, []).append(answer.value)
        created_at = response.created_at.isoformat() if response.created_at else ""
        rows.append(
            [response.id, created_at]
            + ["; ".join(by_question.get(question.id, [])) for question in questions]
        )
    columns = EXPORT_FIXED_COLUMNS + [question.text for question in questions]
    return pd.DataFrame(rows, columns=columns)


def export_csv(survey) -> str:
    return build_export_frame(survey).to_csv(index=False)
