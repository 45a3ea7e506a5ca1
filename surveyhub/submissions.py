import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from . import models, schemas
from .conditions import visible_questions
from .database import transaction
from .exceptions import InvalidInputError, NotFoundError, SurveyClosedError
from .reconciler import as_utc, get_owned_survey, get_survey, utc_now

logger = logging.getLogger(__name__)


def _ensure_accepting(db: Session, survey: models.Survey, now: datetime) -> None:
    if not survey.is_published:
        raise SurveyClosedError("Survey is not accepting responses")
    release_date, close_date = as_utc(survey.release_date), as_utc(survey.close_date)
    if release_date and now < release_date:
        raise SurveyClosedError("Survey is not open yet")
    if close_date and now > close_date:
        raise SurveyClosedError(survey.closed_message or "Survey is closed")
    if survey.response_limit is not None:
        received = (
            db.query(func.count(models.Response.id))
            .filter(models.Response.survey_id == survey.id)
            .scalar()
        )
        if received >= survey.response_limit:
            raise SurveyClosedError(survey.closed_message or "Survey has reached its response limit")


def submit_response(
    db: Session,
    survey_id: int,
    answers: Sequence[schemas.AnswerCreate],
    *,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Response:
    """Store one response with its answers, all or nothing.

    Answers must reference questions of this survey. Required questions
    must be answered unless their conditions hide them.
    """
    survey = get_survey(db, survey_id)
    _ensure_accepting(db, survey, now or utc_now())

    questions = {question.id: question for question in survey.questions}
    given: Dict[int, List[str]] = {}
    for answer in answers:
        if answer.question_id not in questions:
            raise InvalidInputError(
                f"Question {answer.question_id} does not belong to survey {survey_id}"
            )
        given.setdefault(answer.question_id, []).append(answer.value)

    missing = [
        question.id
        for question in visible_questions(survey.questions, given)
        if question.is_required and not any(value.strip() for value in given.get(question.id, []))
    ]
    if missing:
        raise InvalidInputError(
            "Missing answers for required questions: " + ", ".join(str(question_id) for question_id in missing)
        )

    response = models.Response(
        survey_id=survey.id,
        ip=ip,
        user_agent=user_agent,
        answers=[models.Answer(question_id=answer.question_id, value=answer.value) for answer in answers],
    )
    with transaction(db, "submit response"):
        db.add(response)

    logger.info("Stored response %s for survey %s (%d answers)", response.id, survey_id, len(answers))
    return response


def resolve_link(db: Session, link: str) -> models.Survey:
    survey_link = (
        db.query(models.SurveyLink)
        .filter(models.SurveyLink.link == link, models.SurveyLink.is_active.is_(True))
        .first()
    )
    if survey_link is None:
        raise NotFoundError("Survey not found or inactive")
    survey = get_survey(db, survey_link.survey_id)
    if not survey.is_published:
        raise NotFoundError("Survey not found or inactive")
    return survey


def list_responses(db: Session, survey_id: int, user_id: int) -> List[models.Response]:
    survey = get_owned_survey(db, survey_id, user_id, with_responses=True)
    return list(survey.responses)


def get_response_detail(db: Session, survey_id: int, response_id: int, user_id: int) -> schemas.ResponseDetail:
    survey = get_owned_survey(db, survey_id, user_id)
    response = (
        db.query(models.Response)
        .options(selectinload(models.Response.answers))
        .filter(models.Response.survey_id == survey_id, models.Response.id == response_id)
        .first()
    )
    if response is None:
        raise NotFoundError("Response not found")

    question_text = {question.id: question.text for question in survey.questions}
    return schemas.ResponseDetail(
        id=response.id,
        survey_id=response.survey_id,
        ip=response.ip,
        user_agent=response.user_agent,
        created_at=response.created_at,
        answers=[
            schemas.AnswerWithQuestion(
                question_id=answer.question_id,
                question_text=question_text.get(answer.question_id),
                value=answer.value,
            )
            for answer in response.answers
        ],
    )
