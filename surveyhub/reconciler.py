"""Write path for the survey aggregate.

A survey, its questions and their options and conditions are written as one
unit. Updates diff the incoming question list against the persisted one:
matched questions keep their identity, their options and conditions are
replaced wholesale, unmatched ones are inserted and missing ones deleted.
The survey's own fields and its version are written last, so a failed
reconciliation never leaves a bumped version behind.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session, selectinload

from . import models, schemas, teams
from .database import transaction
from .exceptions import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

SURVEY_FIELDS = (
    "team_id",
    "title",
    "description",
    "response_limit",
    "release_date",
    "close_date",
    "redirect_url",
    "closed_message",
    "custom_styles",
)
QUESTION_FIELDS = (
    "text",
    "type",
    "is_required",
    "order",
    "min_value",
    "max_value",
    "allow_multiple",
    "max_file_size",
)
COPY_PREFIX = "Copy of "


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Storage may hand back naive timestamps; they are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_link() -> str:
    return secrets.token_urlsafe(9)


def _graph_options(with_responses: bool) -> list:
    options = [
        selectinload(models.Survey.questions).selectinload(models.Question.options),
        selectinload(models.Survey.questions).selectinload(models.Question.conditions),
        selectinload(models.Survey.links),
    ]
    if with_responses:
        options.append(selectinload(models.Survey.responses).selectinload(models.Response.answers))
    return options


def get_survey(db: Session, survey_id: int, *, with_responses: bool = False) -> models.Survey:
    survey = (
        db.query(models.Survey)
        .options(*_graph_options(with_responses))
        .filter(models.Survey.id == survey_id)
        .first()
    )
    if survey is None:
        raise NotFoundError("Survey not found")
    return survey


def get_owned_survey(db: Session, survey_id: int, user_id: int, *, with_responses: bool = False) -> models.Survey:
    survey = get_survey(db, survey_id, with_responses=with_responses)
    if survey.user_id != user_id:
        raise NotFoundError("Survey not found")
    return survey


def list_surveys(db: Session, user_id: int, skip: int = 0, limit: int = 100) -> List[models.Survey]:
    return (
        db.query(models.Survey)
        .options(selectinload(models.Survey.links))
        .filter(models.Survey.user_id == user_id)
        .order_by(models.Survey.id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def _check_schedule(release_date: Optional[datetime], close_date: Optional[datetime]) -> None:
    if release_date and close_date and as_utc(close_date) <= as_utc(release_date):
        raise InvalidInputError("close_date must be after release_date")


def _check_team(db: Session, user_id: int, team_id: Optional[int]) -> None:
    if team_id is not None:
        teams.get_visible_team(db, team_id, user_id)


def _mint_link(survey: models.Survey) -> models.SurveyLink:
    # One active link per survey: retire the others in the same transaction.
    for survey_link in survey.links:
        survey_link.is_active = False
    survey_link = models.SurveyLink(link=generate_link(), is_active=True)
    survey.links.append(survey_link)
    return survey_link


def _new_options(data) -> List[models.Option]:
    return [models.Option(text=option.text, value=option.value) for option in data.options]


def _reconcile_questions(db: Session, survey: models.Survey, incoming: Sequence) -> None:
    existing: Dict[int, models.Question] = {question.id: question for question in survey.questions}
    matched: Dict[int, models.Question] = {}
    placed: List[Tuple[models.Question, object]] = []
    created: List[Tuple[models.Question, object]] = []
    seen: Set[int] = set()

    for data in incoming:
        if data.id:
            if data.id in seen:
                raise InvalidInputError(f"Question {data.id} appears more than once")
            seen.add(data.id)
        question = existing.get(data.id) if data.id else None
        if question is not None:
            matched[question.id] = question
            for field in QUESTION_FIELDS:
                setattr(question, field, getattr(data, field))
            question.options = _new_options(data)
            question.conditions = []
        else:
            question = models.Question(
                **{field: getattr(data, field) for field in QUESTION_FIELDS},
                options=_new_options(data),
            )
            survey.questions.append(question)
            created.append((question, data))
        placed.append((question, data))

    for question_id, question in existing.items():
        if question_id not in matched:
            logger.debug("Removing question %s from survey %s", question_id, survey.id)
            survey.questions.remove(question)
            db.delete(question)

    # New questions need identifiers before conditions can point at them.
    db.flush()

    id_map = {question_id: question_id for question_id in matched}
    for question, data in created:
        if data.id:
            id_map[data.id] = question.id
    survey_question_ids = {question.id for question in survey.questions}

    for question, data in placed:
        conditions = []
        for condition in data.conditions:
            target = id_map.get(condition.dependent_on_question_id)
            if target is None or target not in survey_question_ids:
                raise InvalidInputError(
                    f"Condition on question '{question.text}' refers to unknown question "
                    f"{condition.dependent_on_question_id}"
                )
            if target == question.id:
                raise InvalidInputError(f"Question '{question.text}' cannot depend on itself")
            conditions.append(
                models.Condition(
                    dependent_on_question_id=target,
                    dependent_on_value=condition.dependent_on_value,
                    operator=condition.operator,
                )
            )
        question.conditions = conditions

    db.flush()


def create_survey(
    db: Session,
    user_id: int,
    payload: schemas.SurveyCreate,
    *,
    default_duration_days: int = 30,
) -> models.Survey:
    now = utc_now()
    survey = models.Survey(
        user_id=user_id,
        version=1,
        is_published=False,
        **{field: getattr(payload, field) for field in SURVEY_FIELDS},
    )
    if survey.release_date is None:
        survey.release_date = now
    if survey.close_date is None:
        survey.close_date = as_utc(survey.release_date) + timedelta(days=default_duration_days)
    _check_schedule(survey.release_date, survey.close_date)
    _check_team(db, user_id, survey.team_id)

    with transaction(db, "create survey"):
        db.add(survey)
        db.flush()
        _reconcile_questions(db, survey, payload.questions)
        _mint_link(survey)

    logger.info("Created survey %s with %d questions", survey.id, len(payload.questions))
    return get_survey(db, survey.id)


def update_survey(db: Session, survey_id: int, user_id: int, payload: schemas.SurveyUpdate) -> models.Survey:
    survey = get_owned_survey(db, survey_id, user_id)
    _check_schedule(payload.release_date, payload.close_date)
    _check_team(db, user_id, payload.team_id)
    next_version = survey.version + 1

    with transaction(db, "update survey"):
        _reconcile_questions(db, survey, payload.questions)
        for field in SURVEY_FIELDS:
            setattr(survey, field, getattr(payload, field))
        survey.version = next_version

    logger.info("Survey %s reconciled to version %s", survey_id, next_version)
    return get_survey(db, survey_id)


def duplicate_survey(db: Session, survey_id: int, user_id: int) -> models.Survey:
    original = get_owned_survey(db, survey_id, user_id)
    # Original identifiers act as provisional ids, so conditions are
    # remapped onto the copies.
    desired = [schemas.Question.model_validate(question) for question in original.questions]

    duplicate = models.Survey(
        user_id=original.user_id,
        version=1,
        is_published=False,
        **{field: getattr(original, field) for field in SURVEY_FIELDS},
    )
    duplicate.title = COPY_PREFIX + original.title

    with transaction(db, "duplicate survey"):
        db.add(duplicate)
        db.flush()
        _reconcile_questions(db, duplicate, desired)
        _mint_link(duplicate)

    logger.info("Duplicated survey %s as %s", survey_id, duplicate.id)
    return get_survey(db, duplicate.id)


def regenerate_link(db: Session, survey_id: int, user_id: int) -> models.Survey:
    survey = get_owned_survey(db, survey_id, user_id)
    with transaction(db, "regenerate survey link"):
        _mint_link(survey)
    return get_survey(db, survey_id)


def set_published(db: Session, survey_id: int, user_id: int, published: bool) -> models.Survey:
    survey = get_owned_survey(db, survey_id, user_id)
    with transaction(db, "change survey status"):
        survey.is_published = published
    logger.info("Survey %s %s", survey_id, "published" if published else "unpublished")
    return get_survey(db, survey_id)


def delete_survey(db: Session, survey_id: int, user_id: int) -> None:
    survey = get_owned_survey(db, survey_id, user_id, with_responses=True)
    with transaction(db, "delete survey"):
        db.delete(survey)
    logger.info("Deleted survey %s", survey_id)
