from surveyhub import models, reconciler, schemas
from surveyhub.auth import create_access_token


def pulse_survey_payload() -> schemas.SurveyCreate:
    """Three questions; the follow-up only shows when the colour is red."""
    return schemas.SurveyCreate(
        title="Team pulse",
        description="Monthly check-in",
        questions=[
            schemas.QuestionCreate(
                id=1,
                text="Favourite colour?",
                type="multipleChoice",
                is_required=True,
                order=1,
                options=[
                    schemas.OptionCreate(text="Red", value="red"),
                    schemas.OptionCreate(text="Blue", value="blue"),
                ],
            ),
            schemas.QuestionCreate(
                id=2,
                text="Rate the sprint",
                type="rating",
                order=2,
                min_value=1,
                max_value=5,
            ),
            schemas.QuestionCreate(
                id=3,
                text="Why red?",
                type="text",
                is_required=True,
                order=3,
                conditions=[
                    schemas.ConditionCreate(dependent_on_question_id=1, dependent_on_value="red"),
                ],
            ),
        ],
    )


def as_update(survey: models.Survey, **overrides) -> schemas.SurveyUpdate:
    """The persisted shape of ``survey`` expressed as an update payload."""
    questions = [
        schemas.QuestionCreate(**schemas.Question.model_validate(question).model_dump())
        for question in survey.questions
    ]
    fields = {field: getattr(survey, field) for field in reconciler.SURVEY_FIELDS}
    fields.update(questions=questions)
    fields.update(overrides)
    return schemas.SurveyUpdate(**fields)


def bearer(user: models.User, settings) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)}, settings)}"}
