import pytest

from surveyhub import models, reconciler, schemas, submissions
from surveyhub.exceptions import InvalidInputError, NotFoundError, PersistenceError

from helpers import as_update, pulse_survey_payload


def by_text(survey):
    return {question.text: question for question in survey.questions}


def child_rows(survey):
    """Option and condition contents per question, without their ids."""
    return {
        question.text: (
            [(option.text, option.value) for option in question.options],
            [
                (condition.dependent_on_question_id, condition.dependent_on_value, condition.operator)
                for condition in question.conditions
            ],
        )
        for question in survey.questions
    }


def test_create_survey_starts_at_version_one_with_active_link(survey, user):
    assert survey.user_id == user.id
    assert survey.version == 1
    assert survey.is_published is False
    assert survey.link
    assert [link.is_active for link in survey.links] == [True]
    assert [question.text for question in survey.questions] == [
        "Favourite colour?",
        "Rate the sprint",
        "Why red?",
    ]
    assert survey.release_date is not None
    assert survey.close_date is not None


def test_create_survey_points_conditions_at_persisted_questions(survey):
    questions = by_text(survey)
    [condition] = questions["Why red?"].conditions
    assert condition.dependent_on_question_id == questions["Favourite colour?"].id
    assert condition.dependent_on_value == "red"
    assert condition.operator == "equals"


def test_create_survey_rejects_inverted_schedule(db, user):
    payload = pulse_survey_payload()
    payload.release_date = reconciler.utc_now()
    payload.close_date = payload.release_date.replace(year=payload.release_date.year - 1)
    with pytest.raises(InvalidInputError):
        reconciler.create_survey(db, user.id, payload)
    assert db.query(models.Survey).count() == 0


def test_update_keeps_identity_of_matched_questions(db, survey, user):
    ids_before = {question.text: question.id for question in survey.questions}
    payload = as_update(survey, title="Team pulse v2")
    payload.questions[1].text = "Rate the last sprint"
    payload.questions[1].max_value = 10

    updated = reconciler.update_survey(db, survey.id, user.id, payload)

    assert updated.title == "Team pulse v2"
    assert updated.version == 2
    rating = by_text(updated)["Rate the last sprint"]
    assert rating.id == ids_before["Rate the sprint"]
    assert rating.max_value == 10
    assert by_text(updated)["Favourite colour?"].id == ids_before["Favourite colour?"]


def test_update_replaces_children_idempotently(db, survey, user):
    first = reconciler.update_survey(db, survey.id, user.id, as_update(survey))
    rows_after_first = child_rows(first)

    second = reconciler.update_survey(db, survey.id, user.id, as_update(first))

    assert child_rows(second) == rows_after_first
    assert db.query(models.Option).count() == 2
    assert db.query(models.Condition).count() == 1


def test_version_grows_by_one_per_update(db, survey, user):
    versions = []
    current = survey
    for title in ("one", "two", "three"):
        current = reconciler.update_survey(db, survey.id, user.id, as_update(current, title=title))
        versions.append(current.version)
    assert versions == [2, 3, 4]


def test_update_inserts_new_questions_and_deletes_missing_ones(db, published_survey, user):
    questions = by_text(published_survey)
    colour = questions["Favourite colour?"]
    submissions.submit_response(
        db,
        published_survey.id,
        [
            schemas.AnswerCreate(question_id=colour.id, value="blue"),
            schemas.AnswerCreate(question_id=questions["Rate the sprint"].id, value="4"),
        ],
    )

    payload = as_update(published_survey)
    payload.questions = [q for q in payload.questions if q.text == "Favourite colour?"]
    payload.questions.append(schemas.QuestionCreate(text="Anything else?", type="textarea", order=5))

    updated = reconciler.update_survey(db, published_survey.id, user.id, payload)

    assert [q.text for q in updated.questions] == ["Favourite colour?", "Anything else?"]
    assert by_text(updated)["Favourite colour?"].id == colour.id
    remaining = db.query(models.Answer).all()
    assert [(answer.question_id, answer.value) for answer in remaining] == [(colour.id, "blue")]
    assert db.query(models.Condition).count() == 0


def test_update_accepts_conditions_on_questions_added_in_same_payload(db, survey, user):
    payload = as_update(survey)
    payload.questions.append(schemas.QuestionCreate(id=900, text="Pick a tool", type="dropdown", order=4))
    payload.questions.append(
        schemas.QuestionCreate(
            text="Why that tool?",
            type="text",
            order=5,
            conditions=[schemas.ConditionCreate(dependent_on_question_id=900, operator="not equals", dependent_on_value="none")],
        )
    )

    updated = reconciler.update_survey(db, survey.id, user.id, payload)

    questions = by_text(updated)
    [condition] = questions["Why that tool?"].conditions
    assert condition.dependent_on_question_id == questions["Pick a tool"].id


def test_failed_child_insert_leaves_survey_untouched(db, survey, user):
    before = (survey.title, survey.version, child_rows(survey))
    broken_question = schemas.QuestionCreate.model_construct(
        text="Broken",
        type="checkbox",
        options=[schemas.OptionCreate.model_construct(text=None, value="x")],
        conditions=[],
    )
    payload = schemas.SurveyUpdate.model_construct(title="Should not stick", questions=[broken_question])

    with pytest.raises(PersistenceError):
        reconciler.update_survey(db, survey.id, user.id, payload)

    db.expire_all()
    after = reconciler.get_survey(db, survey.id)
    assert (after.title, after.version, child_rows(after)) == before


def test_unknown_condition_reference_rolls_back(db, survey, user):
    payload = as_update(survey, title="Renamed")
    payload.questions[1].conditions = [schemas.ConditionCreate(dependent_on_question_id=424242)]

    with pytest.raises(InvalidInputError):
        reconciler.update_survey(db, survey.id, user.id, payload)

    db.expire_all()
    after = reconciler.get_survey(db, survey.id)
    assert after.title == "Team pulse"
    assert after.version == 1


def test_question_listed_twice_is_rejected(db, survey, user):
    payload = as_update(survey)
    payload.questions.append(payload.questions[0].model_copy())
    with pytest.raises(InvalidInputError):
        reconciler.update_survey(db, survey.id, user.id, payload)


def test_new_questions_sharing_a_provisional_id_are_rejected(db, survey, user):
    payload = as_update(survey)
    payload.questions.append(schemas.QuestionCreate(id=900, text="Pick a tool", type="dropdown", order=4))
    payload.questions.append(schemas.QuestionCreate(id=900, text="Pick an editor", type="dropdown", order=5))
    payload.questions.append(
        schemas.QuestionCreate(
            text="Why that one?",
            type="text",
            order=6,
            conditions=[schemas.ConditionCreate(dependent_on_question_id=900, dependent_on_value="vim")],
        )
    )

    with pytest.raises(InvalidInputError):
        reconciler.update_survey(db, survey.id, user.id, payload)

    db.expire_all()
    after = reconciler.get_survey(db, survey.id)
    assert after.version == 1
    assert len(after.questions) == 3


def test_update_of_foreign_survey_is_not_found(db, survey, other_user):
    with pytest.raises(NotFoundError):
        reconciler.update_survey(db, survey.id, other_user.id, as_update(survey))


def test_duplicate_produces_independent_copy(db, published_survey, user):
    original = reconciler.update_survey(db, published_survey.id, user.id, as_update(published_survey))
    assert original.version == 2
    original_question_ids = {question.id for question in original.questions}
    original_rows = child_rows(original)

    copy = reconciler.duplicate_survey(db, original.id, user.id)

    assert copy.id != original.id
    assert copy.title == "Copy of Team pulse"
    assert copy.version == 1
    assert copy.is_published is False
    assert copy.link and copy.link != original.link
    assert original_question_ids.isdisjoint(question.id for question in copy.questions)
    assert [q.text for q in copy.questions] == [q.text for q in original.questions]

    copied = by_text(copy)
    [condition] = copied["Why red?"].conditions
    assert condition.dependent_on_question_id == copied["Favourite colour?"].id
    assert [(o.text, o.value) for o in copied["Favourite colour?"].options] == original_rows["Favourite colour?"][0]


def test_regenerating_link_keeps_one_active(db, survey, user):
    old_link = survey.link
    refreshed = reconciler.regenerate_link(db, survey.id, user.id)

    active = [link for link in refreshed.links if link.is_active]
    assert len(active) == 1
    assert refreshed.link != old_link
    assert len(refreshed.links) == 2


def test_delete_survey_removes_aggregate(db, published_survey, user):
    colour = by_text(published_survey)["Favourite colour?"]
    submissions.submit_response(db, published_survey.id, [schemas.AnswerCreate(question_id=colour.id, value="blue")])

    reconciler.delete_survey(db, published_survey.id, user.id)

    for model in (models.Survey, models.Question, models.Option, models.Condition, models.Response, models.Answer):
        assert db.query(model).count() == 0
