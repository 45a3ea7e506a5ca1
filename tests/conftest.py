import pytest
from fastapi.testclient import TestClient

from surveyhub import models, reconciler
from surveyhub.auth import create_access_token
from surveyhub.config import Settings
from surveyhub.main import create_app

from helpers import pulse_survey_payload


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret",
        WEBHOOK_MAX_WORKERS=4,
        CORS_ORIGINS="http://localhost:3000",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def database(app):
    return app.state.database


@pytest.fixture
def db(database):
    with database.session() as session:
        yield session


@pytest.fixture
def user(database):
    with database.session() as session:
        author = models.User(email="author@example.com", name="Author")
        session.add(author)
        session.commit()
        session.refresh(author)
        session.expunge(author)
    return author


@pytest.fixture
def other_user(database):
    with database.session() as session:
        stranger = models.User(email="stranger@example.com", name="Stranger")
        session.add(stranger)
        session.commit()
        session.refresh(stranger)
        session.expunge(stranger)
    return stranger


@pytest.fixture
def auth_headers(user, settings):
    token = create_access_token({"sub": str(user.id)}, settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def survey(db, user):
    return reconciler.create_survey(db, user.id, pulse_survey_payload())


@pytest.fixture
def published_survey(db, survey, user):
    return reconciler.set_published(db, survey.id, user.id, True)
