import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import PersistenceError, SurveyHubError

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns the engine and session factory for one process.

    Built by the application factory (or a celery worker) and handed to
    whatever needs storage; nothing in the package keeps a global engine.
    """

    def __init__(self, url: str, **engine_kwargs):
        if url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs.setdefault("poolclass", StaticPool)
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    with request.app.state.database.session() as db:
        yield db


@contextmanager
def transaction(db: Session, action: str) -> Iterator[Session]:
    """Commit the work done in the block, or roll all of it back.

    Domain errors raised inside the block are re-raised untouched; storage
    errors become ``PersistenceError`` so callers never see driver details.
    """
    try:
        yield db
        db.commit()
    except SurveyHubError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Could not %s, transaction rolled back", action)
        raise PersistenceError(f"Could not {action}") from exc
