import enum
from typing import Optional

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, DateTime, Table, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


class SummaryKind(str, enum.Enum):
    CHOICE = "choice"
    NUMERIC = "numeric"
    FREE_TEXT = "free_text"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multipleChoice"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"
    RATING = "rating"
    SCALE = "scale"
    TEXT = "text"
    TEXTAREA = "textarea"
    FILE = "file"
    DATE = "date"

    @classmethod
    def parse(cls, tag: Optional[str]) -> Optional["QuestionType"]:
        try:
            return cls(tag)
        except ValueError:
            return None

    @property
    def summary_kind(self) -> Optional[SummaryKind]:
        return _SUMMARY_KINDS.get(self)


_SUMMARY_KINDS = {
    QuestionType.MULTIPLE_CHOICE: SummaryKind.CHOICE,
    QuestionType.CHECKBOX: SummaryKind.CHOICE,
    QuestionType.DROPDOWN: SummaryKind.CHOICE,
    QuestionType.RATING: SummaryKind.NUMERIC,
    QuestionType.SCALE: SummaryKind.NUMERIC,
    QuestionType.TEXT: SummaryKind.FREE_TEXT,
    QuestionType.TEXTAREA: SummaryKind.FREE_TEXT,
}


user_teams = Table(
    "user_teams",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("team_id", Integer, ForeignKey("teams.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    surveys = relationship("Survey", back_populates="creator")
    webhooks = relationship("Webhook", back_populates="user")
    teams = relationship("Team", secondary=user_teams, back_populates="members")

class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User")
    members = relationship("User", secondary=user_teams, back_populates="teams", order_by="User.id")
    surveys = relationship("Survey", back_populates="team")

class Survey(Base):
    __tablename__ = "surveys"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    response_limit = Column(Integer)
    release_date = Column(DateTime(timezone=True))
    close_date = Column(DateTime(timezone=True))
    redirect_url = Column(String)
    closed_message = Column(Text)
    custom_styles = Column(Text)
    is_published = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", back_populates="surveys")
    team = relationship("Team", back_populates="surveys")
    questions = relationship(
        "Question",
        back_populates="survey",
        cascade="all, delete-orphan",
        order_by=lambda: [Question.order, Question.id],
    )
    responses = relationship(
        "Response", back_populates="survey", cascade="all, delete-orphan", order_by="Response.id"
    )
    links = relationship("SurveyLink", back_populates="survey", cascade="all, delete-orphan")
    webhooks = relationship("Webhook", back_populates="survey", cascade="all, delete-orphan")

    @property
    def link(self) -> Optional[str]:
        for survey_link in self.links:
            if survey_link.is_active:
                return survey_link.link
        return None

class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    type = Column(String, nullable=False)  # free tag, see QuestionType
    is_required = Column(Boolean, nullable=False, default=False)
    order = Column(Integer, nullable=False, default=0)
    min_value = Column(Integer)
    max_value = Column(Integer)
    allow_multiple = Column(Boolean, nullable=False, default=False)
    max_file_size = Column(Integer)

    survey = relationship("Survey", back_populates="questions")
    options = relationship(
        "Option", back_populates="question", cascade="all, delete-orphan", order_by="Option.id"
    )
    conditions = relationship(
        "Condition",
        back_populates="question",
        cascade="all, delete-orphan",
        foreign_keys="Condition.question_id",
        order_by="Condition.id",
    )
    answers = relationship("Answer", back_populates="question", cascade="save-update, merge, delete")

    @property
    def question_type(self) -> Optional[QuestionType]:
        return QuestionType.parse(self.type)

class Option(Base):
    __tablename__ = "options"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    value = Column(String, nullable=False)

    question = relationship("Question", back_populates="options")

class Condition(Base):
    __tablename__ = "conditions"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    dependent_on_question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    dependent_on_value = Column(String, nullable=False, default="")
    operator = Column(String, nullable=False, default="equals")

    question = relationship("Question", back_populates="conditions", foreign_keys=[question_id])

class Response(Base):
    __tablename__ = "responses"

    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id"), nullable=False, index=True)
    ip = Column(String)
    user_agent = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    survey = relationship("Survey", back_populates="responses")
    answers = relationship(
        "Answer", back_populates="response", cascade="all, delete-orphan", order_by="Answer.id"
    )

class Answer(Base):
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, index=True)
    response_id = Column(Integer, ForeignKey("responses.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    value = Column(Text, nullable=False, default="")

    response = relationship("Response", back_populates="answers")
    question = relationship("Question", back_populates="answers")

class SurveyLink(Base):
    __tablename__ = "survey_links"

    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id"), nullable=False, index=True)
    link = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    survey = relationship("Survey", back_populates="links")

class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    survey_id = Column(Integer, ForeignKey("surveys.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    events = Column(String, nullable=False, default="response_submitted")
    secret = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="webhooks")
    survey = relationship("Survey", back_populates="webhooks")
