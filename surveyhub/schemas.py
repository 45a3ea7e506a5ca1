from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

# Option schemas
class OptionBase(BaseModel):
    text: str
    value: str

class OptionCreate(OptionBase):
    pass

class Option(OptionBase):
    id: int
    question_id: int

    class Config:
        from_attributes = True

# Condition schemas
class ConditionBase(BaseModel):
    dependent_on_question_id: int
    dependent_on_value: str = ""
    operator: str = "equals"

class ConditionCreate(ConditionBase):
    pass

class Condition(ConditionBase):
    id: int
    question_id: int

    class Config:
        from_attributes = True

# Question schemas
class QuestionBase(BaseModel):
    text: str
    type: str = Field(min_length=1)
    is_required: bool = False
    order: int = 0
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    allow_multiple: bool = False
    max_file_size: Optional[int] = None

class QuestionCreate(QuestionBase):
    # Matches a persisted question on update; absent, zero or unknown ids
    # create a new one. Conditions may refer to it before it is persisted.
    id: Optional[int] = None
    options: List[OptionCreate] = []
    conditions: List[ConditionCreate] = []

class Question(QuestionBase):
    id: int
    survey_id: int
    options: List[Option] = []
    conditions: List[Condition] = []

    class Config:
        from_attributes = True

# Survey schemas
class SurveyBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    response_limit: Optional[int] = Field(default=None, ge=0)
    release_date: Optional[datetime] = None
    close_date: Optional[datetime] = None
    redirect_url: Optional[str] = None
    closed_message: Optional[str] = None
    custom_styles: Optional[str] = None

class SurveyCreate(SurveyBase):
    team_id: Optional[int] = None
    questions: List[QuestionCreate] = []

class SurveyUpdate(SurveyCreate):
    pass

class PublicSurvey(SurveyBase):
    id: int
    version: int
    questions: List[Question] = []

    class Config:
        from_attributes = True

class Survey(PublicSurvey):
    user_id: int
    team_id: Optional[int] = None
    is_published: bool
    link: Optional[str] = None
    created_at: Optional[datetime] = None

class SurveySummary(BaseModel):
    id: int
    title: str
    team_id: Optional[int] = None
    version: int
    is_published: bool
    link: Optional[str] = None

    class Config:
        from_attributes = True

# Response schemas
class AnswerCreate(BaseModel):
    question_id: int
    value: str = ""

class Answer(AnswerCreate):
    id: int

    class Config:
        from_attributes = True

class ResponseCreate(BaseModel):
    answers: List[AnswerCreate]

class Response(BaseModel):
    id: int
    survey_id: int
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    answers: List[Answer] = []

    class Config:
        from_attributes = True

class AnswerWithQuestion(BaseModel):
    question_id: int
    question_text: Optional[str] = None
    value: str

class ResponseDetail(BaseModel):
    id: int
    survey_id: int
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    answers: List[AnswerWithQuestion]

class SubmissionResult(BaseModel):
    message: str
    response_id: int
    redirect_url: Optional[str] = None

# Analytics schemas
class SurveyAnalytics(BaseModel):
    totalResponses: int
    questionAnalytics: Dict[str, Dict[str, Any]]

# Webhook schemas
class WebhookBase(BaseModel):
    url: str = Field(min_length=1)
    events: str = "response_submitted"

class WebhookCreate(WebhookBase):
    survey_id: int
    secret: str = ""

class WebhookUpdate(WebhookBase):
    secret: str = ""

class Webhook(WebhookBase):
    id: int
    user_id: int
    survey_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# Export schemas
class ExportTask(BaseModel):
    message: str
    task_id: str

# Team schemas
class TeamBase(BaseModel):
    name: str = Field(min_length=1)

class TeamCreate(TeamBase):
    pass

class TeamUpdate(TeamBase):
    pass

class TeamMember(BaseModel):
    id: int
    email: Optional[str] = None
    name: Optional[str] = None

    class Config:
        from_attributes = True

class Team(TeamBase):
    id: int
    owner_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class TeamDetail(Team):
    members: List[TeamMember] = []

class TeamMemberAdd(BaseModel):
    email: str = Field(min_length=1)

class Message(BaseModel):
    message: str
