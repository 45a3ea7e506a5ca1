import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from . import analytics, models, reconciler, schemas, submissions, tasks, teams
from .auth import get_current_active_user
from .config import Settings, get_settings
from .database import Database, get_db
from .exceptions import NotFoundError, SurveyHubError
from .webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "ok"}

# Survey endpoints
@router.post("/surveys/", response_model=schemas.Survey, status_code=status.HTTP_201_CREATED)
def create_survey(
    survey: schemas.SurveyCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    settings: Settings = request.app.state.settings
    return reconciler.create_survey(
        db, current_user.id, survey, default_duration_days=settings.DEFAULT_SURVEY_DURATION_DAYS
    )

@router.get("/surveys/", response_model=List[schemas.SurveySummary])
def read_surveys(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.list_surveys(db, current_user.id, skip=skip, limit=limit)

@router.get("/surveys/{survey_id}", response_model=schemas.Survey)
def read_survey(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.get_owned_survey(db, survey_id, current_user.id)

@router.put("/surveys/{survey_id}", response_model=schemas.Survey)
def update_survey(
    survey_id: int,
    survey: schemas.SurveyUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.update_survey(db, survey_id, current_user.id, survey)

@router.delete("/surveys/{survey_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_survey(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    reconciler.delete_survey(db, survey_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.post("/surveys/{survey_id}/duplicate", response_model=schemas.Survey, status_code=status.HTTP_201_CREATED)
def duplicate_survey(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.duplicate_survey(db, survey_id, current_user.id)

@router.post("/surveys/{survey_id}/publish", response_model=schemas.Survey)
def publish_survey(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.set_published(db, survey_id, current_user.id, True)

@router.post("/surveys/{survey_id}/unpublish", response_model=schemas.Survey)
def unpublish_survey(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.set_published(db, survey_id, current_user.id, False)

@router.post("/surveys/{survey_id}/link", response_model=schemas.Survey)
def regenerate_survey_link(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return reconciler.regenerate_link(db, survey_id, current_user.id)

# Response endpoints
@router.post("/surveys/{survey_id}/submit", response_model=schemas.SubmissionResult, status_code=status.HTTP_201_CREATED)
def submit_response(
    survey_id: int,
    payload: schemas.ResponseCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    response = submissions.submit_response(
        db,
        survey_id,
        payload.answers,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    # Webhooks are delivered after the client has its answer
    background_tasks.add_task(request.app.state.dispatcher.dispatch, survey_id, response.id)

    return {
        "message": "Response submitted successfully",
        "response_id": response.id,
        "redirect_url": response.survey.redirect_url,
    }

@router.get("/surveys/{survey_id}/responses", response_model=List[schemas.Response])
def read_responses(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return submissions.list_responses(db, survey_id, current_user.id)

@router.get("/surveys/{survey_id}/responses/{response_id}", response_model=schemas.ResponseDetail)
def read_response(
    survey_id: int,
    response_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return submissions.get_response_detail(db, survey_id, response_id, current_user.id)

# Public survey access
@router.get("/s/{link}", response_model=schemas.PublicSurvey)
def access_survey_by_link(link: str, db: Session = Depends(get_db)):
    return submissions.resolve_link(db, link)

# Analytics and export endpoints
@router.get("/surveys/{survey_id}/analytics", response_model=schemas.SurveyAnalytics)
def get_survey_analytics(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    survey = reconciler.get_owned_survey(db, survey_id, current_user.id, with_responses=True)
    return analytics.compute_analytics(survey)

@router.get("/surveys/{survey_id}/export")
def download_survey_export(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    survey = reconciler.get_owned_survey(db, survey_id, current_user.id, with_responses=True)
    return Response(
        content=analytics.export_csv(survey),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=survey_{survey_id}.csv"},
    )

@router.post("/surveys/{survey_id}/export", response_model=schemas.ExportTask, status_code=status.HTTP_202_ACCEPTED)
def export_survey(
    survey_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    reconciler.get_owned_survey(db, survey_id, current_user.id)

    # Schedule export task
    task = tasks.export_survey_data.delay(survey_id)

    return {
        "message": "Export started",
        "task_id": task.id
    }

# Webhook endpoints
def _get_owned_webhook(db: Session, webhook_id: int, user_id: int) -> models.Webhook:
    webhook = db.query(models.Webhook).filter(
        models.Webhook.id == webhook_id,
        models.Webhook.user_id == user_id
    ).first()
    if webhook is None:
        raise NotFoundError("Webhook not found")
    return webhook

@router.post("/webhooks/", response_model=schemas.Webhook, status_code=status.HTTP_201_CREATED)
def create_webhook(
    webhook: schemas.WebhookCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    reconciler.get_owned_survey(db, webhook.survey_id, current_user.id)
    db_webhook = models.Webhook(
        user_id=current_user.id,
        survey_id=webhook.survey_id,
        url=webhook.url,
        events=webhook.events,
        secret=webhook.secret
    )
    db.add(db_webhook)
    db.commit()
    db.refresh(db_webhook)
    return db_webhook

@router.get("/webhooks/", response_model=List[schemas.Webhook])
def read_webhooks(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return db.query(models.Webhook).filter(
        models.Webhook.user_id == current_user.id
    ).order_by(models.Webhook.id).all()

@router.put("/webhooks/{webhook_id}", response_model=schemas.Webhook)
def update_webhook(
    webhook_id: int,
    webhook: schemas.WebhookUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    db_webhook = _get_owned_webhook(db, webhook_id, current_user.id)
    db_webhook.url = webhook.url
    db_webhook.events = webhook.events
    db_webhook.secret = webhook.secret
    db.commit()
    db.refresh(db_webhook)
    return db_webhook

@router.delete("/webhooks/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_webhook(
    webhook_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    db.delete(_get_owned_webhook(db, webhook_id, current_user.id))
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# Team endpoints
@router.post("/teams/", response_model=schemas.Team, status_code=status.HTTP_201_CREATED)
def create_team(
    team: schemas.TeamCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return teams.create_team(db, current_user.id, team)

@router.get("/teams/", response_model=List[schemas.Team])
def read_teams(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return teams.list_teams(db, current_user.id)

@router.get("/teams/{team_id}", response_model=schemas.TeamDetail)
def read_team(
    team_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return teams.get_visible_team(db, team_id, current_user.id)

@router.put("/teams/{team_id}", response_model=schemas.TeamDetail)
def update_team(
    team_id: int,
    team: schemas.TeamUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    return teams.rename_team(db, team_id, current_user.id, team)

@router.post("/teams/{team_id}/members", response_model=schemas.Message)
def add_team_member(
    team_id: int,
    member: schemas.TeamMemberAdd,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    teams.add_member(db, team_id, current_user.id, member.email)
    return {"message": "User added to team successfully"}

@router.delete("/teams/{team_id}/members/{user_id}", response_model=schemas.Message)
def remove_team_member(
    team_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_active_user)
):
    teams.remove_member(db, team_id, current_user.id, user_id)
    return {"message": "User removed from team successfully"}


async def handle_domain_error(request: Request, exc: SurveyHubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.dispatcher.shutdown(wait=False)
    app.state.database.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API with its own database and webhook dispatcher.

    Run with ``uvicorn surveyhub.main:create_app --factory``.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    database = Database(settings.DATABASE_URL)
    database.create_all()

    app = FastAPI(
        title="Survey API",
        description="API for creating surveys, collecting responses and analysing them",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.dispatcher = WebhookDispatcher(
        database,
        timeout=settings.WEBHOOK_TIMEOUT,
        max_workers=settings.WEBHOOK_MAX_WORKERS,
        max_pending=settings.WEBHOOK_MAX_PENDING,
        backend=settings.WEBHOOK_BACKEND,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SurveyHubError, handle_domain_error)
    app.include_router(router)
    return app
