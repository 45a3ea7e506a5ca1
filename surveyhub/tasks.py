from functools import lru_cache
import logging
from typing import Any, Dict

from celery import Celery
import boto3
from datetime import datetime

from .config import settings
from .database import Database
from .analytics import export_csv
from .exceptions import NotFoundError
from .reconciler import get_survey
from .webhooks import deliver_webhook

logger = logging.getLogger(__name__)

celery_app = Celery(
    "survey_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)


@lru_cache()
def get_worker_database() -> Database:
    # One engine per worker process.
    return Database(settings.DATABASE_URL)


@celery_app.task(name="surveyhub.deliver_webhook")
def deliver_webhook_task(url: str, secret: str, payload: Dict[str, Any]) -> bool:
    """Single delivery attempt; failures are logged, never retried."""
    return deliver_webhook(url, secret, payload, timeout=settings.WEBHOOK_TIMEOUT)


@celery_app.task(name="surveyhub.export_survey_data")
def export_survey_data(survey_id: int):
    """Export survey responses to S3 as CSV."""
    with get_worker_database().session() as db:
        try:
            survey = get_survey(db, survey_id, with_responses=True)
        except NotFoundError:
            return {"error": "Survey not found"}

        csv_buffer = export_csv(survey)

    # Generate filename
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"survey_{survey_id}_{timestamp}.csv"

    # Upload to S3
    s3_client = boto3.client(
        "s3",
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        region_name=settings.AWS_REGION
    )

    s3_client.put_object(
        Bucket=settings.S3_BUCKET,
        Key=f"survey_exports/{filename}",
        Body=csv_buffer,
        ContentType="text/csv",
    )
    logger.info("Exported survey %s to s3://%s/survey_exports/%s", survey_id, settings.S3_BUCKET, filename)

    return {
        "status": "Export completed",
        "filename": filename,
        "s3_path": f"survey_exports/{filename}"
    }
