"""Fan-out of survey events to subscriber endpoints.

Each subscription gets one delivery attempt. Deliveries run on a bounded
pool, independently of each other and of the request that produced the
event; their failures are logged and go nowhere else.
"""
import hashlib
import hmac
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .database import Database

logger = logging.getLogger(__name__)

RESPONSE_SUBMITTED = "response_submitted"


def build_payload(survey_id: int, response_id: int) -> Dict[str, Any]:
    return {"event": RESPONSE_SUBMITTED, "survey_id": survey_id, "response_id": response_id}


def subscribes_to(events: Optional[str], event: str) -> bool:
    wanted = {name.strip() for name in (events or "").split(",") if name.strip()}
    return not wanted or "*" in wanted or event in wanted


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def deliver_webhook(
    url: str,
    secret: str,
    payload: Dict[str, Any],
    timeout: float = 10.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """POST ``payload`` to ``url`` once. Returns whether the receiver accepted it."""
    body = json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Secret": secret,
        "X-Webhook-Signature": sign(secret, body),
    }
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            resp = client.post(url, content=body, headers=headers)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Webhook delivery to %s failed: %s", url, exc)
        return False
    logger.info("Webhook delivered to %s. Status: %s", url, resp.status_code)
    return True


class WebhookDispatcher:
    def __init__(
        self,
        database: Database,
        *,
        timeout: float = 10.0,
        max_workers: int = 8,
        max_pending: int = 1000,
        backend: str = "thread",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.database = database
        self.timeout = timeout
        self.backend = backend
        self.transport = transport
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook")
        self._slots = threading.BoundedSemaphore(max_pending)

    def _subscriptions(self, survey_id: int, event: str) -> List[models.Webhook]:
        with self.database.session() as db:
            webhooks = (
                db.query(models.Webhook)
                .filter(models.Webhook.survey_id == survey_id)
                .order_by(models.Webhook.id)
                .all()
            )
        return [webhook for webhook in webhooks if subscribes_to(webhook.events, event)]

    def dispatch(self, survey_id: int, response_id: int) -> List[Future]:
        """Schedule delivery of a ``response_submitted`` event and return at once.

        The returned futures are only useful to callers that want to wait,
        such as tests; nothing in the request path does.
        """
        try:
            webhooks = self._subscriptions(survey_id, RESPONSE_SUBMITTED)
        except SQLAlchemyError:
            logger.exception("Could not load webhooks for survey %s", survey_id)
            return []

        payload = build_payload(survey_id, response_id)
        futures: List[Future] = []
        queued = 0
        for webhook in webhooks:
            if self.backend == "celery":
                from .tasks import deliver_webhook_task

                try:
                    deliver_webhook_task.delay(webhook.url, webhook.secret, payload)
                except Exception:
                    logger.exception("Could not enqueue delivery of response %s to webhook %s", response_id, webhook.id)
                    continue
                queued += 1
                continue
            if not self._slots.acquire(blocking=False):
                logger.warning(
                    "Webhook queue full, dropping delivery of response %s to webhook %s",
                    response_id,
                    webhook.id,
                )
                continue
            futures.append(self._executor.submit(self._run, webhook.id, webhook.url, webhook.secret, payload))
            queued += 1
        logger.debug("Scheduled %d of %d webhook deliveries for response %s", queued, len(webhooks), response_id)
        return futures

    def _run(self, webhook_id: int, url: str, secret: str, payload: Dict[str, Any]) -> bool:
        try:
            return deliver_webhook(url, secret, payload, timeout=self.timeout, transport=self.transport)
        except Exception:
            logger.exception("Webhook %s delivery crashed", webhook_id)
            return False
        finally:
            self._slots.release()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
