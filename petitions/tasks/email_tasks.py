"""
Celery tasks for email operations.

Handles asynchronous email sending with retry logic.
"""

import logging
from typing import Any, Dict
from celery import shared_task
from petitions.core.celery_app import celery_app  # noqa: F401  (binds shared tasks to the Redis app)
from petitions.services.email_service import email_service

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """SES refused or failed to send; raised so Celery retries the task"""
    pass


@shared_task(
    bind=True,
    name="send_signature_email_task",
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,  # Max 10 minutes between retries
    retry_jitter=True
)
def send_signature_email_task(self, kind: str, to_email: str, context: Dict[str, Any]):
    """
    Celery task to send a signature notification asynchronously.

    Features:
    - Automatic retry on delivery failure (up to 3 attempts)
    - Exponential backoff with jitter

    Args:
        kind: email_confirmation or duplicate_signature
        to_email: Recipient email address
        context: Message context built by build_context()

    Raises:
        EmailDeliveryError: If sending fails (triggers a retry)
    """
    signature_id = context.get("signature_id")
    logger.info(f"Sending {kind} email for signature {signature_id} (attempt {self.request.retries + 1})")

    if not email_service.send(kind, to_email, context):
        if self.request.retries >= self.max_retries:
            logger.error(f"All retry attempts exhausted for {kind} email, signature {signature_id}")
        raise EmailDeliveryError(f"Failed to send {kind} email")

    return {"status": "success", "kind": kind}
