"""
Queueing signature emails from the request path.

By the time an email is queued its signature is already committed, so a
broker outage is logged and reported as False instead of failing the
request. Publishing runs on a small thread pool with a fresh Kombu
connection and a bounded wait.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import NamedTuple
from celery import Task
from kombu import Connection

from petitions.core.config import settings
from petitions.services.email_service import build_context
from petitions.tasks.email_tasks import send_signature_email_task

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="signature_mail")


class QueueAttempt(NamedTuple):
    queued: bool
    task_id: str = ""
    error: str = ""


def _publish(task: Task, args: tuple, kwargs: dict) -> QueueAttempt:
    try:
        # Pooled broker connections go stale between requests
        with Connection(settings.REDIS_URL) as conn:
            result = task.apply_async(
                args=args,
                kwargs=kwargs,
                connection=conn,
                retry=True,
                retry_policy={
                    'max_retries': settings.MAIL_QUEUE_MAX_RETRIES,
                    'interval_start': 0,
                    'interval_step': 0.2,
                    'interval_max': 0.2,
                }
            )
            return QueueAttempt(True, result.id)
    except Exception as e:
        return QueueAttempt(False, error=str(e))


def queue_task_safely(task: Task, *args, **kwargs) -> bool:
    """
    Queue a Celery task without letting a broker failure escape.

    Returns:
        bool: True if the broker accepted the task
    """
    future = _executor.submit(_publish, task, args, kwargs)
    try:
        attempt = future.result(timeout=settings.MAIL_QUEUE_TIMEOUT_SECONDS)
    except FutureTimeoutError:
        attempt = QueueAttempt(False, error="timed out waiting for the broker")

    if not attempt.queued:
        logger.error(f"Failed to queue task {task.name}: {attempt.error}")
        return False

    logger.info(f"Task {task.name} queued: {attempt.task_id}")
    return True


def queue_signature_email(kind: str, signature, petition) -> bool:
    """
    Queue a confirmation or duplicate-signature email.

    The message context carries the signature's verify and unsubscribe links;
    the recipient is the address the signature was made with.
    """
    queued = queue_task_safely(
        send_signature_email_task,
        kind=kind,
        to_email=signature.email,
        context=build_context(signature, petition)
    )
    if queued:
        logger.info(f"Queued {kind} email for signature {signature.id}")
    return queued
