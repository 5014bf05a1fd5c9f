"""
Celery tasks package.

Tasks are organized by domain:
- email_tasks: signature confirmation and duplicate signature emails
"""

from petitions.tasks import email_tasks

__all__ = ["email_tasks"]
