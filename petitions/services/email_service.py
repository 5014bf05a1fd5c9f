"""
AWS SES Email Service for signature notifications.

Sends the two messages the signing pipeline needs: the confirmation email for
a new (or re-submitted pending) signature, and the duplicate signature notice
for an address that has already signed.
"""

import logging
from typing import Any, Dict, Optional, Tuple
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from petitions.core.config import settings

logger = logging.getLogger(__name__)

EMAIL_CONFIRMATION = "email_confirmation"
DUPLICATE_SIGNATURE = "duplicate_signature"

SUBJECTS = {
    EMAIL_CONFIRMATION: "Please confirm your email address",
    DUPLICATE_SIGNATURE: "Duplicate signature of petition",
}


class UnknownEmailKind(ValueError):
    pass


class EmailService:
    """
    Service for sending emails via AWS SES.

    Supports both development (sandbox) and production modes.
    """

    def __init__(self):
        self._ses_client = None

    @property
    def ses_client(self):
        """Create the boto3 client on first use (credentials optional, IAM role otherwise)"""
        if self._ses_client is None:
            session_kwargs = {
                'region_name': settings.AWS_REGION,
            }

            if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
                session_kwargs['aws_access_key_id'] = settings.AWS_ACCESS_KEY_ID
                session_kwargs['aws_secret_access_key'] = settings.AWS_SECRET_ACCESS_KEY

            self._ses_client = boto3.client('ses', **session_kwargs)
        return self._ses_client

    def send(self, kind: str, to_email: str, context: Dict[str, Any]) -> bool:
        """
        Send a signature notification.

        Args:
            kind: EMAIL_CONFIRMATION or DUPLICATE_SIGNATURE
            to_email: Recipient email address
            context: Values for the message body (name, petition_action,
                verify_url, petition_url, unsubscribe_url)

        Returns:
            bool: True if email sent successfully, False otherwise

        Raises:
            UnknownEmailKind: If kind is not a signature notification
        """
        if kind not in SUBJECTS:
            raise UnknownEmailKind(kind)

        subject = SUBJECTS[kind]
        text_body, html_body = self.build_body(kind, context)

        try:
            response = self.ses_client.send_email(
                Source=f"{settings.AWS_SES_FROM_NAME} <{settings.AWS_SES_FROM_EMAIL}>",
                Destination={'ToAddresses': [to_email]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Html': {'Data': html_body, 'Charset': 'UTF-8'},
                        'Text': {'Data': text_body, 'Charset': 'UTF-8'}
                    }
                }
            )

            message_id = response.get('MessageId')
            logger.info(f"{kind} email sent (MessageId: {message_id})")
            return True

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            logger.error(f"AWS SES ClientError: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                logger.error(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                logger.error("Sender email not verified in SES")

            return False

        except BotoCoreError as e:
            logger.error(f"AWS BotoCoreError: {str(e)}")
            return False

    def build_body(self, kind: str, context: Dict[str, Any]) -> Tuple[str, str]:
        """Plain text and minimal HTML bodies for a notification"""
        name = context.get("name")
        greeting = f"Dear {name}," if name else "Hello,"
        action = context.get("petition_action", "the petition")

        if kind == EMAIL_CONFIRMATION:
            lines = [
                greeting,
                "",
                f"Please click the link below to confirm your signature on the petition \"{action}\":",
                "",
                context.get("verify_url", ""),
                "",
                "If you didn't sign this petition you can ignore this email.",
            ]
        else:
            lines = [
                greeting,
                "",
                f"You've already signed the petition \"{action}\". Each person can only sign a petition once.",
                "",
                context.get("petition_url", ""),
            ]

        unsubscribe_url = context.get("unsubscribe_url")
        if unsubscribe_url:
            lines += ["", f"Stop receiving emails about this petition: {unsubscribe_url}"]

        text = "\n".join(lines)
        html = "".join(f"<p>{line}</p>" for line in lines if line)
        return text, f"<!DOCTYPE html><html><body>{html}</body></html>"


# Singleton instance
email_service = EmailService()


def build_context(signature, petition, site_url: Optional[str] = None) -> Dict[str, Any]:
    """Message context for a signature; carries the links, never the raw state."""
    site_url = (site_url or settings.SITE_URL).rstrip("/")
    return {
        "name": signature.name,
        "signature_id": signature.id,
        "petition_id": petition.id,
        "petition_action": petition.action,
        "petition_url": f"{site_url}/petitions/{petition.id}",
        "verify_url": f"{site_url}/signatures/{signature.id}/verify?token={signature.perishable_token}",
        "unsubscribe_url": f"{site_url}/signatures/{signature.id}/unsubscribe?token={signature.unsubscribe_token}",
    }
