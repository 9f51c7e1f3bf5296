"""Outbound transactional email.

Two adapters share one contract: ``send_email`` returns the provider's
message id or raises :class:`EmailDeliveryError` carrying a
:class:`DeliveryFailure` reason. Callers branch on that enum; they never
inspect provider error text themselves.

- :class:`ResendEmailService` posts to the Resend HTTP API (httpx).
- :class:`SmtpEmailService` sends through any SMTP relay (aiosmtplib).

Neither adapter retries. Retrying is the caller's decision.
"""

import enum
import logging
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import aiosmtplib
import httpx

from app.config import Settings, settings as _settings
from app.core.errors import ProviderError
from app.utils.logging_utils import redact_email

logger = logging.getLogger(__name__)


class DeliveryFailure(str, enum.Enum):
    """Why an email could not be delivered."""

    NOT_CONFIGURED = "not_configured"  # no credential for the selected backend
    SENDER_UNVERIFIED = "sender_unverified"  # provider refuses our from-address/domain
    TRANSIENT = "transient"  # network error, timeout, 5xx, anything else


class EmailDeliveryError(ProviderError):
    """The email provider did not accept a message."""

    code = "EMAIL_DELIVERY_FAILED"

    def __init__(self, reason: DeliveryFailure, message: str, details: Optional[dict] = None):
        self.reason = reason
        super().__init__(message, details)


class EmailService(ABC):
    """Base class for email adapters."""

    def __init__(self, from_email: str, from_name: str, timeout: float):
        self._from_email = from_email
        self._from_name = from_name
        self._timeout = timeout

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Return True when the backend's credential is present."""

    @property
    def sender(self) -> str:
        return f"{self._from_name} <{self._from_email}>"

    async def send_email(self, to_email: str, subject: str, html_body: str,
                         text_body: str) -> str:
        """
        Send one message.

        Returns:
            Provider message id

        Raises:
            EmailDeliveryError: with ``reason`` set to the failure class
        """
        if not self.is_configured:
            logger.warning("Email not configured, cannot send to %s", redact_email(to_email))
            raise EmailDeliveryError(
                DeliveryFailure.NOT_CONFIGURED, "Email delivery is not configured"
            )

        message_id = await self._deliver(to_email, subject, html_body, text_body)
        logger.info("Email sent to %s: %s", redact_email(to_email), subject)
        return message_id

    @abstractmethod
    async def _deliver(self, to_email: str, subject: str, html_body: str,
                       text_body: str) -> str:
        ...


class ResendEmailService(EmailService):
    """Resend REST API adapter."""

    # Resend error names that mean our key is missing or unusable
    _CREDENTIAL_ERRORS = {"missing_api_key", "invalid_api_key", "restricted_api_key"}

    def __init__(self, api_key: Optional[str], from_email: str, from_name: str,
                 timeout: float = 10.0, api_url: str = "https://api.resend.com/emails"):
        super().__init__(from_email, from_name, timeout)
        self._api_key = api_key
        self._api_url = api_url

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _deliver(self, to_email: str, subject: str, html_body: str,
                       text_body: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._api_url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self.sender,
                        "to": [to_email],
                        "subject": subject,
                        "html": html_body,
                        "text": text_body,
                    },
                )
        except httpx.HTTPError as exc:
            logger.error("Resend request failed for %s: %s", redact_email(to_email), type(exc).__name__)
            raise EmailDeliveryError(DeliveryFailure.TRANSIENT, "Email provider unreachable") from exc

        if resp.is_success:
            # Accepted; a body we cannot read only costs us the message id
            try:
                body = resp.json()
            except ValueError:
                return ""
            return body.get("id", "") if isinstance(body, dict) else ""

        raise self._classify(resp)

    def _classify(self, resp: httpx.Response) -> EmailDeliveryError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        name = str(body.get("name", ""))
        provider_message = str(body.get("message", ""))
        details = {"provider_status": resp.status_code, "provider_message": provider_message}

        if name in self._CREDENTIAL_ERRORS:
            reason = DeliveryFailure.NOT_CONFIGURED
        elif resp.status_code in (403, 422) and (
            "domain" in provider_message.lower() or "testing emails" in provider_message.lower()
        ):
            reason = DeliveryFailure.SENDER_UNVERIFIED
        else:
            reason = DeliveryFailure.TRANSIENT

        logger.error(
            "Resend rejected message: status=%s name=%s reason=%s",
            resp.status_code, name, reason.value,
        )
        return EmailDeliveryError(reason, "Email provider rejected the message", details)


class SmtpEmailService(EmailService):
    """SMTP relay adapter (Gmail, SES, Mailgun, ...)."""

    def __init__(self, smtp_host: Optional[str], smtp_port: int, smtp_username: Optional[str],
                 smtp_password: Optional[str], from_email: str, from_name: str,
                 use_tls: bool, timeout: float = 10.0):
        super().__init__(from_email, from_name, timeout)
        self._host = smtp_host
        self._port = smtp_port
        self._username = smtp_username or ""
        self._password = smtp_password or ""
        self._use_tls = use_tls

    @property
    def is_configured(self) -> bool:
        return bool(self._host)

    async def _deliver(self, to_email: str, subject: str, html_body: str,
                       text_body: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to_email
        msg["Message-ID"] = make_msgid(domain=self._from_email.split("@")[-1])
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self._host,
                port=self._port,
                username=self._username or None,
                password=self._password or None,
                use_tls=False,       # SSL on port 465
                start_tls=self._use_tls,  # STARTTLS on port 587 (default)
                timeout=self._timeout,
            )
        except aiosmtplib.SMTPSenderRefused as exc:
            logger.error("SMTP sender refused for %s: %s", redact_email(to_email), exc.code)
            raise EmailDeliveryError(
                DeliveryFailure.SENDER_UNVERIFIED,
                "Mail server refused the sender address",
                {"smtp_code": exc.code},
            ) from exc
        except aiosmtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed: %s", exc.code)
            raise EmailDeliveryError(
                DeliveryFailure.NOT_CONFIGURED, "Mail server rejected the credentials"
            ) from exc
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", redact_email(to_email), type(exc).__name__)
            raise EmailDeliveryError(DeliveryFailure.TRANSIENT, "Mail server error") from exc

        return msg["Message-ID"]


def build_email_service(config: Settings) -> EmailService:
    """Construct the adapter selected by ``EMAIL_BACKEND``."""
    if config.EMAIL_BACKEND == "smtp":
        return SmtpEmailService(
            smtp_host=config.SMTP_HOST,
            smtp_port=config.SMTP_PORT,
            smtp_username=config.SMTP_USERNAME,
            smtp_password=config.SMTP_PASSWORD,
            from_email=config.EMAIL_FROM_ADDRESS,
            from_name=config.EMAIL_FROM_NAME,
            use_tls=config.SMTP_USE_TLS,
            timeout=config.EMAIL_TIMEOUT_SECONDS,
        )
    return ResendEmailService(
        api_key=config.RESEND_API_KEY,
        from_email=config.EMAIL_FROM_ADDRESS,
        from_name=config.EMAIL_FROM_NAME,
        timeout=config.EMAIL_TIMEOUT_SECONDS,
        api_url=config.RESEND_API_URL,
    )


# Module-level singleton, configured once from application settings
email_service = build_email_service(_settings)
