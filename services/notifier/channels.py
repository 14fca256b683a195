"""Caregiver alert delivery over the Resend (email) and Twilio (SMS) REST APIs."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from jinja2 import Environment, select_autoescape

from app.core.config import Settings
from carepill import ConfigurationError, DeliveryError, DeliveryReceipt
from shared.contracts.enums import AlertType

logger = logging.getLogger(__name__)

BRAND = "CarePill"

_ENV = Environment(autoescape=select_autoescape(["html", "xml"]))

_EMAIL_TEMPLATE = _ENV.from_string(
    """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {{ accent }}; padding: 20px; border-radius: 12px 12px 0 0;">
    <h1 style="color: white; margin: 0; font-size: 24px;">{{ title }}</h1>
  </div>
  <div style="background: #fff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 12px 12px;">
    <p style="font-size: 18px; color: #374151; margin-bottom: 20px;">{{ headline }}</p>
    <div style="background: {{ panel }}; border-left: 4px solid {{ border }}; padding: 15px; margin-bottom: 20px;">
      <p style="margin: 0;">
        <strong>Medicine:</strong> {{ medicine_name }}<br>
        {% if additional_info %}<strong>{{ info_label }}:</strong> {{ additional_info }}{% endif %}
      </p>
    </div>
    <p style="color: #6b7280; font-size: 14px;">{{ advice }}</p>
    <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 20px 0;">
    <p style="color: #9ca3af; font-size: 12px; text-align: center;">
      This alert was sent by {{ brand }} - Your Medicine Reminder Companion
    </p>
  </div>
</div>"""
)


def render_email(
    alert_type: AlertType,
    patient_name: str,
    medicine_name: str,
    additional_info: Optional[str] = None,
) -> tuple[str, str]:
    """Return the ``(subject, html)`` pair for a caregiver alert email."""

    alert_type = AlertType(alert_type)
    if alert_type == AlertType.MISSED_DOSE:
        subject = f"⚠️ Missed Dose Alert: {patient_name}"
        context = {
            "title": "⚠️ Missed Dose Alert",
            "accent": "linear-gradient(135deg, #f97316, #ea580c)",
            "panel": "#fef3c7",
            "border": "#f59e0b",
            "headline": f"{patient_name} has missed their scheduled dose.",
            "info_label": "Details",
            "advice": (
                f"Please check on {patient_name} to ensure they take their medicine "
                "or if they need assistance."
            ),
        }
    else:
        subject = f"💊 Low Stock Alert: {medicine_name}"
        context = {
            "title": "💊 Low Stock Alert",
            "accent": "linear-gradient(135deg, #8b5cf6, #7c3aed)",
            "panel": "#ede9fe",
            "border": "#8b5cf6",
            "headline": f"{patient_name}'s medicine supply is running low.",
            "info_label": "Remaining Stock",
            "advice": f"Please arrange to refill {patient_name}'s prescription soon to avoid running out.",
        }

    html = _EMAIL_TEMPLATE.render(
        medicine_name=medicine_name,
        additional_info=additional_info,
        brand=BRAND,
        **context,
    )
    return subject, html


def render_sms(
    alert_type: AlertType,
    patient_name: str,
    medicine_name: str,
    additional_info: Optional[str] = None,
) -> str:
    if AlertType(alert_type) == AlertType.MISSED_DOSE:
        return (
            f"⚠️ {BRAND} Alert: {patient_name} missed their {medicine_name} dose. "
            f"{additional_info or 'Please check on them.'}"
        )
    return (
        f"💊 {BRAND} Alert: {patient_name}'s {medicine_name} is running low. "
        f"{additional_info or 'Please arrange a refill.'}"
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)


def _receipt_id(response: httpx.Response, key: str) -> Optional[str]:
    """Read the provider id from a 2xx body; the message was accepted even when it is unreadable."""
    try:
        payload = response.json()
    except ValueError:
        logger.warning("Unreadable %s response body: %r", response.url.host, response.text[:200])
        return None
    if not isinstance(payload, dict):
        logger.warning("Unexpected %s response body: %r", response.url.host, payload)
        return None
    value = payload.get(key)
    return str(value) if value is not None else None


class ResendEmailChannel:
    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("RESEND_API_KEY is not configured")
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None
    ) -> "ResendEmailChannel":
        return cls(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            base_url=settings.resend_api_url,
            timeout=settings.delivery_timeout_seconds,
            transport=transport,
        )

    def send_caregiver_email(
        self,
        recipient: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt:
        subject, html = render_email(alert_type, patient_name, medicine_name, context)

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = client.post(
                    f"{self.base_url}/emails",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.sender, "to": [recipient], "subject": subject, "html": html},
                )
            except httpx.HTTPError as exc:
                raise DeliveryError(f"Resend unreachable: {exc}") from exc

        if response.is_error:
            raise DeliveryError(f"Resend API error: {_error_detail(response)}")

        email_id = _receipt_id(response, "id")
        logger.info("Email sent successfully: %s", email_id)
        return DeliveryReceipt(delivery_id=email_id, message=subject)


class TwilioSmsChannel:
    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        base_url: str = "https://api.twilio.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not (account_sid and auth_token and from_number):
            raise ConfigurationError("Twilio credentials not configured")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None
    ) -> "TwilioSmsChannel":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
            base_url=settings.twilio_api_url,
            timeout=settings.delivery_timeout_seconds,
            transport=transport,
        )

    def send_caregiver_sms(
        self,
        recipient_phone: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt:
        body = render_sms(alert_type, patient_name, medicine_name, context)
        url = f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = client.post(
                    url,
                    auth=(self.account_sid, self.auth_token),
                    data={"To": recipient_phone, "From": self.from_number, "Body": body},
                )
            except httpx.HTTPError as exc:
                raise DeliveryError(f"Twilio unreachable: {exc}") from exc

        if response.is_error:
            logger.error("Twilio error: %s", response.text)
            raise DeliveryError(f"Twilio API error: {_error_detail(response)}")

        message_sid = _receipt_id(response, "sid")
        logger.info("SMS sent successfully: %s", message_sid)
        return DeliveryReceipt(delivery_id=message_sid, message=body)


def build_channels(
    settings: Settings,
    transport: Optional[httpx.BaseTransport] = None,
) -> tuple[ResendEmailChannel, Optional[TwilioSmsChannel]]:
    """Build the configured channels; raises ConfigurationError when credentials are missing."""

    email_channel = ResendEmailChannel.from_settings(settings, transport=transport)
    sms_channel = TwilioSmsChannel.from_settings(settings, transport=transport) if settings.sms_enabled else None
    return email_channel, sms_channel
