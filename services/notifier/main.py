"""Direct caregiver alert delivery over email and SMS."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import Settings, configure_logging, get_settings
from app.core.deps import Clock, get_clock
from app.db.session import init_db, session_scope
from app.db.store import SqlAlchemyStore
from carepill import (
    Alert,
    ConfigurationError,
    DeliveryReceipt,
    EmailChannel,
    NotificationDispatcher,
    Recipient,
    SmsChannel,
)
from services.notifier.channels import ResendEmailChannel, TwilioSmsChannel
from shared.contracts.enums import ChannelType
from shared.contracts.models import (
    DeliveryRequest,
    EmailDeliveryRequest,
    EmailDeliveryResponse,
    FailureResponse,
    SmsDeliveryRequest,
    SmsDeliveryResponse,
)

logger = logging.getLogger(__name__)

EmailChannelFactory = Callable[[Settings], EmailChannel]
SmsChannelFactory = Callable[[Settings], SmsChannel]


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    init_db(settings)
    yield


app = FastAPI(title="notifier", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content=FailureResponse(error="Missing required fields").model_dump(by_alias=True),
    )


def get_email_channel_factory() -> EmailChannelFactory:
    return ResendEmailChannel.from_settings


def _twilio_channel(settings: Settings) -> SmsChannel:
    if not settings.sms_enabled:
        raise ConfigurationError("SMS delivery is disabled")
    return TwilioSmsChannel.from_settings(settings)


def get_sms_channel_factory() -> SmsChannelFactory:
    return _twilio_channel


def _failure(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=FailureResponse(error=str(exc)).model_dump(by_alias=True),
    )


def _alert(payload: DeliveryRequest) -> Alert:
    return Alert(
        patient_id=payload.patient_id,
        patient_name=payload.patient_name,
        medicine_name=payload.medicine_name,
        alert_type=payload.alert_type,
        additional_info=payload.additional_info,
    )


def _deliver(
    settings: Settings,
    recipient: Recipient,
    alert: Alert,
    now: datetime,
    email_channel: Optional[EmailChannel] = None,
    sms_channel: Optional[SmsChannel] = None,
) -> DeliveryReceipt:
    # The failed notification log must commit before the error is reported.
    failure: Optional[Exception] = None
    with session_scope(settings) as session:
        dispatcher = NotificationDispatcher(SqlAlchemyStore(session), email_channel, sms_channel)
        try:
            receipt = dispatcher.deliver(recipient, alert, now)
        except ConfigurationError:
            raise
        except Exception as exc:
            failure = exc
    if failure is not None:
        raise failure
    return receipt


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/send-caregiver-email", response_model=EmailDeliveryResponse)
def send_caregiver_email(
    payload: EmailDeliveryRequest,
    settings: Settings = Depends(get_settings),
    channel_factory: EmailChannelFactory = Depends(get_email_channel_factory),
    clock: Clock = Depends(get_clock),
):
    logger.info("Sending %s email to %s", payload.alert_type.value, payload.caregiver_email)
    try:
        receipt = _deliver(
            settings,
            Recipient(ChannelType.EMAIL, payload.caregiver_email, "request"),
            _alert(payload),
            clock(),
            email_channel=channel_factory(settings),
        )
    except Exception as exc:
        logger.error("Error in send-caregiver-email: %s", exc)
        return _failure(exc)
    return EmailDeliveryResponse(email_id=receipt.delivery_id)


@app.post("/send-caregiver-sms", response_model=SmsDeliveryResponse)
def send_caregiver_sms(
    payload: SmsDeliveryRequest,
    settings: Settings = Depends(get_settings),
    channel_factory: SmsChannelFactory = Depends(get_sms_channel_factory),
    clock: Clock = Depends(get_clock),
):
    logger.info("Sending %s SMS to %s", payload.alert_type.value, payload.caregiver_phone)
    try:
        receipt = _deliver(
            settings,
            Recipient(ChannelType.SMS, payload.caregiver_phone, "request"),
            _alert(payload),
            clock(),
            sms_channel=channel_factory(settings),
        )
    except Exception as exc:
        logger.error("Error in send-caregiver-sms: %s", exc)
        return _failure(exc)
    return SmsDeliveryResponse(message_sid=receipt.delivery_id)
