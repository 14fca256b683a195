"""Cron-triggered jobs: missed-dose detection, low-stock alerts and daily dose seeding."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from app.core.config import Settings, configure_logging, get_settings
from app.core.deps import Clock, get_clock
from app.db.session import init_db, session_scope
from app.db.store import SqlAlchemyStore
from carepill import CarePillFlow, EmailChannel, SmsChannel, seed_dose_logs, to_local
from services.notifier.channels import build_channels
from shared.contracts.models import FailureResponse, JobResult, SeedResult

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[Settings], tuple[EmailChannel, Optional[SmsChannel]]]


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    init_db(settings)
    yield


app = FastAPI(title="scheduler", lifespan=lifespan)


def get_channel_factory() -> ChannelFactory:
    return build_channels


@contextmanager
def _flow(settings: Settings, channel_factory: ChannelFactory) -> Iterator[CarePillFlow]:
    email_channel, sms_channel = channel_factory(settings)
    with session_scope(settings) as session:
        yield CarePillFlow(
            SqlAlchemyStore(session),
            email_channel,
            sms_channel,
            threshold_minutes=settings.missed_dose_threshold_minutes,
            window_minutes=settings.missed_dose_window_minutes,
            tz=settings.tzinfo,
        )


def _failure(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=FailureResponse(error=str(exc)).model_dump(by_alias=True),
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/jobs/check-missed-doses", response_model=JobResult, response_model_exclude_none=True)
def check_missed_doses(
    settings: Settings = Depends(get_settings),
    channel_factory: ChannelFactory = Depends(get_channel_factory),
    clock: Clock = Depends(get_clock),
):
    logger.info("Checking for missed doses...")
    try:
        with _flow(settings, channel_factory) as flow:
            report = flow.check_missed_doses(clock())
    except Exception as exc:
        logger.exception("Error in check-missed-doses")
        return _failure(exc)

    if report.checked == 0:
        return JobResult(alerts_sent=0, message="No pending doses")
    return JobResult(alerts_sent=report.alerts_sent)


@app.post("/jobs/check-low-stock", response_model=JobResult, response_model_exclude_none=True)
def check_low_stock(
    settings: Settings = Depends(get_settings),
    channel_factory: ChannelFactory = Depends(get_channel_factory),
    clock: Clock = Depends(get_clock),
):
    logger.info("Checking for low stock medicines...")
    try:
        with _flow(settings, channel_factory) as flow:
            report = flow.check_low_stock(clock())
    except Exception as exc:
        logger.exception("Error in check-low-stock")
        return _failure(exc)

    if report.low_stock == 0:
        return JobResult(alerts_sent=0, message="No low stock")
    return JobResult(alerts_sent=report.alerts_sent)


@app.post("/jobs/seed-dose-logs", response_model=SeedResult)
def seed_doses(
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    try:
        with session_scope(settings) as session:
            created = seed_dose_logs(
                SqlAlchemyStore(session),
                to_local(clock(), settings.tzinfo).date(),
            )
    except Exception as exc:
        logger.exception("Error in seed-dose-logs")
        return _failure(exc)
    return SeedResult(created=created)
