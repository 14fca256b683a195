"""Patient-facing dose tracking, stock overview and caregiver link management."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response, status

from app.core.config import Settings, configure_logging, get_settings
from app.core.deps import Clock, get_clock
from app.db.session import init_db, session_scope
from app.db.store import SqlAlchemyStore
from carepill import CaregiverLinks, adherence_summary, record_dose, stock_status, to_local
from shared.contracts.models import (
    AcceptInvitationRequest,
    AdherenceSummaryDTO,
    CaregiverLinkDTO,
    CaregiverRequest,
    DoseLogDTO,
    DoseLogRequest,
    InvitationRequest,
    MedicineStockDTO,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    init_db(settings)
    yield


app = FastAPI(title="tracker", lifespan=lifespan)


@contextmanager
def _tracker_store(settings: Settings) -> Iterator[SqlAlchemyStore]:
    """Open a store for one request; lookup errors become 404, rejected changes 409.

    Only domain calls belong inside the block. Response models are built
    after it so their validation errors are not reported as conflicts.
    """
    try:
        with session_scope(settings) as session:
            yield SqlAlchemyStore(session)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"not found: {exc.args[0]}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/doses", response_model=DoseLogDTO)
def mark_dose(
    payload: DoseLogRequest,
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    with _tracker_store(settings) as store:
        medicine = store.medicine(payload.medicine_id)
        if medicine is None or medicine.user_id != payload.user_id:
            raise KeyError(payload.medicine_id)
        log = record_dose(
            store,
            user_id=payload.user_id,
            medicine_id=payload.medicine_id,
            session_type=payload.session_type,
            day=payload.scheduled_date,
            status=payload.status,
            now=clock(),
            notes=payload.notes,
        )
        logger.info("Dose %s marked %s by %s", log.id, payload.status.value, payload.user_id)
    return DoseLogDTO.model_validate(log, from_attributes=True)


@app.get("/patients/{user_id}/adherence", response_model=AdherenceSummaryDTO)
def patient_adherence(
    user_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    today = to_local(clock(), settings.tzinfo).date()
    start = start or today
    end = end or today
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")

    with _tracker_store(settings) as store:
        summary = adherence_summary(store.doses_for_user(user_id, start, end))
    return AdherenceSummaryDTO(
        taken=summary.taken,
        pending=summary.pending,
        missed=summary.missed,
        skipped=summary.skipped,
        adherence_rate=summary.adherence_rate,
    )


@app.get("/patients/{user_id}/medicines/stock", response_model=list[MedicineStockDTO])
def medicine_stock(user_id: str, settings: Settings = Depends(get_settings)):
    with _tracker_store(settings) as store:
        medicines = store.active_medicines(user_id)
    return [
        MedicineStockDTO(
            medicine_id=medicine.id,
            name=medicine.name,
            stock_quantity=medicine.stock_quantity,
            low_stock_threshold=medicine.low_stock_threshold,
            stock_status=stock_status(medicine.stock_quantity, medicine.low_stock_threshold),
        )
        for medicine in medicines
    ]


@app.post("/caregiver-links/invitations", response_model=CaregiverLinkDTO, status_code=status.HTTP_201_CREATED)
def create_invitation(
    payload: InvitationRequest,
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    with _tracker_store(settings) as store:
        link = CaregiverLinks(store).invite(payload.patient_id, clock())
    return CaregiverLinkDTO.model_validate(link, from_attributes=True)


@app.post("/caregiver-links/accept", response_model=CaregiverLinkDTO)
def accept_invitation(
    payload: AcceptInvitationRequest,
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    with _tracker_store(settings) as store:
        link = CaregiverLinks(store).accept_invitation(payload.token, payload.caregiver_id, clock())
    return CaregiverLinkDTO.model_validate(link, from_attributes=True)


@app.post("/caregiver-links/requests", response_model=CaregiverLinkDTO, status_code=status.HTTP_201_CREATED)
def request_link(
    payload: CaregiverRequest,
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    with _tracker_store(settings) as store:
        link = CaregiverLinks(store).request(payload.patient_id, payload.caregiver_id, clock())
    return CaregiverLinkDTO.model_validate(link, from_attributes=True)


@app.post("/caregiver-links/{link_id}/approve", response_model=CaregiverLinkDTO)
def approve_link(
    link_id: str,
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
):
    with _tracker_store(settings) as store:
        link = CaregiverLinks(store).approve(link_id, clock())
    return CaregiverLinkDTO.model_validate(link, from_attributes=True)


@app.delete("/caregiver-links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_link(link_id: str, settings: Settings = Depends(get_settings)) -> Response:
    with _tracker_store(settings) as store:
        CaregiverLinks(store).remove(link_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/patients/{patient_id}/caregivers", response_model=list[str])
def patient_caregivers(patient_id: str, settings: Settings = Depends(get_settings)):
    with _tracker_store(settings) as store:
        return CaregiverLinks(store).accepted_caregivers(patient_id)


@app.get("/patients/{patient_id}/caregiver-requests", response_model=list[CaregiverLinkDTO])
def patient_caregiver_requests(patient_id: str, settings: Settings = Depends(get_settings)):
    with _tracker_store(settings) as store:
        links = CaregiverLinks(store).pending_requests(patient_id)
    return [CaregiverLinkDTO.model_validate(link, from_attributes=True) for link in links]


@app.get("/caregivers/{caregiver_id}/patients", response_model=list[str])
def caregiver_patients(caregiver_id: str, settings: Settings = Depends(get_settings)):
    with _tracker_store(settings) as store:
        return CaregiverLinks(store).accepted_patients(caregiver_id)
