from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .enums import AlertType, CaregiverLinkStatus, DoseStatus, SessionType, StockStatus


class WireModel(BaseModel):
    """Base for payloads exchanged with the web client and cron jobs (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobResult(WireModel):
    success: bool = True
    alerts_sent: int = Field(default=0, ge=0)
    message: str | None = None


class SeedResult(WireModel):
    success: bool = True
    created: int = Field(default=0, ge=0)


class FailureResponse(WireModel):
    success: bool = False
    error: str


class DeliveryRequest(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    patient_id: str = Field(min_length=1)
    alert_type: AlertType
    medicine_name: str = Field(min_length=1)
    patient_name: str = Field(min_length=1)
    additional_info: str | None = None


class EmailDeliveryRequest(DeliveryRequest):
    caregiver_email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")


class SmsDeliveryRequest(DeliveryRequest):
    caregiver_phone: str = Field(min_length=4)


class EmailDeliveryResponse(WireModel):
    success: bool = True
    email_id: str | None = None


class SmsDeliveryResponse(WireModel):
    success: bool = True
    message_sid: str | None = None


class DoseLogRequest(WireModel):
    user_id: str = Field(min_length=1)
    medicine_id: str = Field(min_length=1)
    session_type: SessionType
    scheduled_date: date
    status: DoseStatus
    notes: str | None = None

    @model_validator(mode="after")
    def validate_patient_action(self) -> "DoseLogRequest":
        if self.status not in (DoseStatus.TAKEN, DoseStatus.SKIPPED):
            raise ValueError("patients can only mark a dose as 'taken' or 'skipped'")
        return self


class DoseLogDTO(WireModel):
    id: str
    user_id: str
    medicine_id: str
    session_type: SessionType
    scheduled_date: date
    status: DoseStatus
    taken_at: datetime | None = None
    notes: str | None = None


class AdherenceSummaryDTO(WireModel):
    taken: int
    pending: int
    missed: int
    skipped: int
    adherence_rate: float


class MedicineStockDTO(WireModel):
    medicine_id: str
    name: str
    stock_quantity: int
    low_stock_threshold: int
    stock_status: StockStatus


class InvitationRequest(WireModel):
    patient_id: str = Field(min_length=1)


class AcceptInvitationRequest(WireModel):
    token: str = Field(min_length=1)
    caregiver_id: str = Field(min_length=1)


class CaregiverRequest(WireModel):
    patient_id: str = Field(min_length=1)
    caregiver_id: str = Field(min_length=1)


class CaregiverLinkDTO(WireModel):
    id: str
    patient_id: str
    caregiver_id: str | None = None
    invitation_token: str | None = None
    status: CaregiverLinkStatus
    created_at: datetime
    accepted_at: datetime | None = None
