from __future__ import annotations

import uuid
from datetime import date, datetime, time

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from shared.contracts.enums import (
    CaregiverLinkStatus,
    DeliveryStatus,
    DoseStatus,
    SessionType,
    StockAlertType,
)


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class Base(DeclarativeBase):
    """Declarative base for application models."""


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Profile(TimestampMixin, Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))

    # Legacy single-caregiver contact fields, kept alongside caregiver links.
    caregiver_name: Mapped[str | None] = mapped_column(String(255))
    caregiver_email: Mapped[str | None] = mapped_column(String(255))
    caregiver_phone: Mapped[str | None] = mapped_column(String(32))


class Medicine(TimestampMixin, Base):
    __tablename__ = "medicines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    dosage: Mapped[str] = mapped_column(String(64), nullable=False, default="1")
    dosage_unit: Mapped[str] = mapped_column(String(32), nullable=False, default="tablet")
    instructions: Mapped[str | None] = mapped_column(Text)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    sessions: Mapped[list[MedicineSession]] = relationship(
        back_populates="medicine", cascade="all, delete-orphan"
    )


class MedicineSession(Base):
    __tablename__ = "medicine_sessions"
    __table_args__ = (
        UniqueConstraint("medicine_id", "session_type", name="uq_medicine_sessions_medicine_session"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    medicine_id: Mapped[str] = mapped_column(
        ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False
    )
    session_type: Mapped[SessionType] = mapped_column(_enum(SessionType, "session_type"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    medicine: Mapped[Medicine] = relationship(back_populates="sessions")


class SessionSchedule(TimestampMixin, Base):
    __tablename__ = "session_schedules"
    __table_args__ = (
        UniqueConstraint("user_id", "session_type", name="uq_session_schedules_user_session"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    session_type: Mapped[SessionType] = mapped_column(_enum(SessionType, "session_type"), nullable=False)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class DoseLog(TimestampMixin, Base):
    __tablename__ = "dose_logs"
    __table_args__ = (
        UniqueConstraint(
            "medicine_id", "session_type", "scheduled_date", name="uq_dose_logs_medicine_session_date"
        ),
        Index("ix_dose_logs_scheduled_date_status", "scheduled_date", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    medicine_id: Mapped[str] = mapped_column(
        ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False
    )
    session_type: Mapped[SessionType] = mapped_column(_enum(SessionType, "session_type"), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[DoseStatus] = mapped_column(
        _enum(DoseStatus, "dose_status"), nullable=False, default=DoseStatus.PENDING
    )
    taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    medicine: Mapped[Medicine] = relationship()


class CaregiverLink(Base):
    __tablename__ = "caregiver_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    patient_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    caregiver_id: Mapped[str | None] = mapped_column(String(36), index=True)
    invitation_token: Mapped[str | None] = mapped_column(String(64), unique=True)
    status: Mapped[CaregiverLinkStatus] = mapped_column(
        _enum(CaregiverLinkStatus, "caregiver_link_status"),
        nullable=False,
        default=CaregiverLinkStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class StockAlert(Base):
    __tablename__ = "stock_alerts"
    __table_args__ = (
        UniqueConstraint(
            "medicine_id", "alert_type", "alert_date", name="uq_stock_alerts_medicine_type_date"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    medicine_id: Mapped[str] = mapped_column(
        ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    alert_type: Mapped[StockAlertType] = mapped_column(
        _enum(StockAlertType, "stock_alert_type"), nullable=False
    )
    alert_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class NotificationLog(Base):
    __tablename__ = "notification_logs"
    __table_args__ = (
        Index("ix_notification_logs_user_sent", "user_id", "sent_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_email: Mapped[str | None] = mapped_column(String(255))
    recipient_phone: Mapped[str | None] = mapped_column(String(32))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus, "delivery_status"), nullable=False
    )
    error: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
