"""SQLAlchemy-backed implementation of the adherence store."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from carepill import NotificationLogEntry
from shared.contracts.enums import CaregiverLinkStatus, DoseStatus, SessionType, StockAlertType

from .models import (
    CaregiverLink,
    DoseLog,
    Medicine,
    MedicineSession,
    NotificationLog,
    Profile,
    SessionSchedule,
    StockAlert,
)


class SqlAlchemyStore:
    """Read and write rule-engine records through one SQLAlchemy session.

    Writes are flushed immediately so later reads in the same run see them;
    committing is left to the caller (see ``app.db.session.session_scope``).
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # Seeding helpers

    def add_profile(self, user_id: str, full_name: str, **fields) -> Profile:
        profile = Profile(user_id=user_id, full_name=full_name, **fields)
        self.session.add(profile)
        self.session.flush()
        return profile

    def add_medicine(self, user_id: str, name: str, sessions: Iterable[SessionType] = (), **fields) -> Medicine:
        medicine = Medicine(user_id=user_id, name=name, **fields)
        medicine.sessions = [MedicineSession(session_type=SessionType(s)) for s in sessions]
        self.session.add(medicine)
        self.session.flush()
        return medicine

    def set_schedule(
        self, user_id: str, session_type: SessionType, scheduled_time: time, is_default: bool = False
    ) -> SessionSchedule:
        stmt = select(SessionSchedule).where(
            SessionSchedule.user_id == user_id,
            SessionSchedule.session_type == SessionType(session_type),
        )
        schedule = self.session.scalars(stmt).one_or_none()
        if schedule is None:
            schedule = SessionSchedule(user_id=user_id, session_type=SessionType(session_type))
            self.session.add(schedule)
        schedule.scheduled_time = scheduled_time
        schedule.is_default = is_default
        self.session.flush()
        return schedule

    # Dose logs

    def pending_doses(self, day: date) -> list[DoseLog]:
        stmt = (
            select(DoseLog)
            .where(DoseLog.scheduled_date == day, DoseLog.status == DoseStatus.PENDING)
            .order_by(DoseLog.created_at, DoseLog.id)
        )
        return list(self.session.scalars(stmt))

    def find_dose(self, medicine_id: str, session_type: SessionType, day: date) -> DoseLog | None:
        stmt = select(DoseLog).where(
            DoseLog.medicine_id == medicine_id,
            DoseLog.session_type == SessionType(session_type),
            DoseLog.scheduled_date == day,
        )
        return self.session.scalars(stmt).one_or_none()

    def create_dose(self, user_id: str, medicine_id: str, session_type: SessionType, day: date) -> DoseLog:
        log = DoseLog(
            user_id=user_id,
            medicine_id=medicine_id,
            session_type=SessionType(session_type),
            scheduled_date=day,
            status=DoseStatus.PENDING,
        )
        self.session.add(log)
        self.session.flush()
        return log

    def save_dose(self, log: DoseLog) -> None:
        self.session.add(log)
        self.session.flush()

    def doses_for_user(self, user_id: str, start: date, end: date) -> list[DoseLog]:
        stmt = (
            select(DoseLog)
            .where(
                DoseLog.user_id == user_id,
                DoseLog.scheduled_date >= start,
                DoseLog.scheduled_date <= end,
            )
            .order_by(DoseLog.scheduled_date, DoseLog.session_type)
        )
        return list(self.session.scalars(stmt))

    # Schedules, profiles, medicines

    def session_time(self, user_id: str, session_type: SessionType) -> time | None:
        stmt = select(SessionSchedule.scheduled_time).where(
            SessionSchedule.user_id == user_id,
            SessionSchedule.session_type == SessionType(session_type),
        )
        return self.session.scalars(stmt).one_or_none()

    def profile(self, user_id: str) -> Profile | None:
        return self.session.scalars(select(Profile).where(Profile.user_id == user_id)).one_or_none()

    def medicine(self, medicine_id: str) -> Medicine | None:
        return self.session.get(Medicine, medicine_id)

    def active_medicines(self, user_id: str | None = None) -> list[Medicine]:
        stmt = select(Medicine).where(Medicine.is_active.is_(True))
        if user_id is not None:
            stmt = stmt.where(Medicine.user_id == user_id)
        return list(self.session.scalars(stmt.order_by(Medicine.name)))

    def medicine_sessions(self, medicine_id: str) -> list[SessionType]:
        stmt = select(MedicineSession.session_type).where(MedicineSession.medicine_id == medicine_id)
        return list(self.session.scalars(stmt))

    # Alerts and notifications

    def has_stock_alert(self, medicine_id: str, alert_type: StockAlertType, day: date) -> bool:
        stmt = (
            select(StockAlert.id)
            .where(
                StockAlert.medicine_id == medicine_id,
                StockAlert.alert_type == alert_type,
                StockAlert.alert_date == day,
            )
            .limit(1)
        )
        return self.session.scalars(stmt).first() is not None

    def add_stock_alert(self, medicine_id: str, user_id: str, alert_type: StockAlertType, day: date) -> None:
        self.session.add(
            StockAlert(medicine_id=medicine_id, user_id=user_id, alert_type=alert_type, alert_date=day)
        )
        self.session.flush()

    def add_notification(self, entry: NotificationLogEntry) -> None:
        self.session.add(
            NotificationLog(
                user_id=entry.user_id,
                notification_type=entry.notification_type,
                recipient_email=entry.recipient_email,
                recipient_phone=entry.recipient_phone,
                message=entry.message,
                status=entry.status,
                error=entry.error,
                sent_at=entry.sent_at,
            )
        )
        self.session.flush()

    # Caregiver links

    def links(
        self,
        patient_id: str | None = None,
        caregiver_id: str | None = None,
        status: CaregiverLinkStatus | None = None,
    ) -> list[CaregiverLink]:
        stmt = select(CaregiverLink)
        if patient_id is not None:
            stmt = stmt.where(CaregiverLink.patient_id == patient_id)
        if caregiver_id is not None:
            stmt = stmt.where(CaregiverLink.caregiver_id == caregiver_id)
        if status is not None:
            stmt = stmt.where(CaregiverLink.status == status)
        return list(self.session.scalars(stmt.order_by(CaregiverLink.created_at)))

    def link(self, link_id: str) -> CaregiverLink | None:
        return self.session.get(CaregiverLink, link_id)

    def link_by_token(self, token: str) -> CaregiverLink | None:
        stmt = select(CaregiverLink).where(CaregiverLink.invitation_token == token)
        return self.session.scalars(stmt).one_or_none()

    def create_link(
        self,
        patient_id: str,
        caregiver_id: str | None,
        invitation_token: str | None,
        created_at: datetime,
    ) -> CaregiverLink:
        link = CaregiverLink(
            patient_id=patient_id,
            caregiver_id=caregiver_id,
            invitation_token=invitation_token,
            status=CaregiverLinkStatus.PENDING,
            created_at=created_at,
        )
        self.session.add(link)
        self.session.flush()
        return link

    def save_link(self, link: CaregiverLink) -> None:
        self.session.add(link)
        self.session.flush()

    def delete_link(self, link_id: str) -> bool:
        link = self.session.get(CaregiverLink, link_id)
        if link is None:
            return False
        self.session.delete(link)
        self.session.flush()
        return True
