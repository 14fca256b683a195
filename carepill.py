from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from shared.contracts.enums import (
    AlertType,
    CaregiverLinkStatus,
    ChannelType,
    DeliveryStatus,
    DoseStatus,
    SessionType,
    StockAlertType,
    StockStatus,
)


logger = logging.getLogger(__name__)

MISSED_DOSE_THRESHOLD_MINUTES = 5
MISSED_DOSE_WINDOW_MINUTES = 5
UNKNOWN_MEDICINE = "Unknown medicine"
PATIENT_DOSE_ACTIONS = {DoseStatus.TAKEN, DoseStatus.SKIPPED}
DEFAULT_SESSION_TIMES = {
    SessionType.MORNING: time(8, 0),
    SessionType.AFTERNOON: time(14, 0),
    SessionType.NIGHT: time(20, 0),
}


class ConfigurationError(Exception):
    """Raised when a delivery channel is missing credentials; fatal for the current run."""


class DeliveryError(Exception):
    """Raised by a channel when a single delivery fails."""


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_local(now: datetime, tz: tzinfo) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


@dataclass
class Profile:
    user_id: str
    full_name: str
    email: Optional[str] = None
    caregiver_name: Optional[str] = None
    caregiver_email: Optional[str] = None
    caregiver_phone: Optional[str] = None


@dataclass
class Medicine:
    user_id: str
    name: str
    stock_quantity: int = 0
    low_stock_threshold: int = 0
    dosage: str = "1"
    dosage_unit: str = "tablet"
    instructions: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    id: str = field(default_factory=_new_id)


@dataclass
class SessionSchedule:
    user_id: str
    session_type: SessionType
    scheduled_time: time
    is_default: bool = False
    id: str = field(default_factory=_new_id)


@dataclass
class DoseLog:
    user_id: str
    medicine_id: str
    session_type: SessionType
    scheduled_date: date
    status: DoseStatus = DoseStatus.PENDING
    taken_at: Optional[datetime] = None
    notes: Optional[str] = None
    id: str = field(default_factory=_new_id)


@dataclass
class CaregiverLink:
    patient_id: str
    caregiver_id: Optional[str] = None
    invitation_token: Optional[str] = None
    status: CaregiverLinkStatus = CaregiverLinkStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    accepted_at: Optional[datetime] = None
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class StockAlert:
    medicine_id: str
    user_id: str
    alert_type: StockAlertType
    alert_date: date
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class NotificationLogEntry:
    user_id: str
    notification_type: str
    message: str
    status: DeliveryStatus
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    error: Optional[str] = None
    sent_at: Optional[datetime] = None


@dataclass(frozen=True)
class Alert:
    patient_id: str
    patient_name: str
    medicine_name: str
    alert_type: AlertType
    additional_info: Optional[str] = None


@dataclass(frozen=True)
class Recipient:
    channel: ChannelType
    address: str
    source: str


@dataclass(frozen=True)
class DeliveryReceipt:
    delivery_id: Optional[str]
    message: str


class AdherenceStore(Protocol):
    """Persistence contract shared by InMemoryStore and app.db.store.SqlAlchemyStore."""

    def pending_doses(self, day: date) -> List[DoseLog]: ...

    def find_dose(self, medicine_id: str, session_type: SessionType, day: date) -> Optional[DoseLog]: ...

    def create_dose(self, user_id: str, medicine_id: str, session_type: SessionType, day: date) -> DoseLog: ...

    def save_dose(self, log: DoseLog) -> None: ...

    def doses_for_user(self, user_id: str, start: date, end: date) -> List[DoseLog]: ...

    def session_time(self, user_id: str, session_type: SessionType) -> Optional[time]: ...

    def set_schedule(
        self, user_id: str, session_type: SessionType, scheduled_time: time, is_default: bool = False
    ) -> SessionSchedule: ...

    def profile(self, user_id: str) -> Optional[Profile]: ...

    def medicine(self, medicine_id: str) -> Optional[Medicine]: ...

    def active_medicines(self, user_id: Optional[str] = None) -> List[Medicine]: ...

    def medicine_sessions(self, medicine_id: str) -> List[SessionType]: ...

    def has_stock_alert(self, medicine_id: str, alert_type: StockAlertType, day: date) -> bool: ...

    def add_stock_alert(self, medicine_id: str, user_id: str, alert_type: StockAlertType, day: date) -> None: ...

    def add_notification(self, entry: NotificationLogEntry) -> None: ...

    def links(
        self,
        patient_id: Optional[str] = None,
        caregiver_id: Optional[str] = None,
        status: Optional[CaregiverLinkStatus] = None,
    ) -> List[CaregiverLink]: ...

    def link(self, link_id: str) -> Optional[CaregiverLink]: ...

    def link_by_token(self, token: str) -> Optional[CaregiverLink]: ...

    def create_link(
        self,
        patient_id: str,
        caregiver_id: Optional[str],
        invitation_token: Optional[str],
        created_at: datetime,
    ) -> CaregiverLink: ...

    def save_link(self, link: CaregiverLink) -> None: ...

    def delete_link(self, link_id: str) -> bool: ...


class EmailChannel(Protocol):
    def send_caregiver_email(
        self,
        recipient: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt: ...


class SmsChannel(Protocol):
    def send_caregiver_sms(
        self,
        recipient_phone: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt: ...


# Dose status model


def transition(log: DoseLog, status: DoseStatus, now: datetime) -> DoseLog:
    """Apply a status change to a dose log.

    Patients may set ``taken`` or ``skipped`` from any state, which lets them
    correct a ``missed`` or ``skipped`` dose later. Only the detector sets
    ``missed`` and only from ``pending``. Nothing returns to ``pending``.
    """

    status = DoseStatus(status)
    if status == DoseStatus.PENDING:
        raise ValueError("a dose cannot return to 'pending'")
    if status == DoseStatus.MISSED and log.status != DoseStatus.PENDING:
        raise ValueError(f"only pending doses can be marked missed, dose is '{DoseStatus(log.status).value}'")

    log.status = status
    log.taken_at = now if status == DoseStatus.TAKEN else None
    return log


def record_dose(
    store: AdherenceStore,
    user_id: str,
    medicine_id: str,
    session_type: SessionType,
    day: date,
    status: DoseStatus,
    now: datetime,
    notes: Optional[str] = None,
) -> DoseLog:
    status = DoseStatus(status)
    if status not in PATIENT_DOSE_ACTIONS:
        raise ValueError(f"invalid patient dose action: {status.value}")

    log = store.find_dose(medicine_id, session_type, day)
    if log is None:
        log = store.create_dose(user_id, medicine_id, session_type, day)
    elif log.user_id != user_id:
        raise ValueError("dose belongs to a different patient")

    transition(log, status, now)
    if notes is not None:
        log.notes = notes
    store.save_dose(log)
    return log


def ensure_default_schedules(store: AdherenceStore, user_id: str) -> int:
    """Give ``user_id`` the default time for every session they have not scheduled yet."""

    added = 0
    for session_type, scheduled_time in DEFAULT_SESSION_TIMES.items():
        if store.session_time(user_id, session_type) is None:
            store.set_schedule(user_id, session_type, scheduled_time, is_default=True)
            added += 1
    return added


def seed_dose_logs(store: AdherenceStore, day: date) -> int:
    """Create the pending dose logs for ``day``; existing logs are left alone.

    Patients seeded here also receive default session times for any session
    they have not scheduled, so the detector has a time to compare against.
    """

    created = 0
    scheduled_users: Set[str] = set()
    for medicine in store.active_medicines():
        if medicine.start_date is not None and day < medicine.start_date:
            continue
        if medicine.end_date is not None and day > medicine.end_date:
            continue
        if medicine.user_id not in scheduled_users:
            ensure_default_schedules(store, medicine.user_id)
            scheduled_users.add(medicine.user_id)
        for session_type in store.medicine_sessions(medicine.id):
            if store.find_dose(medicine.id, session_type, day) is not None:
                continue
            store.create_dose(medicine.user_id, medicine.id, session_type, day)
            created += 1
    logger.info("Seeded %d pending doses for %s", created, day.isoformat())
    return created


def stock_status(quantity: int, threshold: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.CRITICAL
    if quantity <= threshold:
        return StockStatus.LOW
    return StockStatus.GOOD


def is_low_stock(medicine: Medicine) -> bool:
    return medicine.stock_quantity <= medicine.low_stock_threshold


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class AdherenceSummary:
    taken: int = 0
    pending: int = 0
    missed: int = 0
    skipped: int = 0

    @property
    def adherence_rate(self) -> float:
        resolved = self.taken + self.missed + self.skipped
        if resolved == 0:
            return 0.0
        return round(self.taken / resolved, 4)


def adherence_summary(logs: Iterable[DoseLog]) -> AdherenceSummary:
    counts: Dict[DoseStatus, int] = {status: 0 for status in DoseStatus}
    for log in logs:
        counts[DoseStatus(log.status)] += 1
    return AdherenceSummary(
        taken=counts[DoseStatus.TAKEN],
        pending=counts[DoseStatus.PENDING],
        missed=counts[DoseStatus.MISSED],
        skipped=counts[DoseStatus.SKIPPED],
    )


class NotificationDispatcher:
    """Resolve caregivers for a patient and deliver one alert to each of them."""

    def __init__(
        self,
        store: AdherenceStore,
        email_channel: Optional[EmailChannel],
        sms_channel: Optional[SmsChannel] = None,
    ) -> None:
        self.store = store
        self.email_channel = email_channel
        self.sms_channel = sms_channel

    def resolve_recipients(self, patient: Profile) -> List[Recipient]:
        recipients: List[Recipient] = []

        for link in self.store.links(patient_id=patient.user_id, status=CaregiverLinkStatus.ACCEPTED):
            caregiver = self.store.profile(link.caregiver_id) if link.caregiver_id else None
            if caregiver is None or not caregiver.email:
                logger.debug("Caregiver %s has no account email; skipping", link.caregiver_id)
                continue
            recipients.append(Recipient(ChannelType.EMAIL, caregiver.email, "linked_caregiver"))

        # Legacy contact fields fire regardless of linked caregivers.
        if patient.caregiver_email:
            recipients.append(Recipient(ChannelType.EMAIL, patient.caregiver_email, "legacy_profile"))
        if patient.caregiver_phone:
            recipients.append(Recipient(ChannelType.SMS, patient.caregiver_phone, "legacy_profile"))

        return recipients

    def dispatch(self, patient: Profile, alert: Alert, now: datetime) -> int:
        """Deliver ``alert`` to every recipient and return the number of successful deliveries."""

        delivered = 0
        for recipient in self.resolve_recipients(patient):
            try:
                self.deliver(recipient, alert, now)
            except ConfigurationError:
                raise
            except Exception as exc:
                # One bad recipient never aborts the batch.
                logger.warning(
                    "Failed to send %s %s alert to %s: %s",
                    recipient.channel.value,
                    alert.alert_type.value,
                    recipient.address,
                    exc,
                )
                continue
            delivered += 1
        return delivered

    def deliver(self, recipient: Recipient, alert: Alert, now: datetime) -> DeliveryReceipt:
        try:
            receipt = self._send(recipient, alert)
        except ConfigurationError:
            raise
        except Exception as exc:
            self._record(recipient, alert, now, DeliveryStatus.FAILED, self._describe(alert), error=str(exc))
            raise

        self._record(recipient, alert, now, DeliveryStatus.SENT, receipt.message)
        logger.info(
            "%s %s alert sent to %s",
            recipient.channel.value,
            alert.alert_type.value,
            recipient.address,
        )
        return receipt

    def _send(self, recipient: Recipient, alert: Alert) -> DeliveryReceipt:
        if recipient.channel == ChannelType.EMAIL:
            if self.email_channel is None:
                raise DeliveryError("email delivery is disabled")
            return self.email_channel.send_caregiver_email(
                recipient.address,
                alert.alert_type,
                alert.medicine_name,
                alert.patient_name,
                alert.additional_info,
            )
        if self.sms_channel is None:
            raise DeliveryError("SMS delivery is disabled")
        return self.sms_channel.send_caregiver_sms(
            recipient.address,
            alert.alert_type,
            alert.medicine_name,
            alert.patient_name,
            alert.additional_info,
        )

    @staticmethod
    def _describe(alert: Alert) -> str:
        return f"{alert.alert_type.value} alert for {alert.medicine_name}"

    def _record(
        self,
        recipient: Recipient,
        alert: Alert,
        now: datetime,
        status: DeliveryStatus,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        self.store.add_notification(
            NotificationLogEntry(
                user_id=alert.patient_id,
                notification_type=f"{recipient.channel.value}_{alert.alert_type.value}",
                message=message,
                status=status,
                recipient_email=recipient.address if recipient.channel == ChannelType.EMAIL else None,
                recipient_phone=recipient.address if recipient.channel == ChannelType.SMS else None,
                error=error,
                sent_at=now if status == DeliveryStatus.SENT else None,
            )
        )


@dataclass
class DetectionReport:
    checked: int = 0
    missed_dose_ids: List[str] = field(default_factory=list)
    alerts_sent: int = 0


class MissedDoseDetector:
    """Mark pending doses missed once they fall inside the firing window after their session time.

    The window is ``[threshold, threshold + window)`` minutes after the
    scheduled time, compared as minutes since midnight without wraparound.
    A run that does not land inside the window leaves the dose pending, so
    the detector must be invoked at least once per window length.
    """

    def __init__(
        self,
        store: AdherenceStore,
        dispatcher: NotificationDispatcher,
        threshold_minutes: int = MISSED_DOSE_THRESHOLD_MINUTES,
        window_minutes: int = MISSED_DOSE_WINDOW_MINUTES,
        tz: tzinfo = timezone.utc,
    ) -> None:
        if threshold_minutes < 0:
            raise ValueError("threshold_minutes must be >= 0")
        if window_minutes < 1:
            raise ValueError("window_minutes must be >= 1")
        self.store = store
        self.dispatcher = dispatcher
        self.threshold_minutes = threshold_minutes
        self.window_minutes = window_minutes
        self.tz = tz

    def is_within_window(self, minutes_passed: int) -> bool:
        return self.threshold_minutes <= minutes_passed < self.threshold_minutes + self.window_minutes

    def run(self, now: datetime) -> DetectionReport:
        local_now = to_local(now, self.tz)
        today = local_now.date()
        now_minutes = minutes_since_midnight(local_now.time())
        report = DetectionReport()

        pending = self.store.pending_doses(today)
        logger.info("Checking %d pending doses at %s", len(pending), local_now.isoformat())

        for dose in pending:
            report.checked += 1
            scheduled = self.store.session_time(dose.user_id, dose.session_type)
            if scheduled is None:
                logger.debug("No %s schedule for user %s", SessionType(dose.session_type).value, dose.user_id)
                continue

            minutes_passed = now_minutes - minutes_since_midnight(scheduled)
            if not self.is_within_window(minutes_passed):
                continue

            patient = self.store.profile(dose.user_id)
            if patient is None:
                logger.debug("No profile for user %s; leaving dose %s pending", dose.user_id, dose.id)
                continue

            medicine = self.store.medicine(dose.medicine_id)
            session = SessionType(dose.session_type)
            alert = Alert(
                patient_id=dose.user_id,
                patient_name=patient.full_name,
                medicine_name=medicine.name if medicine else UNKNOWN_MEDICINE,
                alert_type=AlertType.MISSED_DOSE,
                additional_info=f"Session: {session.value}, Scheduled: {scheduled.strftime('%H:%M')}",
            )
            report.alerts_sent += self.dispatcher.dispatch(patient, alert, now)

            transition(dose, DoseStatus.MISSED, now)
            self.store.save_dose(dose)
            report.missed_dose_ids.append(dose.id)

        logger.info(
            "Marked %d doses missed, alerts sent: %d",
            len(report.missed_dose_ids),
            report.alerts_sent,
        )
        return report


@dataclass
class StockReport:
    low_stock: int = 0
    already_alerted: int = 0
    alerted_medicine_ids: List[str] = field(default_factory=list)
    alerts_sent: int = 0


class StockMonitor:
    """Notify caregivers once per day for every active medicine at or below its threshold."""

    def __init__(
        self,
        store: AdherenceStore,
        dispatcher: NotificationDispatcher,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.tz = tz

    def run(self, now: datetime) -> StockReport:
        today = to_local(now, self.tz).date()
        report = StockReport()

        low_stock = [medicine for medicine in self.store.active_medicines() if is_low_stock(medicine)]
        report.low_stock = len(low_stock)
        logger.info("Found %d low stock medicines", len(low_stock))

        for medicine in low_stock:
            if self.store.has_stock_alert(medicine.id, StockAlertType.LOW_STOCK_CAREGIVER, today):
                logger.info("Already sent alert for medicine %s today", medicine.name)
                report.already_alerted += 1
                continue

            patient = self.store.profile(medicine.user_id)
            if patient is None:
                logger.debug("No profile for user %s; skipping %s", medicine.user_id, medicine.name)
                continue

            alert = Alert(
                patient_id=medicine.user_id,
                patient_name=patient.full_name,
                medicine_name=medicine.name,
                alert_type=AlertType.LOW_STOCK,
                additional_info=f"{medicine.stock_quantity} remaining",
            )
            report.alerts_sent += self.dispatcher.dispatch(patient, alert, now)
            self.store.add_stock_alert(
                medicine.id, medicine.user_id, StockAlertType.LOW_STOCK_CAREGIVER, today
            )
            report.alerted_medicine_ids.append(medicine.id)

        logger.info("Low stock alerts sent: %d", report.alerts_sent)
        return report


class CaregiverLinks:
    """Invitation and approval lifecycle for patient/caregiver links."""

    def __init__(self, store: AdherenceStore) -> None:
        self.store = store

    def invite(self, patient_id: str, now: datetime) -> CaregiverLink:
        token = secrets.token_urlsafe(24)
        return self.store.create_link(patient_id, None, token, now)

    def request(self, patient_id: str, caregiver_id: str, now: datetime) -> CaregiverLink:
        if patient_id == caregiver_id:
            raise ValueError("patients cannot be their own caregiver")
        existing = self.store.links(patient_id=patient_id, caregiver_id=caregiver_id)
        if existing:
            raise ValueError(f"link already exists with status '{CaregiverLinkStatus(existing[0].status).value}'")
        return self.store.create_link(patient_id, caregiver_id, None, now)

    def accept_invitation(self, token: str, caregiver_id: str, now: datetime) -> CaregiverLink:
        link = self.store.link_by_token(token)
        if link is None:
            raise KeyError(token)
        if link.patient_id == caregiver_id:
            raise ValueError("patients cannot be their own caregiver")
        link.caregiver_id = caregiver_id
        return self._accept(link, now)

    def approve(self, link_id: str, now: datetime) -> CaregiverLink:
        link = self.store.link(link_id)
        if link is None:
            raise KeyError(link_id)
        if link.caregiver_id is None:
            raise ValueError("invitation has not been claimed by a caregiver")
        return self._accept(link, now)

    def remove(self, link_id: str) -> None:
        if not self.store.delete_link(link_id):
            raise KeyError(link_id)

    def accepted_caregivers(self, patient_id: str) -> List[str]:
        return [
            link.caregiver_id
            for link in self.store.links(patient_id=patient_id, status=CaregiverLinkStatus.ACCEPTED)
            if link.caregiver_id
        ]

    def accepted_patients(self, caregiver_id: str) -> List[str]:
        return [
            link.patient_id
            for link in self.store.links(caregiver_id=caregiver_id, status=CaregiverLinkStatus.ACCEPTED)
        ]

    def pending_requests(self, patient_id: str) -> List[CaregiverLink]:
        return [
            link
            for link in self.store.links(patient_id=patient_id, status=CaregiverLinkStatus.PENDING)
            if link.caregiver_id
        ]

    def _accept(self, link: CaregiverLink, now: datetime) -> CaregiverLink:
        if link.status == CaregiverLinkStatus.ACCEPTED:
            raise ValueError("link has already been accepted")
        link.status = CaregiverLinkStatus.ACCEPTED
        link.accepted_at = now
        link.invitation_token = None
        self.store.save_link(link)
        return link


@dataclass
class InMemoryStore:
    profiles: Dict[str, Profile] = field(default_factory=dict)
    medicines: Dict[str, Medicine] = field(default_factory=dict)
    sessions: Dict[str, List[SessionType]] = field(default_factory=dict)
    schedules: Dict[Tuple[str, SessionType], SessionSchedule] = field(default_factory=dict)
    dose_logs: Dict[str, DoseLog] = field(default_factory=dict)
    caregiver_links: Dict[str, CaregiverLink] = field(default_factory=dict)
    stock_alerts: List[StockAlert] = field(default_factory=list)
    notification_logs: List[NotificationLogEntry] = field(default_factory=list)

    def add_profile(self, profile: Profile) -> Profile:
        self.profiles[profile.user_id] = profile
        return profile

    def add_medicine(self, medicine: Medicine, sessions: Iterable[SessionType] = ()) -> Medicine:
        self.medicines[medicine.id] = medicine
        self.sessions[medicine.id] = [SessionType(s) for s in sessions]
        return medicine

    def set_schedule(
        self, user_id: str, session_type: SessionType, scheduled_time: time, is_default: bool = False
    ) -> SessionSchedule:
        schedule = SessionSchedule(
            user_id=user_id,
            session_type=SessionType(session_type),
            scheduled_time=scheduled_time,
            is_default=is_default,
        )
        self.schedules[(user_id, schedule.session_type)] = schedule
        return schedule

    def pending_doses(self, day: date) -> List[DoseLog]:
        return [
            log
            for log in self.dose_logs.values()
            if log.scheduled_date == day and log.status == DoseStatus.PENDING
        ]

    def find_dose(self, medicine_id: str, session_type: SessionType, day: date) -> Optional[DoseLog]:
        for log in self.dose_logs.values():
            if log.medicine_id == medicine_id and log.session_type == session_type and log.scheduled_date == day:
                return log
        return None

    def create_dose(self, user_id: str, medicine_id: str, session_type: SessionType, day: date) -> DoseLog:
        if self.find_dose(medicine_id, session_type, day) is not None:
            raise ValueError("dose log already exists for this medicine, session and date")
        log = DoseLog(user_id=user_id, medicine_id=medicine_id, session_type=SessionType(session_type), scheduled_date=day)
        self.dose_logs[log.id] = log
        return log

    def save_dose(self, log: DoseLog) -> None:
        self.dose_logs[log.id] = log

    def doses_for_user(self, user_id: str, start: date, end: date) -> List[DoseLog]:
        return [
            log
            for log in self.dose_logs.values()
            if log.user_id == user_id and start <= log.scheduled_date <= end
        ]

    def session_time(self, user_id: str, session_type: SessionType) -> Optional[time]:
        schedule = self.schedules.get((user_id, SessionType(session_type)))
        return schedule.scheduled_time if schedule else None

    def profile(self, user_id: str) -> Optional[Profile]:
        return self.profiles.get(user_id)

    def medicine(self, medicine_id: str) -> Optional[Medicine]:
        return self.medicines.get(medicine_id)

    def active_medicines(self, user_id: Optional[str] = None) -> List[Medicine]:
        return [
            m
            for m in self.medicines.values()
            if m.is_active and (user_id is None or m.user_id == user_id)
        ]

    def medicine_sessions(self, medicine_id: str) -> List[SessionType]:
        return list(self.sessions.get(medicine_id, []))

    def has_stock_alert(self, medicine_id: str, alert_type: StockAlertType, day: date) -> bool:
        return any(
            a.medicine_id == medicine_id and a.alert_type == alert_type and a.alert_date == day
            for a in self.stock_alerts
        )

    def add_stock_alert(self, medicine_id: str, user_id: str, alert_type: StockAlertType, day: date) -> None:
        if self.has_stock_alert(medicine_id, alert_type, day):
            raise ValueError("stock alert already recorded for today")
        self.stock_alerts.append(
            StockAlert(medicine_id=medicine_id, user_id=user_id, alert_type=alert_type, alert_date=day)
        )

    def add_notification(self, entry: NotificationLogEntry) -> None:
        self.notification_logs.append(entry)

    def links(
        self,
        patient_id: Optional[str] = None,
        caregiver_id: Optional[str] = None,
        status: Optional[CaregiverLinkStatus] = None,
    ) -> List[CaregiverLink]:
        return [
            link
            for link in self.caregiver_links.values()
            if (patient_id is None or link.patient_id == patient_id)
            and (caregiver_id is None or link.caregiver_id == caregiver_id)
            and (status is None or link.status == status)
        ]

    def link(self, link_id: str) -> Optional[CaregiverLink]:
        return self.caregiver_links.get(link_id)

    def link_by_token(self, token: str) -> Optional[CaregiverLink]:
        for link in self.caregiver_links.values():
            if link.invitation_token == token:
                return link
        return None

    def create_link(
        self,
        patient_id: str,
        caregiver_id: Optional[str],
        invitation_token: Optional[str],
        created_at: datetime,
    ) -> CaregiverLink:
        link = CaregiverLink(
            patient_id=patient_id,
            caregiver_id=caregiver_id,
            invitation_token=invitation_token,
            created_at=created_at,
        )
        self.caregiver_links[link.id] = link
        return link

    def save_link(self, link: CaregiverLink) -> None:
        self.caregiver_links[link.id] = link

    def delete_link(self, link_id: str) -> bool:
        return self.caregiver_links.pop(link_id, None) is not None


@dataclass
class SentAlert:
    channel: ChannelType
    recipient: str
    alert_type: AlertType
    medicine_name: str
    patient_name: str
    context: Optional[str]


@dataclass
class FakeChannels:
    sent: List[SentAlert] = field(default_factory=list)
    failing_recipients: Set[str] = field(default_factory=set)

    def send_caregiver_email(
        self,
        recipient: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt:
        return self._send(ChannelType.EMAIL, recipient, alert_type, medicine_name, patient_name, context)

    def send_caregiver_sms(
        self,
        recipient_phone: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt:
        return self._send(ChannelType.SMS, recipient_phone, alert_type, medicine_name, patient_name, context)

    def _send(
        self,
        channel: ChannelType,
        recipient: str,
        alert_type: AlertType,
        medicine_name: str,
        patient_name: str,
        context: Optional[str],
    ) -> DeliveryReceipt:
        if recipient in self.failing_recipients:
            raise DeliveryError(f"rejected recipient {recipient}")
        self.sent.append(
            SentAlert(
                channel=channel,
                recipient=recipient,
                alert_type=AlertType(alert_type),
                medicine_name=medicine_name,
                patient_name=patient_name,
                context=context,
            )
        )
        return DeliveryReceipt(
            delivery_id=f"{channel.value}_{len(self.sent)}",
            message=f"{AlertType(alert_type).value}: {patient_name} / {medicine_name}",
        )


class CarePillFlow:
    def __init__(
        self,
        store: AdherenceStore,
        email_channel: Optional[EmailChannel],
        sms_channel: Optional[SmsChannel] = None,
        threshold_minutes: int = MISSED_DOSE_THRESHOLD_MINUTES,
        window_minutes: int = MISSED_DOSE_WINDOW_MINUTES,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self.store = store
        self.tz = tz
        self.dispatcher = NotificationDispatcher(store, email_channel, sms_channel)
        self.detector = MissedDoseDetector(
            store,
            self.dispatcher,
            threshold_minutes=threshold_minutes,
            window_minutes=window_minutes,
            tz=tz,
        )
        self.stock_monitor = StockMonitor(store, self.dispatcher, tz=tz)
        self.caregivers = CaregiverLinks(store)

    def check_missed_doses(self, now: datetime) -> DetectionReport:
        return self.detector.run(now)

    def check_low_stock(self, now: datetime) -> StockReport:
        return self.stock_monitor.run(now)

    def seed_dose_logs(self, now: datetime) -> int:
        return seed_dose_logs(self.store, to_local(now, self.tz).date())
