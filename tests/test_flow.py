from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from carepill import (
    UNKNOWN_MEDICINE,
    CarePillFlow,
    ConfigurationError,
    DoseLog,
    FakeChannels,
    InMemoryStore,
    Medicine,
    MissedDoseDetector,
    NotificationDispatcher,
    Profile,
    adherence_summary,
    record_dose,
    seed_dose_logs,
    stock_status,
    transition,
)
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

TODAY = date(2026, 3, 10)


def _at(hour: int, minute: int, day: date = TODAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _setup(caregiver_email="carol@example.com", caregiver_phone=None, stock=30, threshold=5):
    store = InMemoryStore()
    channels = FakeChannels()
    store.add_profile(
        Profile(
            user_id="patient-1",
            full_name="Pat Doe",
            caregiver_email=caregiver_email,
            caregiver_phone=caregiver_phone,
        )
    )
    medicine = store.add_medicine(
        Medicine(user_id="patient-1", name="Metformin", stock_quantity=stock, low_stock_threshold=threshold),
        [SessionType.MORNING],
    )
    store.set_schedule("patient-1", SessionType.MORNING, time(8, 0))
    return store, channels, medicine


def test_pending_dose_inside_window_is_marked_missed_and_alerted():
    store, channels, medicine = _setup()
    dose = store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)
    flow = CarePillFlow(store, channels, channels)

    report = flow.check_missed_doses(_at(8, 7))

    assert report.alerts_sent == 1
    assert report.missed_dose_ids == [dose.id]
    assert store.dose_logs[dose.id].status == DoseStatus.MISSED

    sent = channels.sent[-1]
    assert sent.channel == ChannelType.EMAIL
    assert sent.recipient == "carol@example.com"
    assert sent.alert_type == AlertType.MISSED_DOSE
    assert sent.medicine_name == "Metformin"
    assert sent.patient_name == "Pat Doe"
    assert sent.context == "Session: morning, Scheduled: 08:00"

    entry = store.notification_logs[-1]
    assert entry.notification_type == "email_missed_dose"
    assert entry.status == DeliveryStatus.SENT
    assert entry.recipient_email == "carol@example.com"
    assert entry.sent_at == _at(8, 7)


@pytest.mark.parametrize(
    "minute, fires",
    [(3, False), (4, False), (5, True), (9, True), (10, False), (12, False)],
)
def test_missed_dose_window_is_half_open(minute, fires):
    store, channels, medicine = _setup()
    dose = store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)

    CarePillFlow(store, channels).check_missed_doses(_at(8, minute))

    expected = DoseStatus.MISSED if fires else DoseStatus.PENDING
    assert store.dose_logs[dose.id].status == expected
    assert len(channels.sent) == (1 if fires else 0)


def test_detector_does_not_realert_once_dose_is_missed():
    store, channels, medicine = _setup()
    store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)
    flow = CarePillFlow(store, channels)

    flow.check_missed_doses(_at(8, 6))
    second = flow.check_missed_doses(_at(8, 8))

    assert second.checked == 0
    assert second.alerts_sent == 0
    assert len(channels.sent) == 1


def test_taken_dose_is_never_checked():
    store, channels, medicine = _setup()
    record_dose(store, "patient-1", medicine.id, SessionType.MORNING, TODAY, DoseStatus.TAKEN, _at(7, 55))

    report = CarePillFlow(store, channels).check_missed_doses(_at(8, 7))

    assert report.checked == 0
    assert channels.sent == []


def test_dose_without_schedule_stays_pending():
    store, channels, medicine = _setup()
    dose = store.create_dose("patient-1", medicine.id, SessionType.NIGHT, TODAY)

    report = CarePillFlow(store, channels).check_missed_doses(_at(8, 7))

    assert report.checked == 1
    assert report.missed_dose_ids == []
    assert store.dose_logs[dose.id].status == DoseStatus.PENDING


def test_dose_without_profile_stays_pending():
    store, channels, medicine = _setup()
    del store.profiles["patient-1"]
    dose = store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)

    report = CarePillFlow(store, channels).check_missed_doses(_at(8, 7))

    assert report.missed_dose_ids == []
    assert store.dose_logs[dose.id].status == DoseStatus.PENDING
    assert channels.sent == []


def test_unknown_medicine_uses_placeholder_name():
    store, channels, _ = _setup()
    store.create_dose("patient-1", "deleted-medicine", SessionType.MORNING, TODAY)

    CarePillFlow(store, channels).check_missed_doses(_at(8, 7))

    assert channels.sent[-1].medicine_name == UNKNOWN_MEDICINE


def test_patient_without_caregivers_is_still_marked_missed():
    store, channels, medicine = _setup(caregiver_email=None)
    dose = store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)

    report = CarePillFlow(store, channels).check_missed_doses(_at(8, 7))

    assert report.alerts_sent == 0
    assert store.dose_logs[dose.id].status == DoseStatus.MISSED


def test_delivery_failure_is_logged_and_dose_still_marked_missed():
    store, channels, medicine = _setup(caregiver_phone="+15551234567")
    channels.failing_recipients.add("carol@example.com")
    dose = store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)

    report = CarePillFlow(store, channels, channels).check_missed_doses(_at(8, 7))

    assert report.alerts_sent == 1
    assert store.dose_logs[dose.id].status == DoseStatus.MISSED
    assert [s.channel for s in channels.sent] == [ChannelType.SMS]

    failed = [e for e in store.notification_logs if e.status == DeliveryStatus.FAILED]
    assert len(failed) == 1
    assert failed[0].notification_type == "email_missed_dose"
    assert failed[0].error == "rejected recipient carol@example.com"
    assert failed[0].sent_at is None


class BrokenForOneRecipient(FakeChannels):
    def __init__(self, broken_recipient, error):
        super().__init__()
        self.broken_recipient = broken_recipient
        self.error = error

    def send_caregiver_email(self, recipient, alert_type, medicine_name, patient_name, context):
        if recipient == self.broken_recipient:
            raise self.error
        return super().send_caregiver_email(recipient, alert_type, medicine_name, patient_name, context)


def test_unexpected_channel_error_does_not_abort_the_run():
    store, _, medicine = _setup(caregiver_email="first@example.com")
    store.add_profile(Profile(user_id="patient-2", full_name="Sam Roe", caregiver_email="second@example.com"))
    other = store.add_medicine(Medicine(user_id="patient-2", name="Lisinopril"), [SessionType.MORNING])
    store.set_schedule("patient-2", SessionType.MORNING, time(8, 0))
    first = store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)
    second = store.create_dose("patient-2", other.id, SessionType.MORNING, TODAY)
    channels = BrokenForOneRecipient("first@example.com", ValueError("Expecting value: line 1 column 1"))

    report = CarePillFlow(store, channels).check_missed_doses(_at(8, 7))

    assert report.alerts_sent == 1
    assert store.dose_logs[first.id].status == DoseStatus.MISSED
    assert store.dose_logs[second.id].status == DoseStatus.MISSED
    assert [s.recipient for s in channels.sent] == ["second@example.com"]

    statuses = {e.recipient_email: (e.status, e.error) for e in store.notification_logs}
    assert statuses == {
        "first@example.com": (DeliveryStatus.FAILED, "Expecting value: line 1 column 1"),
        "second@example.com": (DeliveryStatus.SENT, None),
    }


def test_configuration_error_from_channel_fails_the_run():
    store, _, medicine = _setup()
    store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)
    channels = BrokenForOneRecipient("carol@example.com", ConfigurationError("RESEND_API_KEY is not configured"))

    with pytest.raises(ConfigurationError):
        CarePillFlow(store, channels).check_missed_doses(_at(8, 7))
    assert store.notification_logs == []


def test_sms_recipient_fails_when_sms_channel_is_disabled():
    store, channels, medicine = _setup(caregiver_phone="+15551234567")
    store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)

    report = CarePillFlow(store, channels, sms_channel=None).check_missed_doses(_at(8, 7))

    assert report.alerts_sent == 1
    sms_logs = [e for e in store.notification_logs if e.notification_type == "sms_missed_dose"]
    assert sms_logs[0].status == DeliveryStatus.FAILED
    assert sms_logs[0].error == "SMS delivery is disabled"


def test_linked_and_legacy_caregivers_are_all_notified():
    store, channels, _ = _setup(caregiver_phone="+15551234567")
    store.add_profile(Profile(user_id="caregiver-1", full_name="Sam", email="sam@example.com"))
    store.add_profile(Profile(user_id="caregiver-2", full_name="Lee"))
    store.create_link("patient-1", "caregiver-1", None, _at(7, 0)).status = CaregiverLinkStatus.ACCEPTED
    store.create_link("patient-1", "caregiver-2", None, _at(7, 0)).status = CaregiverLinkStatus.ACCEPTED
    store.create_link("patient-1", "caregiver-3", None, _at(7, 0))

    dispatcher = NotificationDispatcher(store, channels, channels)
    recipients = dispatcher.resolve_recipients(store.profile("patient-1"))

    assert [(r.channel, r.address, r.source) for r in recipients] == [
        (ChannelType.EMAIL, "sam@example.com", "linked_caregiver"),
        (ChannelType.EMAIL, "carol@example.com", "legacy_profile"),
        (ChannelType.SMS, "+15551234567", "legacy_profile"),
    ]


def test_detector_uses_configured_timezone_for_wall_clock():
    store, channels, medicine = _setup()
    store.create_dose("patient-1", medicine.id, SessionType.MORNING, TODAY)
    flow = CarePillFlow(store, channels, tz=ZoneInfo("Asia/Kolkata"))

    # 02:37 UTC is 08:07 in Kolkata.
    report = flow.check_missed_doses(_at(2, 37))

    assert report.alerts_sent == 1


def test_late_night_dose_does_not_fire_after_midnight():
    store, channels, medicine = _setup()
    store.set_schedule("patient-1", SessionType.NIGHT, time(23, 58))
    dose = store.create_dose("patient-1", medicine.id, SessionType.NIGHT, TODAY)

    report = CarePillFlow(store, channels).check_missed_doses(_at(0, 5, TODAY + timedelta(days=1)))

    assert report.checked == 0
    assert store.dose_logs[dose.id].status == DoseStatus.PENDING


def test_detector_rejects_invalid_window():
    store, channels, _ = _setup()
    dispatcher = NotificationDispatcher(store, channels)
    with pytest.raises(ValueError):
        MissedDoseDetector(store, dispatcher, threshold_minutes=-1)
    with pytest.raises(ValueError):
        MissedDoseDetector(store, dispatcher, window_minutes=0)


def test_low_stock_alerts_once_per_day():
    store, channels, medicine = _setup(stock=3, threshold=10)
    flow = CarePillFlow(store, channels)

    first = flow.check_low_stock(_at(9, 0))
    second = flow.check_low_stock(_at(15, 0))
    next_day = flow.check_low_stock(_at(9, 0, TODAY + timedelta(days=1)))

    assert first.alerts_sent == 1
    assert first.alerted_medicine_ids == [medicine.id]
    assert channels.sent[0].alert_type == AlertType.LOW_STOCK
    assert channels.sent[0].context == "3 remaining"
    assert store.notification_logs[0].notification_type == "email_low_stock"

    assert second.alerts_sent == 0
    assert second.already_alerted == 1
    assert next_day.alerts_sent == 1
    assert [a.alert_date for a in store.stock_alerts] == [TODAY, TODAY + timedelta(days=1)]
    assert store.stock_alerts[0].alert_type == StockAlertType.LOW_STOCK_CAREGIVER


def test_stock_equal_to_threshold_counts_as_low():
    store, channels, _ = _setup(stock=5, threshold=5)
    assert CarePillFlow(store, channels).check_low_stock(_at(9, 0)).low_stock == 1


def test_stock_above_threshold_and_inactive_medicines_are_ignored():
    store, channels, _ = _setup(stock=6, threshold=5)
    store.add_medicine(
        Medicine(user_id="patient-1", name="Old prescription", stock_quantity=0, low_stock_threshold=5, is_active=False)
    )

    report = CarePillFlow(store, channels).check_low_stock(_at(9, 0))

    assert report.low_stock == 0
    assert channels.sent == []


def test_low_stock_without_profile_records_nothing():
    store, channels, _ = _setup(stock=1, threshold=5)
    del store.profiles["patient-1"]

    report = CarePillFlow(store, channels).check_low_stock(_at(9, 0))

    assert report.alerted_medicine_ids == []
    assert store.stock_alerts == []


def test_stock_alert_recorded_even_when_delivery_fails():
    store, channels, _ = _setup(stock=1, threshold=5)
    channels.failing_recipients.add("carol@example.com")

    report = CarePillFlow(store, channels).check_low_stock(_at(9, 0))

    assert report.alerts_sent == 0
    assert len(store.stock_alerts) == 1
    assert store.notification_logs[0].status == DeliveryStatus.FAILED


def test_transition_rules():
    now = _at(8, 0)
    log = DoseLog(user_id="patient-1", medicine_id="m1", session_type=SessionType.MORNING, scheduled_date=TODAY)

    transition(log, DoseStatus.MISSED, now)
    assert log.status == DoseStatus.MISSED

    with pytest.raises(ValueError):
        transition(log, DoseStatus.MISSED, now)

    transition(log, DoseStatus.TAKEN, now)
    assert log.taken_at == now

    transition(log, DoseStatus.SKIPPED, now)
    assert log.status == DoseStatus.SKIPPED
    assert log.taken_at is None

    with pytest.raises(ValueError):
        transition(log, DoseStatus.PENDING, now)


def test_record_dose_upserts_and_validates_actions():
    store, _, medicine = _setup()

    log = record_dose(store, "patient-1", medicine.id, SessionType.MORNING, TODAY, DoseStatus.SKIPPED, _at(8, 1))
    again = record_dose(
        store, "patient-1", medicine.id, SessionType.MORNING, TODAY, DoseStatus.TAKEN, _at(8, 30), notes="late"
    )

    assert again.id == log.id
    assert again.status == DoseStatus.TAKEN
    assert again.notes == "late"
    assert len(store.dose_logs) == 1

    with pytest.raises(ValueError):
        record_dose(store, "patient-1", medicine.id, SessionType.MORNING, TODAY, DoseStatus.MISSED, _at(9, 0))
    with pytest.raises(ValueError):
        record_dose(store, "someone-else", medicine.id, SessionType.MORNING, TODAY, DoseStatus.TAKEN, _at(9, 0))


def test_seed_dose_logs_respects_dates_and_is_idempotent():
    store, _, medicine = _setup()
    store.sessions[medicine.id].append(SessionType.NIGHT)
    store.add_medicine(
        Medicine(user_id="patient-1", name="Course ended", end_date=TODAY - timedelta(days=1)),
        [SessionType.MORNING],
    )
    store.add_medicine(
        Medicine(user_id="patient-1", name="Not started", start_date=TODAY + timedelta(days=1)),
        [SessionType.MORNING],
    )

    assert seed_dose_logs(store, TODAY) == 2
    assert seed_dose_logs(store, TODAY) == 0
    assert {log.session_type for log in store.pending_doses(TODAY)} == {SessionType.MORNING, SessionType.NIGHT}

    # The explicit morning time is kept; missing sessions get defaults.
    assert store.session_time("patient-1", SessionType.MORNING) == time(8, 0)
    assert store.schedules[("patient-1", SessionType.MORNING)].is_default is False
    assert store.session_time("patient-1", SessionType.NIGHT) == time(20, 0)
    assert store.schedules[("patient-1", SessionType.AFTERNOON)].is_default is True


def test_adherence_summary_counts_and_rate():
    logs = [
        DoseLog(user_id="u", medicine_id="m", session_type=SessionType.MORNING, scheduled_date=TODAY, status=status)
        for status in (DoseStatus.TAKEN, DoseStatus.TAKEN, DoseStatus.TAKEN, DoseStatus.MISSED, DoseStatus.PENDING)
    ]

    summary = adherence_summary(logs)

    assert (summary.taken, summary.pending, summary.missed, summary.skipped) == (3, 1, 1, 0)
    assert summary.adherence_rate == 0.75
    assert adherence_summary([]).adherence_rate == 0.0


def test_stock_status_levels():
    assert stock_status(0, 5) == StockStatus.CRITICAL
    assert stock_status(5, 5) == StockStatus.LOW
    assert stock_status(6, 5) == StockStatus.GOOD
