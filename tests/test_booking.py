"""Tests for the booking transaction coordinator."""

import threading
from dataclasses import replace
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import OperationalError

from app import create_app
from config import TestConfig
from models import db
from models.appointment import Appointment, STATUS_ACTIVE, STATUS_CANCELLED
from models.audit_log import AuditLog
from models.patient import Patient
from models.payment_record import PaymentRecord
from models.pharmacy import Pharmacy
from models.user import User
from scheduling import wizard
from scheduling.availability import available_slots, booked_instants_for
from scheduling.booking import BookingCoordinator, CONFIRMED, PAYMENT_LINK_FAILED
from scheduling.context import SessionContext
from scheduling.errors import SlotConflict, ValidationError
from scheduling.hours import parse_business_hours
from scheduling.receipts import PaymentRecordLinker
from scheduling.upcoming import NO_PAYMENT_INFO, upcoming_for

NOW = datetime(2024, 5, 27, 15, 0, tzinfo=timezone.utc)  # 10:00 in Lima


class FailingLinker(PaymentRecordLinker):
    """Linker whose insert always fails after the appointment is stored."""

    def link(self, appointment_id, method, now):
        raise OperationalError("INSERT INTO payment_records", {}, Exception("disk I/O error"))


def _book(ctx, pharmacy, coordinator=None, **overrides):
    args = dict(
        pharmacy_id=pharmacy.id,
        local_date="2024-05-28",
        slot_time="09:00",
        reason="Control de presión",
        payment_method="cash",
        now=NOW,
    )
    args.update(overrides)
    return (coordinator or BookingCoordinator()).book(ctx, **args)


class TestBookSuccess:
    """Happy path."""

    def test_returns_confirmed_result_with_receipt(self, ctx, pharmacy):
        result = _book(ctx, pharmacy)
        assert result.status == CONFIRMED
        assert result.appointment_status == STATUS_ACTIVE
        assert result.payment_status == "PENDING"
        assert result.receipt_number.startswith("REC-EF-")

    def test_persists_local_date_and_utc_instant(self, ctx, pharmacy):
        result = _book(ctx, pharmacy)
        appt = db.session.get(Appointment, result.appointment_id)
        assert appt.local_date == "2024-05-28"
        assert appt.slot_time == "09:00"
        # 09:00 in Lima is 14:00 UTC
        assert appt.scheduled_at == datetime(2024, 5, 28, 14, 0)
        assert appt.timezone == "America/Lima"
        assert appt.reason == "Control de presión"

    def test_payment_record_attached(self, ctx, pharmacy):
        result = _book(ctx, pharmacy)
        records = PaymentRecord.query.filter_by(appointment_id=result.appointment_id).all()
        assert len(records) == 1
        assert records[0].method == "cash"
        assert records[0].receipt_number == result.receipt_number

    def test_audit_events_written(self, ctx, pharmacy):
        _book(ctx, pharmacy)
        actions = {row.action for row in AuditLog.query.all()}
        assert {"APPOINTMENT_CREATE", "PAYMENT_LINK_CREATE"} <= actions

    def test_same_wall_clock_in_other_timezone_is_another_instant(self, ctx, pharmacy):
        madrid = replace(ctx, timezone="Europe/Madrid")
        result = _book(madrid, pharmacy)
        appt = db.session.get(Appointment, result.appointment_id)
        # CEST, UTC+2
        assert appt.scheduled_at == datetime(2024, 5, 28, 7, 0)
        assert appt.local_date == "2024-05-28"


class TestBookValidation:
    """Input validation happens before any write."""

    @pytest.mark.parametrize("field", ["pharmacy_id", "local_date", "slot_time", "payment_method"])
    def test_missing_field(self, ctx, pharmacy, field):
        with pytest.raises(ValidationError) as exc:
            _book(ctx, pharmacy, **{field: None})
        assert field in exc.value.details["missing"]
        assert Appointment.query.count() == 0

    def test_blank_reason(self, ctx, pharmacy):
        with pytest.raises(ValidationError) as exc:
            _book(ctx, pharmacy, reason="   ")
        assert exc.value.details["missing"] == ["reason"]

    def test_missing_patient(self, ctx, pharmacy):
        with pytest.raises(ValidationError) as exc:
            _book(replace(ctx, patient_id=None), pharmacy)
        assert "patient_id" in exc.value.details["missing"]

    def test_bad_date_format(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(ctx, pharmacy, local_date="28/05/2024")

    def test_bad_time_format(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(ctx, pharmacy, slot_time="9am")

    def test_unknown_payment_method(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(ctx, pharmacy, payment_method="bitcoin")

    def test_unknown_pharmacy(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(ctx, pharmacy, pharmacy_id=9999)

    def test_time_outside_business_hours(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(ctx, pharmacy, slot_time="13:30")

    def test_elapsed_slot_today(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(ctx, pharmacy, local_date="2024-05-27", slot_time="09:30")

    def test_unknown_timezone(self, ctx, pharmacy):
        with pytest.raises(ValidationError):
            _book(replace(ctx, timezone="Mars/Olympus"), pharmacy)

    @pytest.mark.parametrize("bad_id", [True, 1.9, "abc", "1.0", "-1", [1]])
    def test_pharmacy_id_must_be_integer(self, ctx, pharmacy, bad_id):
        with pytest.raises(ValidationError) as exc:
            _book(ctx, pharmacy, pharmacy_id=bad_id)
        assert exc.value.message == "Invalid pharmacy id"
        assert Appointment.query.count() == 0

    def test_pharmacy_id_as_digit_string(self, ctx, pharmacy):
        result = _book(ctx, pharmacy, pharmacy_id=f" {pharmacy.id} ")
        assert db.session.get(Appointment, result.appointment_id).pharmacy_id == pharmacy.id


class TestSlotConflict:
    """The unique index is the only double-booking guard."""

    def test_second_booking_for_same_slot_conflicts(self, ctx, pharmacy):
        first = _book(ctx, pharmacy)
        with pytest.raises(SlotConflict) as exc:
            _book(ctx, pharmacy, reason="Otra consulta")
        assert exc.value.details["slot_time"] == "09:00"
        active = Appointment.query.filter_by(status=STATUS_ACTIVE).all()
        assert [a.id for a in active] == [first.appointment_id]
        assert AuditLog.query.filter_by(action="APPOINTMENT_FAIL_SLOT_TAKEN").count() == 1

    def test_other_slot_or_pharmacy_is_not_a_conflict(self, ctx, pharmacy):
        other = Pharmacy(name="Farmacia Norte", business_hours="09:00-12:00")
        db.session.add(other)
        db.session.commit()

        assert _book(ctx, pharmacy).status == CONFIRMED
        assert _book(ctx, pharmacy, slot_time="09:30").status == CONFIRMED
        assert _book(ctx, other).status == CONFIRMED

    def test_cancelled_appointment_frees_the_slot(self, ctx, pharmacy):
        first = _book(ctx, pharmacy)
        appt = db.session.get(Appointment, first.appointment_id)
        appt.status = STATUS_CANCELLED
        db.session.commit()

        assert _book(ctx, pharmacy).status == CONFIRMED

    def test_concurrent_bookings_yield_one_success_one_conflict(self, tmp_path):
        class FileConfig(TestConfig):
            SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "race.db")
            SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

        app = create_app(FileConfig)
        with app.app_context():
            db.create_all()
            pharmacy = Pharmacy(name="Farmacia Centro", business_hours="09:00-13:00")
            db.session.add(pharmacy)
            db.session.flush()
            contexts = []
            for i in range(2):
                user = User(email=f"p{i}@example.com", password_hash="x")
                db.session.add(user)
                db.session.flush()
                patient = Patient(user_id=user.id)
                db.session.add(patient)
                db.session.flush()
                contexts.append(SessionContext(user_id=user.id, patient_id=patient.id, timezone="America/Lima"))
            db.session.commit()
            pharmacy_id = pharmacy.id

        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(ctx):
            with app.app_context():
                barrier.wait()
                try:
                    result = BookingCoordinator().book(
                        ctx, pharmacy_id, "2024-05-28", "10:00", "Consulta", "cash", NOW
                    )
                    outcomes.append(result.status)
                except SlotConflict:
                    outcomes.append("CONFLICT")

        threads = [threading.Thread(target=attempt, args=(c,)) for c in contexts]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["CONFIRMED", "CONFLICT"]
        with app.app_context():
            assert Appointment.query.filter_by(status=STATUS_ACTIVE).count() == 1
            db.drop_all()


class TestCrossZoneSlots:
    """Bookers in different zones share one slot identity: the instant."""

    def test_same_instant_from_another_zone_conflicts(self, ctx, pharmacy):
        lima = _book(ctx, pharmacy)  # 09:00 Lima, 14:00 UTC
        madrid = replace(ctx, timezone="Europe/Madrid")
        with pytest.raises(SlotConflict) as exc:
            _book(madrid, pharmacy, slot_time="16:00")  # 16:00 CEST, 14:00 UTC
        assert exc.value.details["scheduled_at"] == "2024-05-28T14:00:00+00:00"

        active = Appointment.query.filter_by(status=STATUS_ACTIVE).all()
        assert [a.id for a in active] == [lima.appointment_id]

    def test_same_wall_clock_from_another_zone_is_free(self, ctx, pharmacy):
        _book(ctx, pharmacy)
        madrid = replace(ctx, timezone="Europe/Madrid")
        assert _book(madrid, pharmacy).status == CONFIRMED

    def test_availability_agrees_with_storage(self, ctx, pharmacy):
        _book(ctx, pharmacy)
        madrid = ZoneInfo("Europe/Madrid")
        day = date(2024, 5, 28)
        template = parse_business_hours(pharmacy.business_hours)
        offered = available_slots(template, booked_instants_for(pharmacy.id, day, madrid), day, NOW, madrid)

        assert time(16, 0) not in offered
        assert time(9, 0) in offered
        # every offered slot is accepted for a Madrid booker
        madrid_ctx = replace(ctx, timezone="Europe/Madrid")
        assert _book(madrid_ctx, pharmacy, slot_time="09:00").status == CONFIRMED


class TestPaymentLinkFailure:
    """The appointment survives a failed payment write."""

    def test_returns_degraded_result_with_appointment_id(self, ctx, pharmacy):
        result = _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        assert result.status == PAYMENT_LINK_FAILED
        assert not result.payment_linked
        assert result.receipt_number is None
        assert str(result.appointment_id) in result.warning

        appt = db.session.get(Appointment, result.appointment_id)
        assert appt.status == STATUS_ACTIVE
        assert PaymentRecord.query.count() == 0
        assert AuditLog.query.filter_by(action="PAYMENT_LINK_FAIL").count() == 1

    def test_upcoming_shows_no_payment_information(self, ctx, pharmacy):
        result = _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        views = upcoming_for(ctx.patient_id, date(2024, 5, 27))
        assert [v.id for v in views] == [result.appointment_id]
        assert views[0].payment_status == NO_PAYMENT_INFO
        assert not views[0].has_payment_info

    def test_slot_stays_taken(self, ctx, pharmacy):
        _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        with pytest.raises(SlotConflict):
            _book(ctx, pharmacy)


class TestRelinkPayment:
    """Retrying only the payment half."""

    def test_relink_after_failure(self, ctx, pharmacy):
        failed = _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        result = BookingCoordinator().relink_payment(ctx, failed.appointment_id, "cash", NOW)
        assert result.status == CONFIRMED
        assert result.appointment_id == failed.appointment_id
        assert PaymentRecord.query.filter_by(appointment_id=failed.appointment_id).count() == 1

    def test_relink_refuses_when_already_linked(self, ctx, pharmacy):
        booked = _book(ctx, pharmacy)
        with pytest.raises(ValidationError):
            BookingCoordinator().relink_payment(ctx, booked.appointment_id, "cash", NOW)

    def test_relink_refuses_other_patients_appointment(self, ctx, pharmacy):
        failed = _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        stranger = replace(ctx, patient_id=ctx.patient_id + 100)
        with pytest.raises(ValidationError):
            BookingCoordinator().relink_payment(stranger, failed.appointment_id, "cash", NOW)

    def test_concurrent_relinks_leave_one_payment_record(self, tmp_path):
        class FileConfig(TestConfig):
            SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "relink.db")
            SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

        app = create_app(FileConfig)
        with app.app_context():
            db.create_all()
            pharmacy = Pharmacy(name="Farmacia Centro", business_hours="09:00-13:00")
            user = User(email="p@example.com", password_hash="x")
            db.session.add_all([pharmacy, user])
            db.session.flush()
            patient = Patient(user_id=user.id)
            db.session.add(patient)
            db.session.commit()
            ctx = SessionContext(user_id=user.id, patient_id=patient.id, timezone="America/Lima")
            failed = BookingCoordinator(FailingLinker()).book(
                ctx, pharmacy.id, "2024-05-28", "10:00", "Consulta", "cash", NOW
            )
            assert failed.status == PAYMENT_LINK_FAILED
            appointment_id = failed.appointment_id

        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(method):
            with app.app_context():
                barrier.wait()
                try:
                    result = BookingCoordinator().relink_payment(ctx, appointment_id, method, NOW)
                    outcomes.append(result.status)
                except ValidationError as exc:
                    assert exc.message == "Appointment already has a payment record"
                    outcomes.append("REJECTED")

        threads = [threading.Thread(target=attempt, args=(m,)) for m in ("cash", "card")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["CONFIRMED", "REJECTED"]
        with app.app_context():
            assert PaymentRecord.query.filter_by(appointment_id=appointment_id).count() == 1
            db.drop_all()

    def test_insert_hitting_unique_record_is_rejected(self, ctx, pharmacy):
        failed = _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        # a concurrent re-link committed after this request's existence check
        PaymentRecordLinker().link(failed.appointment_id, "card", NOW)

        with pytest.raises(ValidationError) as exc:
            BookingCoordinator()._link(ctx, failed.appointment_id, "cash", NOW, relink=True)
        assert exc.value.message == "Appointment already has a payment record"
        records = PaymentRecord.query.filter_by(appointment_id=failed.appointment_id).all()
        assert [r.method for r in records] == ["card"]

    def test_unique_record_during_booking_degrades(self, ctx, pharmacy):
        failed = _book(ctx, pharmacy, coordinator=BookingCoordinator(FailingLinker()))
        PaymentRecordLinker().link(failed.appointment_id, "card", NOW)

        result = BookingCoordinator()._link(ctx, failed.appointment_id, "cash", NOW)
        assert result.status == PAYMENT_LINK_FAILED


class TestBookDraft:
    """Booking from a wizard draft."""

    def _draft(self, pharmacy):
        linker = PaymentRecordLinker()
        draft = wizard.select_pharmacy(wizard.BookingDraft(), pharmacy.id)
        draft = wizard.advance(draft)
        draft = wizard.select_date(draft, "2024-05-28")
        draft = wizard.select_time(draft, "11:00")
        draft = wizard.advance(draft)
        draft = wizard.select_payment(draft, "cash", NOW, linker)
        draft = wizard.advance(draft)
        return wizard.set_reason(draft, "Vacuna")

    def test_books_ready_draft(self, ctx, pharmacy):
        result = BookingCoordinator().book_draft(ctx, self._draft(pharmacy), NOW)
        assert result.status == CONFIRMED
        assert db.session.get(Appointment, result.appointment_id).slot_time == "11:00"

    def test_rejects_draft_before_review(self, ctx, pharmacy):
        draft = wizard.back(self._draft(pharmacy))
        with pytest.raises(ValidationError):
            BookingCoordinator().book_draft(ctx, draft, NOW)
