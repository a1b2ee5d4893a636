"""
Booking transaction coordinator.

A booking is two separate commits: the appointment, then its payment record.
The appointment insert is the only place a double booking can be stopped, and
it is stopped by the storage layer's unique index, not by a pre-check here.
If the payment write fails the appointment is kept and the caller gets a
PAYMENT_LINK_FAILED result carrying the appointment id.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, SQLAlchemyError

from models import db
from models.appointment import Appointment, STATUS_ACTIVE
from models.payment_record import PaymentRecord
from scheduling.clock import as_utc, get_zone, to_naive_utc
from scheduling.context import SessionContext
from scheduling.directory import get_pharmacy
from scheduling.errors import NetworkError, SlotConflict, StorageError, ValidationError
from scheduling.hours import format_slot, parse_business_hours, parse_slot
from scheduling.receipts import PaymentRecordLinker
from scheduling.wizard import BookingDraft, missing_for_submit, ready_to_submit
from utils.audit import log_event

logger = logging.getLogger(__name__)

CONFIRMED = "CONFIRMED"
PAYMENT_LINK_FAILED = "PAYMENT_LINK_FAILED"


@dataclass(frozen=True)
class BookingResult:
    status: str  # CONFIRMED or PAYMENT_LINK_FAILED
    appointment_id: int
    appointment_status: str
    receipt_number: Optional[str] = None
    payment_status: Optional[str] = None
    warning: Optional[str] = None

    @property
    def payment_linked(self) -> bool:
        return self.status == CONFIRMED

    def to_dict(self):
        return asdict(self)


def storage_error(exc: SQLAlchemyError):
    """Translate a non-constraint SQLAlchemy failure into the engine's taxonomy."""
    reason = str(getattr(exc, "orig", None) or exc)
    if isinstance(exc, DisconnectionError) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return NetworkError("Database connection failed", details={"reason": reason})
    return StorageError("Database operation failed", details={"reason": reason})


def parse_local_date(value) -> Optional[date]:
    if not isinstance(value, str):
        return None
    try:
        parsed = date.fromisoformat(value.strip())
    except ValueError:
        return None
    # keep the verbatim string canonical: "2024-5-28" is not accepted
    return parsed if parsed.isoformat() == value.strip() else None


def parse_pharmacy_id(value) -> Optional[int]:
    # bool is an int subclass; floats would truncate silently
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None


class BookingCoordinator:
    def __init__(self, linker: Optional[PaymentRecordLinker] = None):
        self.linker = linker or PaymentRecordLinker()

    def _audit(self, action, ctx, entity=None, entity_id=None, metadata=None):
        try:
            log_event(action, user_id=ctx.user_id if ctx else None, entity=entity, entity_id=entity_id, metadata=metadata)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Audit write failed for %s (%s %s)", action, entity, entity_id)

    def _validate(self, ctx, pharmacy_id, local_date, slot_time, reason, payment_method, now):
        patient_id = ctx.patient_id if ctx is not None else None
        fields = {
            "patient_id": patient_id,
            "pharmacy_id": pharmacy_id,
            "local_date": local_date,
            "slot_time": slot_time,
            "reason": reason.strip() if isinstance(reason, str) else None,
            "payment_method": payment_method,
        }
        missing = [name for name, value in fields.items() if value in (None, "")]
        if missing:
            raise ValidationError("Missing required fields", details={"missing": missing})

        parsed_id = parse_pharmacy_id(pharmacy_id)
        if parsed_id is None:
            raise ValidationError("Invalid pharmacy id", details={"pharmacy_id": pharmacy_id})
        pharmacy_id = parsed_id

        day = parse_local_date(local_date)
        if day is None:
            raise ValidationError("Invalid date. Use YYYY-MM-DD", details={"local_date": local_date})
        slot = parse_slot(slot_time)
        if slot is None:
            raise ValidationError("Invalid time. Use HH:MM", details={"slot_time": slot_time})

        zone = get_zone(ctx.timezone)
        self.linker.method_code(payment_method)

        pharmacy = get_pharmacy(pharmacy_id)
        if pharmacy is None:
            raise ValidationError("Pharmacy not found", details={"pharmacy_id": pharmacy_id})
        if slot not in parse_business_hours(pharmacy.business_hours):
            raise ValidationError("Time is outside the pharmacy's business hours", details={"slot_time": slot_time})

        scheduled = datetime.combine(day, slot, tzinfo=zone).astimezone(timezone.utc)
        # same minute cutoff the availability filter uses
        if scheduled < as_utc(now).replace(second=0, microsecond=0):
            raise ValidationError("Cannot book past/started slots", details={"local_date": local_date, "slot_time": slot_time})

        return patient_id, pharmacy.id, format_slot(slot), scheduled

    def book(
        self,
        ctx: SessionContext,
        pharmacy_id,
        local_date: str,
        slot_time: str,
        reason: str,
        payment_method: str,
        now: datetime,
    ) -> BookingResult:
        patient_id, pharmacy_id, slot_label, scheduled = self._validate(
            ctx, pharmacy_id, local_date, slot_time, reason, payment_method, now
        )

        appointment = Appointment(
            pharmacy_id=pharmacy_id,
            patient_id=patient_id,
            local_date=local_date.strip(),
            slot_time=slot_label,
            scheduled_at=to_naive_utc(scheduled),
            timezone=ctx.timezone,
            reason=reason.strip(),
            status=STATUS_ACTIVE,
        )
        db.session.add(appointment)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            # uq_appointments_active_slot triggers here
            logger.info("Slot %s %s at pharmacy %s already taken", local_date, slot_label, pharmacy_id)
            self._audit(
                "APPOINTMENT_FAIL_SLOT_TAKEN", ctx, entity="pharmacy", entity_id=pharmacy_id,
                metadata={"local_date": local_date, "slot_time": slot_label},
            )
            raise SlotConflict(
                "Slot already booked. Check availability again.",
                details={
                    "pharmacy_id": pharmacy_id, "local_date": local_date, "slot_time": slot_label,
                    "scheduled_at": scheduled.isoformat(),
                },
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Appointment insert failed")
            raise storage_error(exc)

        appointment_id = appointment.id
        self._audit(
            "APPOINTMENT_CREATE", ctx, entity="appointment", entity_id=appointment_id,
            metadata={"pharmacy_id": pharmacy_id, "local_date": local_date, "slot_time": slot_label},
        )
        return self._link(ctx, appointment_id, payment_method, now)

    def _link_failed(self, ctx, appointment_id: int, payment_method: str, exc: SQLAlchemyError) -> BookingResult:
        logger.error("Payment record for appointment %s not created: %s", appointment_id, exc)
        self._audit(
            "PAYMENT_LINK_FAIL", ctx, entity="appointment", entity_id=appointment_id,
            metadata={"payment_method": payment_method, "reason": str(exc)},
        )
        return BookingResult(
            status=PAYMENT_LINK_FAILED,
            appointment_id=appointment_id,
            appointment_status=STATUS_ACTIVE,
            warning=f"Appointment booked (ID: {appointment_id}) but the payment record could not be created",
        )

    def _link(self, ctx, appointment_id: int, payment_method: str, now: datetime, relink: bool = False) -> BookingResult:
        try:
            record = self.linker.link(appointment_id, payment_method, now)
        except IntegrityError as exc:
            db.session.rollback()
            if not relink:
                return self._link_failed(ctx, appointment_id, payment_method, exc)
            # a concurrent re-link committed first; payment_records.appointment_id is unique
            logger.info("Payment record for appointment %s already exists", appointment_id)
            raise ValidationError("Appointment already has a payment record", details={"appointment_id": appointment_id})
        except SQLAlchemyError as exc:
            db.session.rollback()
            return self._link_failed(ctx, appointment_id, payment_method, exc)

        self._audit(
            "PAYMENT_LINK_CREATE", ctx, entity="payment_record", entity_id=record.id,
            metadata={"appointment_id": appointment_id, "receipt_number": record.receipt_number},
        )
        return BookingResult(
            status=CONFIRMED,
            appointment_id=appointment_id,
            appointment_status=STATUS_ACTIVE,
            receipt_number=record.receipt_number,
            payment_status=record.status,
        )

    def book_draft(self, ctx: SessionContext, draft: BookingDraft, now: datetime) -> BookingResult:
        if not ready_to_submit(draft):
            raise ValidationError(
                "Booking draft is not ready to submit",
                details={"step": draft.step.name, "missing": missing_for_submit(draft)},
            )
        return self.book(
            ctx, draft.pharmacy_id, draft.local_date, draft.slot_time, draft.reason, draft.payment_method, now
        )

    def relink_payment(self, ctx: SessionContext, appointment_id, payment_method: str, now: datetime) -> BookingResult:
        """Retry only the payment half of a booking that came back PAYMENT_LINK_FAILED."""
        patient_id = ctx.require_patient()
        if not payment_method:
            raise ValidationError("Missing required fields", details={"missing": ["payment_method"]})
        self.linker.method_code(payment_method)

        appointment = db.session.get(Appointment, appointment_id) if appointment_id is not None else None
        if appointment is None or appointment.patient_id != patient_id:
            raise ValidationError("Appointment not found", details={"appointment_id": appointment_id})
        if appointment.status != STATUS_ACTIVE:
            raise ValidationError("Appointment is not active", details={"status": appointment.status})
        if PaymentRecord.query.filter_by(appointment_id=appointment.id).first() is not None:
            raise ValidationError("Appointment already has a payment record", details={"appointment_id": appointment.id})

        return self._link(ctx, appointment.id, payment_method, now, relink=True)
