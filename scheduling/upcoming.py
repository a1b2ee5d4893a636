"""
Read-only projection of a patient's upcoming appointments.

Each appointment is joined with its pharmacy name and its payment record
in a single statement. Appointments whose pharmacy cannot be resolved
are left out.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from models import db
from models.appointment import Appointment
from models.payment_record import PaymentRecord
from models.pharmacy import Pharmacy
from scheduling.clock import as_utc

NO_PAYMENT_INFO = "NO_PAYMENT_INFO"


@dataclass(frozen=True)
class AppointmentView:
    id: int
    pharmacy_id: int
    pharmacy_name: str
    local_date: str
    slot_time: str
    scheduled_at: datetime
    status: str
    reason: str
    payment_status: str = NO_PAYMENT_INFO
    payment_method: Optional[str] = None
    receipt_number: Optional[str] = None

    @property
    def has_payment_info(self) -> bool:
        return self.payment_status != NO_PAYMENT_INFO

    def to_dict(self):
        return {
            "id": self.id,
            "pharmacy": {"id": self.pharmacy_id, "name": self.pharmacy_name},
            "local_date": self.local_date,
            "slot_time": self.slot_time,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status,
            "reason": self.reason,
            "payment": {
                "status": self.payment_status,
                "method": self.payment_method,
                "receipt_number": self.receipt_number,
            },
        }


def upcoming_for(patient_id: int, today, status: Optional[str] = None) -> List[AppointmentView]:
    today_str = today.isoformat() if isinstance(today, date) else str(today)

    # payment_records.appointment_id is unique, so the join yields at most one row per appointment
    q = (
        db.session.query(Appointment, Pharmacy.name, PaymentRecord)
        .outerjoin(Pharmacy, Pharmacy.id == Appointment.pharmacy_id)
        .outerjoin(PaymentRecord, PaymentRecord.appointment_id == Appointment.id)
        .filter(
            Appointment.patient_id == patient_id,
            Appointment.local_date >= today_str,
            Pharmacy.id.isnot(None),
        )
    )
    if status:
        q = q.filter(Appointment.status == status)

    rows = q.order_by(Appointment.local_date.asc(), Appointment.slot_time.asc(), Appointment.id.asc()).all()

    out = []
    for appointment, pharmacy_name, payment in rows:
        out.append(AppointmentView(
            id=appointment.id,
            pharmacy_id=appointment.pharmacy_id,
            pharmacy_name=pharmacy_name,
            local_date=appointment.local_date,
            slot_time=appointment.slot_time,
            scheduled_at=as_utc(appointment.scheduled_at),
            status=appointment.status,
            reason=appointment.reason,
            payment_status=payment.status if payment else NO_PAYMENT_INFO,
            payment_method=payment.method if payment else None,
            receipt_number=payment.receipt_number if payment else None,
        ))
    return out
