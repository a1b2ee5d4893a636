from datetime import datetime, timedelta, timezone

from models import db
from models.payment_record import PaymentRecord, PAYMENT_PENDING
from scheduling.clock import as_utc
from scheduling.errors import ValidationError

DEFAULT_METHOD_CODES = {"cash": "EF", "card": "TJ", "transfer": "TR"}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def generate_receipt(method_code: str, now: datetime) -> str:
    """
    REC-<CODE>-<last 6 digits of the epoch-millisecond timestamp>.

    Only a reference to show the patient; two bookings in the same
    millisecond window can share it.
    """
    millis = (as_utc(now) - _EPOCH) // timedelta(milliseconds=1)
    return f"REC-{method_code.upper()}-{str(millis)[-6:]}"


class PaymentRecordLinker:
    def __init__(self, method_codes=None):
        self.method_codes = dict(method_codes or DEFAULT_METHOD_CODES)

    def is_supported(self, method: str) -> bool:
        return method in self.method_codes

    def method_code(self, method: str) -> str:
        code = self.method_codes.get(method) if isinstance(method, str) else None
        if not code:
            raise ValidationError(
                "Unsupported payment method",
                details={"payment_method": method, "allowed": sorted(self.method_codes)},
            )
        return code

    def generate_receipt(self, method: str, now: datetime) -> str:
        return generate_receipt(self.method_code(method), now)

    def link(self, appointment_id: int, method: str, now: datetime) -> PaymentRecord:
        # Commits on its own; the appointment row is already durable.
        record = PaymentRecord(
            appointment_id=appointment_id,
            method=method,
            receipt_number=self.generate_receipt(method, now),
            status=PAYMENT_PENDING,
        )
        db.session.add(record)
        db.session.commit()
        return record
