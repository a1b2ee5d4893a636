from datetime import datetime
from models.db import db

PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"


class PaymentRecord(db.Model):
    __tablename__ = "payment_records"

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=False, unique=True, index=True)  # 1:1

    method = db.Column(db.String(20), nullable=False)  # cash, card, transfer
    receipt_number = db.Column(db.String(32), nullable=True)  # human-facing, not unique

    status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)  # PENDING, PAID

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    appointment = db.relationship("Appointment", back_populates="payment_records")
