from .db import db
from .user import User
from .patient import Patient
from .session import Session
from .audit_log import AuditLog
from .pharmacy import Pharmacy
from .appointment import Appointment
from .payment_record import PaymentRecord
