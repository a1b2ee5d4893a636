"""
Booking wizard state machine.

The patient moves through four steps; moving forward requires the fields of
the current step, moving back never touches the draft.
"""
import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from scheduling.errors import ValidationError


class Step(enum.Enum):
    CHOOSE_PHARMACY = 1
    CHOOSE_DATETIME = 2
    CHOOSE_PAYMENT = 3
    REVIEW_SUBMIT = 4


# step -> {"next": step, "back": step}
TRANSITIONS = {
    Step.CHOOSE_PHARMACY: {"next": Step.CHOOSE_DATETIME},
    Step.CHOOSE_DATETIME: {"next": Step.CHOOSE_PAYMENT, "back": Step.CHOOSE_PHARMACY},
    Step.CHOOSE_PAYMENT: {"next": Step.REVIEW_SUBMIT, "back": Step.CHOOSE_DATETIME},
    Step.REVIEW_SUBMIT: {"back": Step.CHOOSE_PAYMENT},
}

# fields that must be filled before leaving a step forward
REQUIRED_FIELDS = {
    Step.CHOOSE_PHARMACY: ("pharmacy_id",),
    Step.CHOOSE_DATETIME: ("local_date", "slot_time"),
    Step.CHOOSE_PAYMENT: ("payment_method",),
    Step.REVIEW_SUBMIT: (),
}

SUBMIT_FIELDS = ("pharmacy_id", "local_date", "slot_time", "reason", "payment_method")


@dataclass(frozen=True)
class BookingDraft:
    step: Step = Step.CHOOSE_PHARMACY
    pharmacy_id: Optional[int] = None
    local_date: Optional[str] = None
    slot_time: Optional[str] = None
    reason: str = ""
    payment_method: Optional[str] = None
    draft_receipt: Optional[str] = None  # preview only, not persisted


def _missing(draft: BookingDraft, fields) -> list:
    missing = []
    for name in fields:
        value = getattr(draft, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def advance(draft: BookingDraft) -> BookingDraft:
    target = TRANSITIONS[draft.step].get("next")
    if target is None:
        raise ValidationError("Already at the last step", details={"step": draft.step.name})

    missing = _missing(draft, REQUIRED_FIELDS[draft.step])
    if missing:
        raise ValidationError("Complete the current step first", details={"step": draft.step.name, "missing": missing})

    return replace(draft, step=target)


def back(draft: BookingDraft) -> BookingDraft:
    target = TRANSITIONS[draft.step].get("back")
    if target is None:
        return draft
    return replace(draft, step=target)


def select_pharmacy(draft: BookingDraft, pharmacy_id: int) -> BookingDraft:
    # A different pharmacy has a different template: date and time start over.
    return replace(draft, pharmacy_id=pharmacy_id, local_date=None, slot_time=None)


def select_date(draft: BookingDraft, local_date: str) -> BookingDraft:
    return replace(draft, local_date=local_date, slot_time=None)


def select_time(draft: BookingDraft, slot_time: str) -> BookingDraft:
    return replace(draft, slot_time=slot_time)


def set_reason(draft: BookingDraft, reason: str) -> BookingDraft:
    return replace(draft, reason=reason or "")


def select_payment(draft: BookingDraft, method: str, now: datetime, linker) -> BookingDraft:
    return replace(draft, payment_method=method, draft_receipt=linker.generate_receipt(method, now))


def missing_for_submit(draft: BookingDraft) -> list:
    return _missing(draft, SUBMIT_FIELDS)


def ready_to_submit(draft: BookingDraft) -> bool:
    return draft.step is Step.REVIEW_SUBMIT and not missing_for_submit(draft)
