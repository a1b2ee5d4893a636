from .errors import (
    SchedulingError,
    ValidationError,
    SlotConflict,
    SessionError,
    StorageError,
    NetworkError,
)
from .hours import parse_business_hours, format_slot, parse_slot, SLOT_MINUTES
