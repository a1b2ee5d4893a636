class SchedulingError(Exception):
    """Base error for every failure the scheduling engine surfaces."""

    http_status = 500
    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(SchedulingError):
    # missing or malformed input, caller re-prompts
    http_status = 400
    code = "VALIDATION_ERROR"


class SlotConflict(SchedulingError):
    # another ACTIVE appointment already holds the slot; re-check availability first
    http_status = 409
    code = "SLOT_CONFLICT"


class SessionError(SchedulingError):
    # no identity or no patient binding, scheduling is unavailable
    http_status = 403
    code = "SESSION_ERROR"


class StorageError(SchedulingError):
    http_status = 503
    code = "STORAGE_ERROR"


class NetworkError(SchedulingError):
    http_status = 503
    code = "NETWORK_ERROR"
