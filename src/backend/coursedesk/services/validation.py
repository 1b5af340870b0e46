from dataclasses import dataclass


@dataclass
class ValidationIssue:
    key: str
    code: str
    message: str


INVALID_FORMAT = "invalid_format"
DUPLICATE = "duplicate"
SKIPS_GAP = "skips_gap"
NUMBER_NOT_ALLOWED = "number_not_allowed"
MEDICAL_EXPIRED = "medical_expired"
CLOSED_WINDOW = "closed_window"
GROUP_LOCKED = "group_locked"
