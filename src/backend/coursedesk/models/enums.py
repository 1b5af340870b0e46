from enum import Enum


class GroupStatus(str, Enum):
    active = "active"
    planned = "planned"
    completed = "completed"


class Milestone(str, Enum):
    sent = "sent"
    documents = "documents"
    handed_over = "handed_over"
    paid = "paid"


class EntitlementStatus(str, Enum):
    active = "active"
    grace = "grace"
    expired = "expired"
    unknown = "unknown"
