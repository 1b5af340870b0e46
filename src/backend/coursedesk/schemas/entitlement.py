from datetime import datetime

from pydantic import BaseModel

from coursedesk.models.enums import EntitlementStatus


class EntitlementResponse(BaseModel):
    configured: bool
    authenticated: bool
    status: EntitlementStatus
    read_only: bool
    plan_code: str | None
    days_until_read_only: int | None
    current_period_end: str | None
    grace_until: str | None
    error: str | None
    last_checked_at: datetime | None


class FocusRefreshResponse(BaseModel):
    refreshed: bool
    entitlement: EntitlementResponse
