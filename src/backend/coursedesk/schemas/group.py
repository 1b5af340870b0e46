from datetime import date, datetime

from pydantic import BaseModel, Field

from coursedesk.models.enums import GroupStatus


class CourseWindowResponse(BaseModel):
    medical_date: date
    course_start_date: date
    course_end_date: date


class GroupResponse(BaseModel):
    id: str | None
    group_number: int | None
    course_start_date: date
    course_end_date: date
    status: GroupStatus
    is_locked: bool
    is_virtual: bool = False
    participant_count: int = 0
    activated_at: datetime | None = None
    closed_at: datetime | None = None


class SuggestedGroupResponse(BaseModel):
    group: GroupResponse | None
    creates_for_date: date | None


class ClassificationResponse(BaseModel):
    course_start_date: date
    status: GroupStatus


class GroupActivateRequest(BaseModel):
    force: bool = False


class GroupActivateResponse(BaseModel):
    success: bool
    needs_confirm: bool = False
    current_active: GroupResponse | None = None


class MaintenanceResponse(BaseModel):
    coalesced: bool
    corrected_active: int
    repaired_numbers: int
    promoted: list[date] = Field(default_factory=list)
    completed: list[date] = Field(default_factory=list)
    created: list[date] = Field(default_factory=list)
    removed: list[date] = Field(default_factory=list)
