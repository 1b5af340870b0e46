from datetime import date, datetime

from pydantic import BaseModel, Field

from coursedesk.models.enums import GroupStatus, Milestone
from coursedesk.schemas.common import ValidationIssueResponse
from coursedesk.schemas.group import GroupResponse


class ParticipantCreateRequest(BaseModel):
    company_name: str = Field(min_length=1, max_length=200)
    person_name: str = Field(min_length=1, max_length=200)
    national_id: str = Field(default="", max_length=20)
    birth_place: str = Field(default="", max_length=120)
    citizenship: str | None = Field(default=None, max_length=120)
    medical_date: date
    unique_number: str | None = None


class ParticipantUpdateRequest(BaseModel):
    company_name: str | None = Field(default=None, min_length=1, max_length=200)
    person_name: str | None = Field(default=None, min_length=1, max_length=200)
    national_id: str | None = Field(default=None, max_length=20)
    birth_place: str | None = Field(default=None, max_length=120)
    citizenship: str | None = Field(default=None, max_length=120)
    medical_date: date | None = None
    unique_number: str | None = None
    sent: bool | None = None
    documents: bool | None = None
    handed_over: bool | None = None
    paid: bool | None = None
    completed_override: bool | None = None


class ParticipantResponse(BaseModel):
    id: str
    company_name: str
    person_name: str
    national_id: str
    birth_place: str
    citizenship: str
    medical_date: date
    course_start_date: date
    course_end_date: date
    unique_number: str | None
    sent: bool
    documents: bool
    handed_over: bool
    paid: bool
    completed_computed: bool
    completed_override: bool | None
    completed: bool
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


class AssignmentRequest(BaseModel):
    medical_date: date


class AssignmentResponse(BaseModel):
    medical_date: date
    course_start_date: date
    course_end_date: date
    status: GroupStatus
    group: GroupResponse
    proposed_number: str | None
    gap_number: str | None
    next_number: str | None
    accepted: bool
    issues: list[ValidationIssueResponse] = Field(default_factory=list)


class BulkMilestoneRequest(BaseModel):
    participant_ids: list[str] = Field(min_length=1)
    milestone: Milestone
    value: bool


class BulkMilestoneResponse(BaseModel):
    success: int
    failed: int
    errors: list[str] = Field(default_factory=list)
