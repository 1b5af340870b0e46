from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from coursedesk.models.enums import GroupStatus


class BackupModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class BackupParticipant(BackupModel):
    id: str
    company_name: str
    person_name: str
    national_id: str = Field(default="", alias="egn")
    birth_place: str = ""
    citizenship: str = ""
    medical_date: date
    course_start_date: date
    course_end_date: date
    unique_number: str | None = None
    sent: bool = False
    documents: bool = False
    handed_over: bool = False
    paid: bool = False
    completed_computed: bool = False
    completed_override: bool | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class BackupGroup(BackupModel):
    id: str
    group_number: int | None = None
    course_start_date: date
    course_end_date: date
    status: GroupStatus
    is_locked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None


class BackupSettings(BackupModel):
    unique_prefix: int
    last_unique_seq: int = 0
    last_reset_year: int | None = None


class BackupPayload(BackupModel):
    version: int
    timestamp: datetime | None = None
    participants: list[BackupParticipant] = Field(default_factory=list)
    groups: list[BackupGroup] = Field(default_factory=list)
    settings: BackupSettings


class BackupImportResponse(BaseModel):
    source_version: int
    version: int
    participants: int
    groups: int
