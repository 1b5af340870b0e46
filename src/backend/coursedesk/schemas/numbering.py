from pydantic import BaseModel, Field


class NextNumberResponse(BaseModel):
    unique_number: str


class GapResponse(BaseModel):
    gap: str | None


class AvailabilityResponse(BaseModel):
    candidate: str
    valid_format: bool
    available: bool


class ResetSequenceRequest(BaseModel):
    new_prefix: int = Field(ge=0, le=9999)


class NumberingSettingsResponse(BaseModel):
    unique_prefix: int
    last_unique_seq: int
    last_reset_year: int | None
