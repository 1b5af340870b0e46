from pydantic import BaseModel, Field


class ValidationIssueResponse(BaseModel):
    key: str
    code: str
    message: str


class ValidationErrorResponse(BaseModel):
    issues: list[ValidationIssueResponse] = Field(default_factory=list)
