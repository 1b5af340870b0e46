from fastapi import HTTPException

from coursedesk.schemas.common import ValidationIssueResponse
from coursedesk.services.validation import ValidationIssue


def raise_value_error(exc: ValueError) -> None:
    message = str(exc)
    if "not found" in message.lower():
        raise HTTPException(status_code=404, detail=message) from exc
    raise HTTPException(status_code=400, detail=message) from exc


def raise_read_only(exc: Exception) -> None:
    raise HTTPException(status_code=423, detail=str(exc)) from exc


def raise_conflict(exc: Exception, message: str | None = None) -> None:
    raise HTTPException(status_code=409, detail=message or str(exc)) from exc


def to_issue_response(issue: ValidationIssue) -> ValidationIssueResponse:
    return ValidationIssueResponse(key=issue.key, code=issue.code, message=issue.message)


def raise_issues(issues: list[ValidationIssue]) -> None:
    raise HTTPException(
        status_code=422,
        detail={"issues": [to_issue_response(issue).model_dump() for issue in issues]},
    )
