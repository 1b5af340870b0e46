from datetime import date

from fastapi import APIRouter, Query

from coursedesk.schemas.group import CourseWindowResponse
from coursedesk.services.date_engine import compute_course_dates

router = APIRouter(prefix="/api/dates", tags=["dates"])


@router.get("/course-window", response_model=CourseWindowResponse)
def get_course_window(medical_date: date = Query(...)):
    window = compute_course_dates(medical_date)
    return CourseWindowResponse(
        medical_date=medical_date,
        course_start_date=window.course_start_date,
        course_end_date=window.course_end_date,
    )
