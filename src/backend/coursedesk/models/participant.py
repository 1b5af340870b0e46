import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from coursedesk.db.database import Base


class Participant(Base):
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    person_name: Mapped[str] = mapped_column(String(200), nullable=False)
    national_id: Mapped[str] = mapped_column(String(20), default="", nullable=False, index=True)
    birth_place: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    citizenship: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    medical_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Snapshot of the group window at assignment time, not a foreign key.
    course_start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    course_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    unique_number: Mapped[str | None] = mapped_column(String(16), unique=True)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    documents: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    handed_over: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_computed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_override: Mapped[bool | None] = mapped_column(Boolean)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))

    @property
    def is_completed(self) -> bool:
        if self.completed_override is not None:
            return self.completed_override
        return self.completed_computed
