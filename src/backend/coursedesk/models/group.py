import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from coursedesk.db.database import Base
from coursedesk.models.enums import GroupStatus


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # Null while planned; assigned once when the group becomes active.
    group_number: Mapped[int | None] = mapped_column(Integer, index=True)
    course_start_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    course_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[GroupStatus] = mapped_column(
        Enum(GroupStatus), default=GroupStatus.planned, nullable=False, index=True
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))
