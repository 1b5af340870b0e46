from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column

from coursedesk.db.database import Base

SETTINGS_ROW_ID = 1


class AppSettings(Base):
    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SETTINGS_ROW_ID)
    unique_prefix: Mapped[int] = mapped_column(Integer, nullable=False)
    # Cache only; numbering is always recomputed from participant numbers.
    last_unique_seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reset_year: Mapped[int | None] = mapped_column(Integer)
