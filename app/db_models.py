"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class StateEntry(Base):
    """One durable key/value pair scoped to a browser or Steam profile.

    Values are stored as raw JSON text so damaged rows can be detected and
    ignored on load instead of failing inside the ORM.
    """

    __tablename__ = "state_entries"

    profile_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
