"""Key/value row backing the client-side identifier store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from newspassid.models.base import Base


class StoredValue(Base):
    """A single persisted value, scoped to the store's database (the "origin").

    There is no expiry: a row lives until it is cleared explicitly or the
    database itself is wiped.
    """

    __tablename__ = "stored_values"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
