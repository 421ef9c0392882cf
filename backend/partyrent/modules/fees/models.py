"""Platform settings model.

Key/value rows holding admin-editable configuration such as the fee
percentages. Values are stored as text and parsed by the reader.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from partyrent.core.database import Base


class PlatformSetting(Base):
    """Persisted admin setting."""

    __tablename__ = "platform_settings"
    __mapper_args__ = {"eager_defaults": True}

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<PlatformSetting(key={self.key}, value={self.value})>"
