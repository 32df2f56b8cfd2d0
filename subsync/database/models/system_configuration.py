"""Key/value configuration rows (gateway credentials live under ``gateway.<name>``)."""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from subsync.database.models.model_base import JsonType
from subsync.database.session import Base
from subsync.utils.dates import utcnow


class SystemConfiguration(Base):
    __tablename__ = "system_configuration"

    key: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )

    value: Mapped[Dict[str, Any]] = mapped_column(
        JsonType,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        Text,
        default="",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SystemConfiguration key={self.key}>"
