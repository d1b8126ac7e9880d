from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite возвращает naive datetime, приводим всё к UTC-aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Link(Base):
    __tablename__ = "links"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    destination_url = Column(Text, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_custom_alias = Column(Boolean, default=False, nullable=False)
    owner_id = Column(String(64), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<Link {self.code} -> {self.destination_url}>"


class ClickEvent(Base):
    """Append-only журнал переходов. code не внешний ключ: события переживают ссылку."""
    __tablename__ = "click_events"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    referrer = Column(Text, nullable=True)
    country_code = Column(String(2), nullable=True)

    __table_args__ = (
        Index("ix_click_events_code_timestamp", "code", "timestamp"),
    )


class LinkStats(Base):
    """Агрегат по click_events, всегда может быть пересобран из журнала."""
    __tablename__ = "link_stats"

    code = Column(String(32), primary_key=True)
    total_clicks = Column(Integer, default=0, nullable=False)
    last_click_at = Column(DateTime(timezone=True), nullable=True)
