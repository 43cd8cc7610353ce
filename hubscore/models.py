from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    badge_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(200), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    icon: Mapped[str] = mapped_column(String(20), default="")
    badge_type: Mapped[str] = mapped_column(String(30), default="achievement")  # stage_progression | achievement | milestone
    conditions_json: Mapped[str] = mapped_column(Text, default="{}")
    trigger_events_json: Mapped[str] = mapped_column(Text, default="[]")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    awards: Mapped[list[CompanyBadge]] = relationship("CompanyBadge", back_populates="badge", cascade="all, delete-orphan")


class CompanyBadge(Base):
    """A badge earned by a company. At most one row per (company, badge)."""
    __tablename__ = "company_badges"
    __table_args__ = (UniqueConstraint("company_id", "badge_id", name="uq_company_badge"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    badge_id: Mapped[str] = mapped_column(String(100), ForeignKey("badges.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    earned_by_event: Mapped[str] = mapped_column(String(50), default="")
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")

    badge: Mapped[Badge] = relationship("Badge", back_populates="awards")


class BadgeEvent(Base):
    __tablename__ = "badge_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Set for questionnaire_completed; retried deliveries share it.
    response_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    event_data_json: Mapped[str] = mapped_column(Text, default="{}")
    badges_awarded_json: Mapped[str] = mapped_column(Text, default="[]")
    triggered_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
