"""
Side-effect tables written by the action handlers.
"""

from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Float, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from securewatch.database import Base, JSONType, utcnow


class Incident(Base):
    __tablename__ = "incidents"

    id: Mapped[int] = mapped_column(primary_key=True)
    incident_id: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    violation_id: Mapped[int] = mapped_column(ForeignKey("violations.id"), index=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    policy_id: Mapped[int | None] = mapped_column(ForeignKey("policies.id"), nullable=True)
    escalation_level: Mapped[str] = mapped_column(String(20), default="manager")
    priority: Mapped[str] = mapped_column(String(10), default="high")
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)
    summary: Mapped[str] = mapped_column(String(2000))
    details: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class MonitoringFlag(Base):
    __tablename__ = "employee_monitoring_flags"

    id: Mapped[int] = mapped_column(primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), unique=True, index=True)
    monitoring_level: Mapped[str] = mapped_column(String(20), default="enhanced")
    weight: Mapped[float] = mapped_column(Float, default=1.25)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source_violation_id: Mapped[int | None] = mapped_column(ForeignKey("violations.id"), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class AccessRestriction(Base):
    __tablename__ = "access_restrictions"

    id: Mapped[int] = mapped_column(primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    violation_id: Mapped[int | None] = mapped_column(ForeignKey("violations.id"), nullable=True)
    access_type: Mapped[str] = mapped_column(String(30), default="all")
    reason: Mapped[str] = mapped_column(String(500))
    external_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SystemNotification(Base):
    """In-app alert shown to security staff (the "system" alert channel)."""

    __tablename__ = "system_notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(300))
    message: Mapped[str] = mapped_column(String(4000))
    priority: Mapped[str] = mapped_column(String(10), default="high")
    category: Mapped[str] = mapped_column(String(30), default="policy_alert")
    violation_id: Mapped[int | None] = mapped_column(ForeignKey("violations.id"), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
