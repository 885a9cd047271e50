from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from securewatch.database import Base, JSONType, utcnow

SEVERITIES = ("Low", "Medium", "High", "Critical")
VIOLATION_STATUSES = ("Active", "Investigating", "Resolved", "False Positive")


class Violation(Base):
    __tablename__ = "violations"
    __table_args__ = (
        CheckConstraint(
            "severity IN ('Low', 'Medium', 'High', 'Critical')",
            name="ck_violations_severity",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    source_message_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(50), index=True)
    severity: Mapped[str] = mapped_column(String(10), index=True)
    description: Mapped[str] = mapped_column(String(2000))
    source: Mapped[str] = mapped_column(String(50), default="risk_classifier")
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    status: Mapped[str] = mapped_column(String(20), default="Active", index=True)
    resolution_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    @property
    def risk_score(self) -> int:
        return int((self.details or {}).get("risk_score", 0))
