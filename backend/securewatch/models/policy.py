from datetime import datetime
from typing import Any

from sqlalchemy import String, Boolean, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from securewatch.database import Base, JSONType, utcnow


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=50, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    policy_level: Mapped[str] = mapped_column(String(10), default="global")  # global | group | user
    target_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # department | role | user
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    conditions: Mapped[list["PolicyCondition"]] = relationship(
        back_populates="policy", cascade="all, delete-orphan", order_by="PolicyCondition.order",
    )
    actions: Mapped[list["PolicyAction"]] = relationship(
        back_populates="policy", cascade="all, delete-orphan", order_by="PolicyAction.execution_order",
    )


class PolicyCondition(Base):
    __tablename__ = "policy_conditions"

    id: Mapped[int] = mapped_column(primary_key=True)
    policy_id: Mapped[int] = mapped_column(ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    condition_type: Mapped[str] = mapped_column(String(40))
    operator: Mapped[str] = mapped_column(String(20))
    value: Mapped[Any] = mapped_column(JSONType)  # str | number | list
    logical_operator: Mapped[str] = mapped_column(String(3), default="AND")
    order: Mapped[int] = mapped_column("condition_order", Integer, default=0)

    policy: Mapped["Policy"] = relationship(back_populates="conditions")


class PolicyAction(Base):
    __tablename__ = "policy_actions"
    __table_args__ = (
        CheckConstraint("delay_minutes >= 0", name="ck_policy_actions_delay_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    policy_id: Mapped[int] = mapped_column(ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    action_type: Mapped[str] = mapped_column(String(40))
    action_config: Mapped[dict] = mapped_column(JSONType, default=dict)
    execution_order: Mapped[int] = mapped_column(Integer, default=1)
    delay_minutes: Mapped[int] = mapped_column(Integer, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    policy: Mapped["Policy"] = relationship(back_populates="actions")
