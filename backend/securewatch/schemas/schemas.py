"""
Pydantic schemas for API request/response models.
"""

import enum
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# ── Pagination ──

class PaginatedResponse(BaseModel):
    total: int
    page: int
    size: int
    pages: int

    @staticmethod
    def page_count(total: int, size: int) -> int:
        return max(1, -(-total // size))


# ── Communications ──

class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str = ""
    size_bytes: int = Field(0, ge=0)
    content_type: str | None = None


class Communication(BaseModel):
    """One inbound email or chat message. Immutable once received."""

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(..., min_length=1, max_length=255)
    channel: str = Field("email", pattern="^(email|chat)$")
    sender: str
    recipients: tuple[str, ...] = ()
    subject: str | None = None
    body: str | None = None
    attachments: tuple[Attachment, ...] = ()
    sent_at: datetime | None = None


class AnalyzeRequest(BaseModel):
    employee_id: int
    communication: Communication


class ClassificationResult(BaseModel):
    risk_score: int = Field(..., ge=0, le=100)
    security_risk_score: int = Field(0, ge=0, le=100)
    compliance_risk_score: int = Field(0, ge=0, le=100)
    category: str = "general"
    risk_factors: list[str] = []
    compliance_findings: dict[str, list[dict]] = {}
    detection_method: str = "rules"
    stages_run: list[str] = []
    mandatory_report: bool = False
    external_recipients: bool = False


class AnalyzeResponse(BaseModel):
    classification: ClassificationResult
    violation_id: int | None = None
    violation_created: bool = False
    executions_created: int = 0


class IngestAccepted(BaseModel):
    message_id: str
    queued: bool = True


# ── Policy conditions ──

class ConditionType(str, enum.Enum):
    RISK_SCORE = "risk_score"
    SECURITY_RISK_SCORE = "security_risk_score"
    COMPLIANCE_RISK_SCORE = "compliance_risk_score"
    VIOLATION_TYPE = "violation_type"
    VIOLATION_SEVERITY = "violation_severity"
    CATEGORY_DETECTION_COUNT = "category_detection_count"
    FREQUENCY = "frequency"
    REGULATION = "regulation"
    EMPLOYEE_DEPARTMENT = "employee_department"
    EMPLOYEE_ROLE = "employee_role"
    EXTERNAL_RECIPIENTS = "external_recipients"
    TIME_BASED = "time_based"
    ANY_VIOLATION = "any_violation"


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class LogicalOperator(str, enum.Enum):
    AND = "AND"
    OR = "OR"


class ConditionIn(BaseModel):
    condition_type: ConditionType
    operator: ConditionOperator
    value: str | float | int | bool | list[str | float | int] | None = None
    logical_operator: LogicalOperator = LogicalOperator.AND
    order: int | None = None


class ConditionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    condition_type: str
    operator: str
    value: Any = None
    logical_operator: str
    order: int


# ── Policy actions (tagged union on action_type) ──

class EmailAlertConfig(BaseModel):
    recipients: list[str] = Field(..., min_length=1)
    subject: str | None = None
    include_details: bool = True

    @field_validator("recipients")
    @classmethod
    def _addresses(cls, v: list[str]) -> list[str]:
        bad = [r for r in v if "@" not in r]
        if bad:
            raise ValueError(f"invalid email recipients: {bad}")
        return v


class EscalateIncidentConfig(BaseModel):
    escalation_level: str = Field("manager", pattern="^(manager|security_team|executive|legal)$")
    priority: str = Field("high", pattern="^(low|medium|high|critical)$")
    notify_management: bool = False
    management_recipients: list[str] = []


class IncreaseMonitoringConfig(BaseModel):
    monitoring_level: str = Field("enhanced", pattern="^(enhanced|strict|maximum)$")
    duration_hours: int = Field(24, ge=1, le=24 * 90)
    weight: float | None = Field(None, ge=1.0, le=3.0)


class DisableAccessConfig(BaseModel):
    access_type: str = Field("all", pattern="^(all|email|vpn|file_share|cloud_storage)$")
    duration_hours: int | None = Field(None, ge=1)
    notify_employee: bool = False


class LogDetailedActivityConfig(BaseModel):
    log_level: str = Field("detailed", pattern="^(basic|detailed|forensic)$")
    include_content: bool = False


class ImmediateAlertConfig(BaseModel):
    alert_channels: list[Literal["email", "sms", "system"]] = Field(
        default_factory=lambda: ["email", "system"], min_length=1,
    )
    recipients: list[str] = []
    phone_numbers: list[str] = []
    priority: str = Field("critical", pattern="^(low|medium|high|critical)$")


ACTION_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "email_alert": EmailAlertConfig,
    "escalate_incident": EscalateIncidentConfig,
    "increase_monitoring": IncreaseMonitoringConfig,
    "disable_access": DisableAccessConfig,
    "log_detailed_activity": LogDetailedActivityConfig,
    "immediate_alert": ImmediateAlertConfig,
}


class _ActionBase(BaseModel):
    execution_order: int | None = None
    delay_minutes: int = Field(0, ge=0)
    is_enabled: bool = True


class EmailAlertAction(_ActionBase):
    action_type: Literal["email_alert"]
    action_config: EmailAlertConfig


class EscalateIncidentAction(_ActionBase):
    action_type: Literal["escalate_incident"]
    action_config: EscalateIncidentConfig = EscalateIncidentConfig()


class IncreaseMonitoringAction(_ActionBase):
    action_type: Literal["increase_monitoring"]
    action_config: IncreaseMonitoringConfig = IncreaseMonitoringConfig()


class DisableAccessAction(_ActionBase):
    action_type: Literal["disable_access"]
    action_config: DisableAccessConfig = DisableAccessConfig()


class LogDetailedActivityAction(_ActionBase):
    action_type: Literal["log_detailed_activity"]
    action_config: LogDetailedActivityConfig = LogDetailedActivityConfig()


class ImmediateAlertAction(_ActionBase):
    action_type: Literal["immediate_alert"]
    action_config: ImmediateAlertConfig = ImmediateAlertConfig()

    @model_validator(mode="after")
    def _channel_targets(self):
        cfg = self.action_config
        if "email" in cfg.alert_channels and not cfg.recipients:
            raise ValueError("email channel requires recipients")
        if "sms" in cfg.alert_channels and not cfg.phone_numbers:
            raise ValueError("sms channel requires phone_numbers")
        return self


ActionIn = Annotated[
    Union[
        EmailAlertAction,
        EscalateIncidentAction,
        IncreaseMonitoringAction,
        DisableAccessAction,
        LogDetailedActivityAction,
        ImmediateAlertAction,
    ],
    Field(discriminator="action_type"),
]


class ActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action_type: str
    action_config: dict
    execution_order: int
    delay_minutes: int
    is_enabled: bool


# ── Policies ──

class PolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    priority: int = Field(50, ge=0, le=1000)
    is_active: bool = True
    policy_level: str = Field("global", pattern="^(global|group|user)$")
    target_type: str | None = Field(None, pattern="^(department|role|user)$")
    target_id: str | None = None
    conditions: list[ConditionIn] = []
    actions: list[ActionIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _targeting(self):
        if self.policy_level == "global":
            if self.target_type or self.target_id:
                raise ValueError("global policies cannot have a target")
        else:
            if not self.target_type or not self.target_id:
                raise ValueError(f"{self.policy_level} policies require target_type and target_id")
            if self.policy_level == "user" and self.target_type != "user":
                raise ValueError("user policies must target a user")
            if self.policy_level == "group" and self.target_type == "user":
                raise ValueError("group policies target a department or role")
        return self


class PolicyStatusUpdate(BaseModel):
    is_active: bool


class ActionStatusUpdate(BaseModel):
    is_enabled: bool


class PolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    priority: int
    is_active: bool
    policy_level: str
    target_type: str | None
    target_id: str | None
    created_at: datetime
    conditions: list[ConditionOut] = []
    actions: list[ActionOut] = []


# ── Violations ──

class ViolationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    source_message_id: str
    type: str
    severity: str
    description: str
    source: str
    # Stored in the "metadata" column; FastAPI re-validates the by-alias dump
    details: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("details", "metadata"),
        serialization_alias="metadata",
    )
    status: str
    created_at: datetime


class ViolationListResponse(PaginatedResponse):
    items: list[ViolationOut]


# ── Executions ──

class ExecutionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    policy_id: int
    violation_id: int
    employee_id: int
    execution_status: str
    execution_result: dict | None = None
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    not_before: datetime | None = None
    completed_at: datetime | None = None


class ExecutionListResponse(PaginatedResponse):
    items: list[ExecutionOut]


class ReplayResponse(BaseModel):
    execution_id: int
    ok: bool
    actions: list[dict]


# ── Audit ──

class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    event_type: str
    actor: str
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict = {}
    previous_hash: str | None = None
    current_hash: str
    created_at: datetime | None = None


class AuditListResponse(PaginatedResponse):
    items: list[AuditEntry]


class IntegrityCheckResponse(BaseModel):
    valid: bool
    entries_checked: int
    first_invalid: str | None = None
    reason: str | None = None
