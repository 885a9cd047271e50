from securewatch.models.employee import Employee  # noqa: F401
from securewatch.models.violation import Violation  # noqa: F401
from securewatch.models.policy import Policy, PolicyCondition, PolicyAction  # noqa: F401
from securewatch.models.execution import PolicyExecution, ExecutionStatus  # noqa: F401
from securewatch.models.enforcement import (  # noqa: F401
    Incident, MonitoringFlag, AccessRestriction, SystemNotification,
)
from securewatch.models.audit import AuditLog  # noqa: F401
