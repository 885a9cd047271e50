"""
SecureWatch exception hierarchy.

- CollaboratorError / CollaboratorUnavailable: an external system (notification
  service, identity provider, text classifier) failed or is not configured.
- ActionError: an action handler could not complete; the execution fails.
- ClassifierStageError: one classifier stage could not run; the stage
  contributes nothing and the analysis continues.
- InvalidExecutionStatus: a defect, never a runtime condition. Raised when
  code tries to persist an execution status outside the four legal values
  or to leave a terminal state.
"""


class SecureWatchError(Exception):
    """Base class for all SecureWatch errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class CollaboratorError(SecureWatchError):
    """An external collaborator call failed (unreachable, timeout, bad response)."""

    def __init__(self, collaborator: str, message: str, details: dict | None = None):
        super().__init__(f"{collaborator}: {message}", details)
        self.collaborator = collaborator


class CollaboratorUnavailable(CollaboratorError):
    """The collaborator is not configured or failed its startup probe."""


class ActionError(SecureWatchError):
    """An action handler failed."""

    def __init__(self, action_type: str, message: str, details: dict | None = None):
        super().__init__(f"{action_type} failed: {message}", details)
        self.action_type = action_type


class ClassifierStageError(SecureWatchError):
    """A classifier stage could not evaluate its input."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"stage {stage}: {message}")
        self.stage = stage


class InvalidExecutionStatus(SecureWatchError):
    """Attempt to write an execution status outside {pending, success, failed, skipped}."""

    def __init__(self, value, execution_id: int | None = None):
        super().__init__(
            f"Illegal execution_status {value!r}",
            {"execution_id": execution_id} if execution_id is not None else None,
        )
        self.value = value
        self.execution_id = execution_id


class InvalidTransition(InvalidExecutionStatus):
    """Attempt to move an execution along a transition other than pending -> terminal."""

    def __init__(self, current: str, new: str, execution_id: int | None = None):
        super().__init__(new, execution_id)
        self.current = current
        self.message = f"Illegal execution transition {current!r} -> {new!r}"
        self.args = (self.message,)
