"""
netledger Operation Results

Structured outcomes returned by guards and role-facing operations. State and
ordering violations are reported here with an ``ErrorCode`` instead of being
raised, so callers can branch on the code.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Rejection codes for state, role and ordering violations."""
    POLICY_NOT_SET = "POLICY_NOT_SET"
    INVALID_STAGE = "INVALID_STAGE"
    ROLE_FORBIDDEN = "ROLE_FORBIDDEN"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    TASK_NOT_QUEUED = "TASK_NOT_QUEUED"
    TASK_ALREADY_RUNNING = "TASK_ALREADY_RUNNING"
    TASK_NOT_RUNNING = "TASK_NOT_RUNNING"
    NO_PENDING_TASKS = "NO_PENDING_TASKS"
    RESULT_PARTIAL_CONTINUE_REQUIRED = "RESULT_PARTIAL_CONTINUE_REQUIRED"
    NO_PARTIAL_TO_CONTINUE = "NO_PARTIAL_TO_CONTINUE"
    SUBTASKS_INCOMPLETE = "SUBTASKS_INCOMPLETE"
    NETWORK_ID_MISMATCH = "NETWORK_ID_MISMATCH"
    PREVIOUS_STEP_NOT_COMPLETED = "PREVIOUS_STEP_NOT_COMPLETED"
    ACTIVE_TASK_EXISTS = "ACTIVE_TASK_EXISTS"
    INVALID_STEP_ORDER = "INVALID_STEP_ORDER"
    STEP_NUMBER_REQUIRED = "STEP_NUMBER_REQUIRED"


@dataclass
class OperationResult:
    """
    Outcome of a guard or a role-facing operation.

    Guards return ``OperationResult.ok()`` to authorize; operations attach
    their payload in ``data``.
    """
    success: bool
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, **data: Any) -> "OperationResult":
        return cls(success=False, error_code=ErrorCode(code), message=message, data=data)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: ``{success, errorCode, message}`` plus any payload."""
        payload: Dict[str, Any] = {"success": self.success}
        if self.error_code is not None:
            payload["errorCode"] = self.error_code.value
        if self.message is not None:
            payload["message"] = self.message
        payload.update(self.data)
        return payload
