"""
Conductor error hierarchy.

Every error raised by the orchestration core derives from
``ConductorException`` and carries a category, a severity, an HTTP status
(used by the API layer) and an ``ErrorContext`` with a stable error id.

Taxonomy:
- Registration errors: duplicate id, not-an-agent, unknown id
- Dispatch errors: not initialized, no capable agent, duplicate task id
- Validation errors: malformed task or payload, bad configuration
- Agent errors: busy, disabled, illegal lifecycle transition
- Timeout errors: dispatch-level timeout race lost
"""

import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Enums
# ============================================================================

class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"      # Core cannot continue
    ERROR = "error"            # Operation failed, caller impacted
    WARNING = "warning"        # Caller input rejected
    INFO = "info"              # Informational


class ErrorCategory(Enum):
    """Error categories for classification and routing."""
    VALIDATION = "validation"       # Task/payload/config validation failure
    REGISTRATION = "registration"   # Agent registry operation failure
    DISPATCH = "dispatch"           # Task could not be routed
    AGENT = "agent"                 # Agent admission or lifecycle failure
    TIMEOUT = "timeout"             # Dispatch timeout
    EVENT_BUS = "event_bus"         # Event bus failure
    INTERNAL = "internal"           # Internal error


# ============================================================================
# Error context
# ============================================================================

@dataclass
class ErrorContext:
    """Rich error context with metadata."""
    error_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL
    message: str = ""
    user_message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    is_recoverable: bool = True
    http_status: int = 500
    recovery_suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excludes stack trace)."""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "is_recoverable": self.is_recoverable,
            "http_status": self.http_status,
            "recovery_suggestions": self.recovery_suggestions,
        }

    def to_api_response(self) -> Dict[str, Any]:
        """Convert to API response format (safe for HTTP)."""
        response = self.to_dict()
        response.pop("stack_trace", None)
        return response


# ============================================================================
# Base exception
# ============================================================================

class ConductorException(Exception):
    """Base exception for all Conductor errors with rich context."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        is_recoverable: bool = True,
        http_status: int = 500,
        user_message: Optional[str] = None,
        recovery_suggestions: Optional[List[str]] = None,
        context: Optional[ErrorContext] = None,
    ):
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.is_recoverable = is_recoverable
        self.http_status = http_status
        self.user_message = user_message or message
        self.recovery_suggestions = recovery_suggestions or []

        if context:
            self.context = context
        else:
            self.context = ErrorContext(
                severity=severity,
                category=category,
                message=message,
                user_message=self.user_message,
                details=self.details,
                stack_trace=traceback.format_exc(),
                is_recoverable=is_recoverable,
                http_status=http_status,
                recovery_suggestions=self.recovery_suggestions,
            )

        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.context.error_id}] {self.category.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return self.context.to_dict()

    def to_api_response(self) -> Dict[str, Any]:
        return self.context.to_api_response()


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(ConductorException):
    """Validation error (input/schema validation failed)."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 400)
        super().__init__(message, **kwargs)


class TaskValidationError(ValidationError):
    """Task shape, task id or payload schema is invalid."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("http_status", 422)
        super().__init__(message, **kwargs)


class ConfigurationError(ValidationError):
    """Configuration validation error."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Configuration value or key is invalid."""
    pass


# ============================================================================
# Registration Errors
# ============================================================================

class RegistrationError(ConductorException):
    """Base agent registry error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.REGISTRATION)
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        kwargs.setdefault("http_status", 400)
        kwargs.setdefault("is_recoverable", False)
        super().__init__(message, **kwargs)


class DuplicateAgentError(RegistrationError):
    """An agent with the same id is already registered."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("http_status", 409)
        super().__init__(message, **kwargs)


class AgentNotFoundError(RegistrationError):
    """No agent is registered under the requested id."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("http_status", 404)
        super().__init__(message, **kwargs)


class InvalidAgentError(RegistrationError):
    """Object offered for registration is not an agent."""
    pass


# ============================================================================
# Dispatch Errors
# ============================================================================

class DispatchError(ConductorException):
    """Base dispatch error; the task never reached an agent."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.DISPATCH)
        kwargs.setdefault("http_status", 400)
        super().__init__(message, **kwargs)


class NotInitializedError(DispatchError):
    """Dispatch attempted before the manager was initialized."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("http_status", 503)
        super().__init__(message, **kwargs)


class NoCapableAgentError(DispatchError):
    """No enabled, healthy agent declares the task type."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("http_status", 404)
        kwargs.setdefault(
            "recovery_suggestions",
            ["Register an agent with this capability", "Reset agents in error state"],
        )
        super().__init__(message, **kwargs)


class DuplicateTaskError(DispatchError):
    """A task with the same id is already pending."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("http_status", 409)
        super().__init__(message, **kwargs)


# ============================================================================
# Agent Errors
# ============================================================================

class AgentError(ConductorException):
    """Base agent admission/lifecycle error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.AGENT)
        kwargs.setdefault("http_status", 409)
        super().__init__(message, **kwargs)


class AgentBusyError(AgentError):
    """Agent is already executing a task."""
    pass


class AgentDisabledError(AgentError):
    """Agent is disabled."""
    pass


class AgentStateError(AgentError):
    """Requested lifecycle transition is not allowed."""
    pass


# ============================================================================
# Timeout Errors
# ============================================================================

class TimeoutError(ConductorException):
    """Operation timeout."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.TIMEOUT)
        kwargs.setdefault("severity", ErrorSeverity.ERROR)
        kwargs.setdefault("http_status", 504)
        kwargs.setdefault("is_recoverable", True)
        super().__init__(message, **kwargs)


class TaskTimeoutError(TimeoutError):
    """Dispatch stopped waiting for an agent execution."""
    pass


# ============================================================================
# Event Bus Errors
# ============================================================================

class EventBusError(ConductorException):
    """Base event bus error."""
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EVENT_BUS)
        kwargs.setdefault("http_status", 500)
        super().__init__(message, **kwargs)


def get_exception_hierarchy() -> Dict[str, List[str]]:
    """Map each exception class name to the names of its direct subclasses."""
    hierarchy: Dict[str, List[str]] = {}

    def _walk(cls: type) -> None:
        children = cls.__subclasses__()
        hierarchy[cls.__name__] = [c.__name__ for c in children]
        for child in children:
            _walk(child)

    _walk(ConductorException)
    return hierarchy
