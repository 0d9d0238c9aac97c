"""
Rule data models for the Decision service.

Contexts and outcomes are frozen value objects compared by ``id``. Outcome
variants form a closed set tagged by ``OutcomeKind``; collaborators that
need another decision type use ``CustomOutcome``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from shared.errors import UnknownStrategyError, ValidationError


def _new_id() -> str:
    return str(uuid.uuid4())


def freeze_mapping(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


class OutcomeKind(str, Enum):
    """Tags of the outcome variants."""
    ADD_PENALTY = "add_penalty"
    SUSPEND_ACCOUNT = "suspend_account"
    NOTIFY_SUPPORT = "notify_support"
    NOTIFY_USER = "notify_user"
    LOG_VIOLATION = "log_violation"
    BLOCK_ACTION = "block_action"
    CUSTOM = "custom"


class SupportPriority(str, Enum):
    """Support notification priorities."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationChannel(str, Enum):
    """User notification channels."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class LogLevel(str, Enum):
    """Levels for violation log outcomes."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class StrategyName(str, Enum):
    """Built-in evaluation policies selectable by name."""
    COLLECT_ALL = "collect_all"
    FIRST_MATCH = "first_match"


INDEFINITE = "indefinite"


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            {"field": field_name, "value": str(value), "allowed": allowed}
        ) from None


@dataclass(frozen=True, eq=False)
class EvaluationContext:
    """Facts a rule set is evaluated against."""
    kind: str
    severity: int
    subject_id: Any = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        if isinstance(self.kind, Enum):
            object.__setattr__(self, "kind", self.kind.value)
        try:
            severity = self.severity
            if isinstance(severity, str):
                severity = float(severity)
            severity = int(severity)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(
                f"Severity must be an integer: {self.severity!r}",
                {"field": "severity", "value": str(self.severity)}
            ) from None
        object.__setattr__(self, "severity", severity)
        object.__setattr__(self, "attributes", freeze_mapping(self.attributes))
        if self.id is None:
            object.__setattr__(self, "id", _new_id())
        if self.created_at is None:
            object.__setattr__(self, "created_at", datetime.now())

    def __eq__(self, other):
        if not isinstance(other, EvaluationContext):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def get(self, key: str, default: Any = None) -> Any:
        """Get an attribute value."""
        return self.attributes.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "severity": self.severity,
            "subject_id": self.subject_id,
            "attributes": dict(self.attributes),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True, eq=False)
class Outcome:
    """Base of all decision values produced by matching rules."""
    context: Optional[EvaluationContext]
    metadata: Mapping[str, Any] = field(default_factory=dict, kw_only=True)
    created_at: datetime = field(default_factory=datetime.now, kw_only=True)
    id: str = field(default_factory=_new_id, kw_only=True)

    kind = OutcomeKind.CUSTOM

    def __post_init__(self):
        object.__setattr__(self, "metadata", freeze_mapping(self.metadata))

    def __eq__(self, other):
        if not isinstance(other, Outcome):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def is_kind(self, kind: Union[OutcomeKind, str]) -> bool:
        return self.kind == OutcomeKind(kind)

    def _fields(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "kind": self.kind.value,
            "context": self.context.to_dict() if self.context else None,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
        }
        for key, value in self._fields().items():
            data[key] = value.value if isinstance(value, Enum) else value
        return data


@dataclass(frozen=True, eq=False)
class AddPenalty(Outcome):
    """Add penalty points to the subject."""
    points: int
    reason: Optional[str] = None

    kind = OutcomeKind.ADD_PENALTY

    def __post_init__(self):
        super().__post_init__()
        try:
            points = int(self.points)
        except (TypeError, ValueError):
            points = 0
        if points <= 0:
            raise ValidationError(
                "Penalty points must be a positive integer",
                {"field": "points", "value": str(self.points)}
            )
        object.__setattr__(self, "points", points)

    def _fields(self):
        return {"points": self.points, "reason": self.reason}


@dataclass(frozen=True, eq=False)
class SuspendAccount(Outcome):
    """Suspend the subject's account for a number of days or indefinitely."""
    duration: Union[int, str, None] = None
    reason: Optional[str] = None

    kind = OutcomeKind.SUSPEND_ACCOUNT

    def __post_init__(self):
        super().__post_init__()
        duration = self.duration
        if duration is None or duration == INDEFINITE:
            return
        if isinstance(duration, bool):
            duration = None
        else:
            try:
                duration = int(duration)
            except (TypeError, ValueError):
                duration = None
        if duration is None or duration <= 0:
            raise ValidationError(
                f"Suspension duration must be '{INDEFINITE}', a positive number of days or None",
                {"field": "duration", "value": str(self.duration)}
            )
        object.__setattr__(self, "duration", duration)

    @property
    def is_indefinite(self) -> bool:
        return self.duration is None or self.duration == INDEFINITE

    def _fields(self):
        return {"duration": self.duration, "reason": self.reason}


@dataclass(frozen=True, eq=False)
class NotifySupport(Outcome):
    """Escalate to the support team."""
    priority: SupportPriority = SupportPriority.MEDIUM
    message: Optional[str] = None

    kind = OutcomeKind.NOTIFY_SUPPORT

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "priority", _coerce_enum(SupportPriority, self.priority, "priority"))

    def _fields(self):
        return {"priority": self.priority, "message": self.message}


@dataclass(frozen=True, eq=False)
class NotifyUser(Outcome):
    """Notify the subject through a channel."""
    message: str
    channel: NotificationChannel = NotificationChannel.EMAIL

    kind = OutcomeKind.NOTIFY_USER

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "channel", _coerce_enum(NotificationChannel, self.channel, "channel"))

    def _fields(self):
        return {"message": self.message, "channel": self.channel}


@dataclass(frozen=True, eq=False)
class LogViolation(Outcome):
    """Record the violation in the audit log."""
    level: LogLevel = LogLevel.INFO
    details: Any = None

    kind = OutcomeKind.LOG_VIOLATION

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "level", _coerce_enum(LogLevel, self.level, "level"))

    def _fields(self):
        return {"level": self.level, "details": self.details}


@dataclass(frozen=True, eq=False)
class BlockAction(Outcome):
    """Block a specific action for the subject."""
    action_type: str
    reason: Optional[str] = None

    kind = OutcomeKind.BLOCK_ACTION

    def __post_init__(self):
        super().__post_init__()
        if not self.action_type:
            raise ValidationError("Blocked action type is required", {"field": "action_type"})
        if isinstance(self.action_type, Enum):
            object.__setattr__(self, "action_type", self.action_type.value)

    def _fields(self):
        return {"action_type": self.action_type, "reason": self.reason}


@dataclass(frozen=True, eq=False)
class CustomOutcome(Outcome):
    """Collaborator-defined outcome carrying an opaque payload."""
    name: str
    payload: Any = None

    kind = OutcomeKind.CUSTOM

    def _fields(self):
        return {"name": self.name, "payload": self.payload}


OUTCOME_TYPES = {
    OutcomeKind.ADD_PENALTY: AddPenalty,
    OutcomeKind.SUSPEND_ACCOUNT: SuspendAccount,
    OutcomeKind.NOTIFY_SUPPORT: NotifySupport,
    OutcomeKind.NOTIFY_USER: NotifyUser,
    OutcomeKind.LOG_VIOLATION: LogViolation,
    OutcomeKind.BLOCK_ACTION: BlockAction,
    OutcomeKind.CUSTOM: CustomOutcome,
}


def parse_strategy_name(value: Union[StrategyName, str]) -> StrategyName:
    """Resolve a strategy identifier, rejecting anything outside the built-ins."""
    if isinstance(value, StrategyName):
        return value
    try:
        return StrategyName(str(value).lstrip(":").lower())
    except ValueError:
        raise UnknownStrategyError(value) from None
