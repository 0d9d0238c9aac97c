"""
Action handlers that consume rule outcomes.

The dispatcher only relies on ``can_handle(outcome)`` and ``handle(outcome)``;
``ActionHandler`` adds naming and an enabled switch. The reference handlers
below only log what they would do and return a summary.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from shared.logging import get_logger
from ..rules.models import (
    AddPenalty, BlockAction, LogViolation, NotifySupport, NotifyUser, Outcome, OutcomeKind, SuspendAccount
)


class ActionHandler(ABC):
    """Base class for outcome handlers."""

    def __init__(self, name: Optional[str] = None, enabled: bool = True, logger=None):
        self.name = name or type(self).__name__
        self.enabled = enabled
        self.logger = logger or get_logger(f"decisions.handlers.{self.name}")

    def enable(self) -> "ActionHandler":
        """Enable the handler."""
        self.enabled = True
        return self

    def disable(self) -> "ActionHandler":
        """Disable the handler."""
        self.enabled = False
        return self

    @abstractmethod
    def can_handle(self, outcome: Outcome) -> bool:
        """Whether this handler claims the outcome."""

    def handle(self, outcome: Outcome) -> Any:
        """Process an outcome; disabled handlers skip it and return ``None``."""
        if not self.enabled:
            self.logger.debug("Handler disabled, skipping outcome", handler=self.name, outcome=outcome.kind.value)
            return None
        return self.process(outcome)

    @abstractmethod
    def process(self, outcome: Outcome) -> Any:
        """Apply the outcome's effect."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"


def _subject(outcome: Outcome) -> Any:
    return outcome.context.subject_id if outcome.context else None


class PenaltyHandler(ActionHandler):
    def can_handle(self, outcome):
        """Claim penalty outcomes."""
        return isinstance(outcome, AddPenalty)

    def process(self, outcome: AddPenalty) -> Dict[str, Any]:
        """Summarize the penalty to apply."""
        self.logger.info("Adding penalty points", subject_id=_subject(outcome), points=outcome.points,
                         reason=outcome.reason)
        return {"action": "penalty", "subject_id": _subject(outcome), "points": outcome.points}


class AccountSuspensionHandler(ActionHandler):
    def can_handle(self, outcome):
        """Claim suspension outcomes."""
        return isinstance(outcome, SuspendAccount)

    def process(self, outcome: SuspendAccount) -> Dict[str, Any]:
        """Summarize the suspension to apply."""
        duration = "indefinite" if outcome.is_indefinite else outcome.duration
        reason = outcome.reason or "Policy violation"
        self.logger.info("Suspending account", subject_id=_subject(outcome), duration=duration, reason=reason)
        return {"action": "suspend", "subject_id": _subject(outcome), "duration": duration, "reason": reason}


class NotificationHandler(ActionHandler):
    """Handles both support and user notifications."""

    def can_handle(self, outcome):
        """Claim support and user notifications."""
        return isinstance(outcome, (NotifySupport, NotifyUser))

    def process(self, outcome) -> Dict[str, Any]:
        """Summarize the notification to send."""
        if outcome.kind is OutcomeKind.NOTIFY_SUPPORT:
            kind = outcome.context.kind if outcome.context else "unknown"
            message = outcome.message or f"Violation detected: {kind}"
            self.logger.info("Sending support notification", priority=outcome.priority.value, message=message)
            return {"action": "notify_support", "priority": outcome.priority.value, "message": message}

        self.logger.info("Sending user notification", subject_id=_subject(outcome),
                         channel=outcome.channel.value, message=outcome.message)
        return {"action": "notify_user", "channel": outcome.channel.value, "message": outcome.message}


class LoggingHandler(ActionHandler):
    def can_handle(self, outcome):
        """Claim violation log outcomes."""
        return isinstance(outcome, LogViolation)

    def process(self, outcome: LogViolation) -> Dict[str, Any]:
        """Log the violation at its level."""
        details = outcome.details
        if details is None and outcome.context is not None:
            details = outcome.context.to_dict()
        # LogLevel.WARN maps to structlog's "warning"
        level = "warning" if outcome.level.value == "warn" else outcome.level.value
        getattr(self.logger, level)("Violation logged", details=details)
        return {"action": "log", "level": outcome.level.value, "details": details}


class ActionBlockingHandler(ActionHandler):
    def can_handle(self, outcome):
        """Claim block outcomes."""
        return isinstance(outcome, BlockAction)

    def process(self, outcome: BlockAction) -> Dict[str, Any]:
        """Summarize the action to block."""
        reason = outcome.reason or "Policy violation"
        self.logger.info("Blocking action", subject_id=_subject(outcome), action_type=outcome.action_type,
                         reason=reason)
        return {"action": "block", "subject_id": _subject(outcome), "action_type": outcome.action_type}


def default_handlers():
    """One instance of every reference handler."""
    return [
        PenaltyHandler(),
        AccountSuspensionHandler(),
        NotificationHandler(),
        LoggingHandler(),
        ActionBlockingHandler(),
    ]
