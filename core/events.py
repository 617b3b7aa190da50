"""
Flow events for the presentation layer.

Immutable event objects describing what happened to a step-up flow. The
orchestrator publishes; views subscribe by event class name and render
(open the camera modal, show the single failure message, navigate away
on success). No view state lives in the orchestrator.

Event Categories:
- FlowEvent: lifecycle of one step-up flow
- FactorEvent: factors accepted into a flow
- OutOfBandEvent: waiting on email confirmation
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class StepUpEvent:
    """Base class for all step-up events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)
    flow_id: str = ""
    action: str = ""


# =============================================================================
# FLOW EVENTS
# =============================================================================


@dataclass(frozen=True)
class FlowEvent(StepUpEvent):
    """Events related to flow lifecycle."""
    pass


@dataclass(frozen=True)
class FlowStarted(FlowEvent):
    """A flow was opened and is collecting factors."""
    required: tuple = ()


@dataclass(frozen=True)
class SubmissionStarted(FlowEvent):
    """The full factor bundle is on its way to the authority."""
    pass


@dataclass(frozen=True)
class FlowSucceeded(FlowEvent):
    """Terminal success. `session` is set for login actions."""
    session: Any = None  # AuthSession, Any to keep core free of auth imports
    message: str | None = None


@dataclass(frozen=True)
class FlowFailed(FlowEvent):
    """
    An attempt failed. The flow is back to collecting factors unless
    `terminal` is set (out-of-band wait expired or could not complete).
    """
    message: str = ""
    cleared: tuple = ()
    terminal: bool = False


@dataclass(frozen=True)
class FlowDiscarded(FlowEvent):
    """The host view closed the flow; nothing was submitted."""
    pass


# =============================================================================
# FACTOR EVENTS
# =============================================================================


@dataclass(frozen=True)
class FactorEvent(StepUpEvent):
    """Events related to factor collection."""
    kind: str = ""


@dataclass(frozen=True)
class FactorAccepted(FactorEvent):
    """A factor passed local validation (and its gate check, if any)."""
    pass


@dataclass(frozen=True)
class StepUnlocked(FactorEvent):
    """
    A gated step resolved; the next factor may now be collected.

    `display_name` carries the identity resolved by the authority.
    """
    display_name: str | None = None


# =============================================================================
# OUT-OF-BAND EVENTS
# =============================================================================


@dataclass(frozen=True)
class OutOfBandEvent(StepUpEvent):
    """Events related to side-channel confirmation."""
    pass


@dataclass(frozen=True)
class EmailConfirmationRequired(OutOfBandEvent):
    """The authority wants the user to confirm the login by email."""
    email: str = ""
