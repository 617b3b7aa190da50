"""Flow events and the in-process bus that carries them to views."""

from core.event_bus import EventBus
from core.events import (
    StepUpEvent,
    FlowStarted,
    SubmissionStarted,
    FlowSucceeded,
    FlowFailed,
    FlowDiscarded,
    FactorAccepted,
    StepUnlocked,
    EmailConfirmationRequired,
)
