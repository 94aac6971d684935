from core.cancellation import CancellationToken, InFlightRegistry, InFlightTurn
from core.errors import AugmentationFailure, ConfigurationLocked, TransportError, TurnCancelled
from core.models import (
    Conversation,
    Message,
    PersuasionConfig,
    Phase,
    RetrievedSnippet,
    Role,
    Standpoint,
    Strategy,
    TurnRequest,
    create_message,
)

__all__ = [
    "AugmentationFailure",
    "CancellationToken",
    "ConfigurationLocked",
    "Conversation",
    "InFlightRegistry",
    "InFlightTurn",
    "Message",
    "PersuasionConfig",
    "Phase",
    "RetrievedSnippet",
    "Role",
    "Standpoint",
    "Strategy",
    "TransportError",
    "TurnCancelled",
    "TurnRequest",
    "create_message",
]
