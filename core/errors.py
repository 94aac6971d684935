"""Error taxonomy for the turn pipeline."""


class TransportError(RuntimeError):
    """The model stream or its network transport failed."""


class TurnCancelled(Exception):
    """Cooperative cancellation of an in-flight turn. Expected, not an error."""


class AugmentationFailure(RuntimeError):
    """The retrieval index could not be queried."""


class ConfigurationLocked(ValueError):
    """A conversation's persuasion config or phase is already bound."""
