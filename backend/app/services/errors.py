# backend/app/services/errors.py


class CoachingError(Exception):
    """Base class for call coaching errors."""
    pass


class InvalidRequestError(CoachingError):
    """Malformed or missing client input. State is left unchanged."""
    pass


class CallConflictError(CoachingError):
    """A call is already active and the start policy refuses to replace it."""

    def __init__(self, active_call_id: str):
        super().__init__(f"Call {active_call_id} is already active")
        self.active_call_id = active_call_id


class CollaboratorError(CoachingError):
    """The LLM completion service failed, timed out or is not configured."""
    pass
