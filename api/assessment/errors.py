"""
Engine Errors
Typed failures raised by the lifecycle manager. Each carries a short
machine-readable reason and the HTTP status the API layer answers with.
"""


class EngineError(Exception):
    status_code = 500

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class NotFound(EngineError):
    status_code = 404


class Unavailable(EngineError):
    """Exam is locked, not open, or has nothing to present."""
    status_code = 403


class NotAuthorized(EngineError):
    status_code = 403


class AlreadyCompleted(EngineError):
    status_code = 400

    def __init__(self, message: str = "Attempt has already been submitted"):
        super().__init__("attempt_already_completed", message)


class NotCompleted(EngineError):
    status_code = 400

    def __init__(self, message: str = "Attempt has not been submitted yet"):
        super().__init__("attempt_not_completed", message)


class InvalidQuestion(EngineError):
    status_code = 422


class Conflict(EngineError):
    """A conditional write kept losing to concurrent updates."""
    status_code = 409
