class PracticeError(Exception):
    """Base class for practice engine errors."""


class SessionNotFound(PracticeError):
    """No local mirror exists for the requested session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ActiveSessionConflict(PracticeError):
    """Another session currently holds the active-session guard."""

    def __init__(self, active_session_id: str):
        super().__init__(f"Session {active_session_id} is still active")
        self.active_session_id = active_session_id


class InvalidTransition(PracticeError):
    def __init__(self, action: str, status: str):
        super().__init__(f"Cannot {action} while session is {status}")
        self.action = action
        self.status = status


class InvalidQuestion(PracticeError, ValueError):
    pass


class PracticeServiceError(PracticeError):
    """The remote practice service failed or could not be reached."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class SessionFinalizeError(PracticeError):
    """Finalizing failed; the session stays open so the user can retry."""

    retryable = True
