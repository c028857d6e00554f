from typing import Optional


class CalqError(Exception):
    """Base class for everything the client raises."""


class ValidationError(CalqError, ValueError):
    """Raised when a required argument is missing or malformed."""


class StateError(CalqError, RuntimeError):
    """Raised when an operation is not allowed in the session's current state."""


class AlreadyIdentifiedError(StateError):
    """Raised when an identified session is identified again as someone else."""


class NotIdentifiedError(StateError):
    """Raised when an operation needs an identified actor but the session is anonymous."""


class CookieWriteError(StateError):
    """Raised when state must be written after the response headers went out."""


class DeliveryError(CalqError):
    """Raised when an API call could not reach the server within the retry budget."""

    def __init__(self, host: str, endpoint: str, retries: int):
        self.host = host
        self.endpoint = endpoint
        self.retries = retries
        super().__init__(
            f"Failed to reach Calq API server ({host}) for {endpoint} after {retries} retries"
        )


class ApiError(CalqError):
    """Raised when the API server answered with anything but 200. Never retried."""

    def __init__(self, message: str, status_code: int, endpoint: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(f"{status_code}: {message}")
