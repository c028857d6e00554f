"""Server-side client for the Calq analytics API."""

from .client import CalqClient, RequestContext, resolve
from .cookies import ResponseCookies
from .errors import (
    AlreadyIdentifiedError,
    ApiError,
    CalqError,
    CookieWriteError,
    DeliveryError,
    NotIdentifiedError,
    StateError,
    ValidationError,
)
from .properties import ReservedActionProperties, ReservedApiProperties
from .queue import DeliveryQueue, Endpoint, PendingCall
from .state import IdentityStateMachine, SessionState, create_anonymous_user_id

__all__ = [
    "CalqClient",
    "RequestContext",
    "resolve",
    "ResponseCookies",
    "AlreadyIdentifiedError",
    "ApiError",
    "CalqError",
    "CookieWriteError",
    "DeliveryError",
    "NotIdentifiedError",
    "StateError",
    "ValidationError",
    "ReservedActionProperties",
    "ReservedApiProperties",
    "DeliveryQueue",
    "Endpoint",
    "PendingCall",
    "IdentityStateMachine",
    "SessionState",
    "create_anonymous_user_id",
]
