"""Visitor identity and its cookie representation.

The cookie is shared with the Calq JavaScript client, so its format has to
stay in step with it: base64 of a JSON object shaped like

    {
        "actor": "some_id",
        "hasAction": true,
        "isAnon": true,
        "actionGlobal": {"someGlobalProperty": "someValue"}
    }

Fields this client does not know about are carried through untouched.
"""
import base64
import binascii
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from calq import payloads
from calq.config import settings
from calq.cookies import ResponseCookies
from calq.errors import AlreadyIdentifiedError, ValidationError
from calq.logging_config import get_logger
from calq.properties import API_PROPERTY_NAMES
from calq.queue import DeliveryQueue, Endpoint

ACTOR = "actor"
HAS_ACTION = "hasAction"
IS_ANON = "isAnon"
ACTION_GLOBAL = "actionGlobal"

log = get_logger()


def create_anonymous_user_id() -> str:
    return str(uuid.uuid4())


@dataclass
class SessionState:
    actor: str
    is_anonymous: bool = True
    has_tracked: bool = False
    global_properties: dict[str, Any] = field(default_factory=dict)
    prior_cookie_fields: dict[str, Any] = field(default_factory=dict)

    def to_cookie_fields(self) -> dict[str, Any]:
        fields = dict(self.prior_cookie_fields)
        fields[ACTOR] = self.actor
        fields[HAS_ACTION] = self.has_tracked
        fields[IS_ANON] = self.is_anonymous
        fields[ACTION_GLOBAL] = dict(self.global_properties)
        return fields

    @classmethod
    def from_cookie_fields(cls, fields: Any) -> Optional["SessionState"]:
        """None unless ``fields`` is an object with a usable actor.

        Without an actor nothing else is read, so stored properties are never
        attached to a freshly minted anonymous id.
        """
        if not isinstance(fields, dict) or not fields:
            return None
        actor = fields.get(ACTOR)
        if not isinstance(actor, str) or not actor:
            return None
        global_properties = fields.get(ACTION_GLOBAL)
        return cls(
            actor=actor,
            is_anonymous=bool(fields.get(IS_ANON, True)),
            has_tracked=bool(fields.get(HAS_ACTION, False)),
            global_properties=(
                {k: v for k, v in global_properties.items() if k not in API_PROPERTY_NAMES}
                if isinstance(global_properties, dict)
                else {}
            ),
            prior_cookie_fields=dict(fields),
        )


def encode_cookie(state: SessionState) -> str:
    text = json.dumps(state.to_cookie_fields(), separators=(",", ":"))
    # Unpadded so the value needs no quoting in a Set-Cookie header
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cookie(value: Optional[str]) -> Optional[SessionState]:
    """Parse a cookie value; None if it is empty, garbled or has no actor."""
    if not value:
        return None
    raw = value.strip().strip('"').replace("-", "+").replace("_", "/")
    raw += "=" * (-len(raw) % 4)
    try:
        text = base64.b64decode(raw, validate=True).decode("utf-8")
        fields = json.loads(text)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return SessionState.from_cookie_fields(fields)


class IdentityStateMachine:
    """Owns the actor of one session and keeps the cookie in sync with it."""

    def __init__(
        self,
        actor: str,
        write_key: str,
        api: DeliveryQueue,
        cookies: ResponseCookies,
        cookie_name: Optional[str] = None,
        cookie_domain: Optional[str] = None,
        cookie_expires_days: Optional[int] = None,
    ):
        if not actor:
            raise ValidationError("An actor must be specified")
        self.state = SessionState(actor=actor)
        self.write_key = write_key
        self.api = api
        self.cookies = cookies
        self.cookie_name = cookie_name or settings.cookie_name
        self.cookie_domain = cookie_domain if cookie_domain is not None else settings.cookie_domain
        self.cookie_expires_days = (
            settings.cookie_expires_days if cookie_expires_days is None else cookie_expires_days
        )

    @property
    def actor(self) -> str:
        return self.state.actor

    @property
    def is_anonymous(self) -> bool:
        return self.state.is_anonymous

    @property
    def has_tracked(self) -> bool:
        return self.state.has_tracked

    @property
    def global_properties(self) -> dict[str, Any]:
        return dict(self.state.global_properties)

    def load_cookie(self, value: Optional[str]) -> bool:
        """Adopt the state stored in ``value``. Returns False if it was unusable."""
        loaded = decode_cookie(value)
        if loaded is None:
            log.info("cookie_ignored", cookie_name=self.cookie_name)
            return False
        self.state = loaded
        return True

    def persist(self) -> None:
        self.cookies.set(
            self.cookie_name,
            encode_cookie(self.state),
            max_age=self.cookie_expires_days * 24 * 60 * 60,
            domain=self.cookie_domain,
        )

    def identify(self, actor: str) -> None:
        if not actor:
            raise ValidationError("An actor must be specified")
        if actor == self.state.actor:
            return
        if not self.state.is_anonymous:
            raise AlreadyIdentifiedError(
                "identify(...) must not be called more than once for the same user"
            )
        old_actor = self.state.actor
        # Anonymous history only needs merging if something was sent under it
        transfer = self.state.has_tracked
        if transfer:
            self.api.enqueue(Endpoint.TRANSFER, payloads.build_transfer(self.write_key, old_actor, actor))
        self.state.actor = actor
        self.state.is_anonymous = False
        self.state.has_tracked = False
        log.info("actor_identified", transfer=transfer)
        self.persist()

    def set_global_property(self, key: str, value: Any) -> None:
        if not key:
            raise ValidationError("A global property name must be specified")
        if key in API_PROPERTY_NAMES:
            raise ValidationError(f"{key!r} is a reserved API property and cannot be a global property")
        payloads.ensure_json_serializable(value, f"global property {key!r}")
        props = self.state.global_properties
        # 1 == True == 1.0, but they are different values on the wire
        if key in props and type(props[key]) is type(value) and props[key] == value:
            return
        props[key] = value
        self.persist()

    def mark_tracked(self) -> None:
        if not self.state.has_tracked:
            self.state.has_tracked = True
            self.persist()

    def clear(self) -> None:
        """Start over as a brand new anonymous visitor, dropping any legacy cookie fields."""
        self.state = SessionState(actor=create_anonymous_user_id())
        self.persist()
