"""Per-request entry point for tracking actions with Calq.

Quick example (inside a request handler)::

    calq = resolve(write_key, context)
    calq.track("Product Review", {"Product": "XS T-Shirt", "Rating": 9.0})

API calls are held in memory until the session ends (``close()``, leaving a
``with`` block, or the end of the request when using ``calq.web``) and are then
sent in order. ``flush()`` sends them earlier.
"""
import ipaddress
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from calq import payloads
from calq.cookies import ResponseCookies
from calq.errors import NotIdentifiedError, ValidationError
from calq.logging_config import get_logger
from calq.properties import NO_IP_ADDRESS, UTM_PARAMETERS, ReservedActionProperties, ReservedApiProperties
from calq.queue import DeliveryQueue, Endpoint, PendingCall
from calq.state import IdentityStateMachine, create_anonymous_user_id

MIN_WRITE_KEY_LENGTH = 32


@dataclass
class RequestContext:
    """What the client needs to know about the current request.

    One context exists per unit of work; ``session`` holds the client resolved
    for it so every caller in that unit shares the same instance.
    """

    cookies: ResponseCookies = field(default_factory=ResponseCookies)
    user_agent: Optional[str] = None
    query_params: Mapping[str, str] = field(default_factory=dict)
    form_params: Mapping[str, str] = field(default_factory=dict)
    forwarded_for: Optional[str] = None
    real_ip: Optional[str] = None
    remote_addr: Optional[str] = None
    session: Optional["CalqClient"] = None

    def source_ip_address(self) -> str:
        """Best guess at the visitor's address, or ``"none"`` to skip geolocation.

        X-Forwarded-For beats X-Real-IP, which beats the peer address. Whatever
        is picked must look like an IP address; it may still be spoofed.
        """
        candidate = self.remote_addr
        if self.real_ip:
            candidate = self.real_ip
        if self.forwarded_for:
            candidate = self.forwarded_for.split(",")[-1]
        if not candidate:
            return NO_IP_ADDRESS
        candidate = candidate.strip()
        try:
            ipaddress.ip_address(candidate)
        except ValueError:
            return NO_IP_ADDRESS
        return candidate

    def request_params(self) -> dict[str, str]:
        # Form values win over the query string
        return {**self.query_params, **self.form_params}


class CalqClient:
    """Tracks actions for one actor and keeps their identity in the Calq cookie."""

    def __init__(
        self,
        actor: str,
        write_key: str,
        cookies: Optional[ResponseCookies] = None,
        cookie_name: Optional[str] = None,
        cookie_domain: Optional[str] = None,
        cookie_expires_days: Optional[int] = None,
        api_processor: Optional[DeliveryQueue] = None,
        context: Optional[RequestContext] = None,
    ):
        if not actor:
            raise ValidationError("An actor must be specified")
        if not write_key or len(write_key) < MIN_WRITE_KEY_LENGTH:
            raise ValidationError("A valid write_key must be specified")

        if context is not None and cookies is not None and cookies is not context.cookies:
            raise ValidationError("Pass cookies either directly or through the context, not both")

        self.write_key = write_key
        self.context = context or RequestContext(cookies=cookies or ResponseCookies())
        self.api = api_processor if api_processor is not None else DeliveryQueue()
        self._identity = IdentityStateMachine(
            actor,
            write_key,
            api=self.api,
            cookies=self.context.cookies,
            cookie_name=cookie_name,
            cookie_domain=cookie_domain,
            cookie_expires_days=cookie_expires_days,
        )
        self._log = get_logger()

    def __enter__(self) -> "CalqClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def actor(self) -> str:
        return self._identity.actor

    @property
    def is_anonymous(self) -> bool:
        return self._identity.is_anonymous

    @property
    def has_tracked(self) -> bool:
        return self._identity.has_tracked

    @property
    def global_properties(self) -> dict[str, Any]:
        return self._identity.global_properties

    @property
    def cookie_name(self) -> str:
        return self._identity.cookie_name

    def parse_cookie_state(self, cookie: Optional[str]) -> bool:
        return self._identity.load_cookie(cookie)

    def write_cookie_state(self) -> None:
        self._identity.persist()

    def apply_request_signals(self, context: Optional[RequestContext] = None) -> None:
        """Copy user agent and campaign tags from the request into global properties."""
        context = context or self.context
        # Agent can change between requests, so it is always refreshed
        if context.user_agent:
            self.set_global_property(ReservedActionProperties.device_agent, context.user_agent)

        params = context.request_params()
        current = self._identity.state.global_properties
        for reserved_key, param in UTM_PARAMETERS.items():
            if reserved_key not in current and param in params:
                self.set_global_property(reserved_key, params[param])

    def track(self, action: str, properties: Optional[dict[str, Any]] = None) -> None:
        """Record ``action`` for this actor. Explicit properties override global ones."""
        merged = {**self._identity.state.global_properties, **(properties or {})}
        api_properties = {ReservedApiProperties.ip_address: self.context.source_ip_address()}

        payload = payloads.build_track(self.write_key, self.actor, action, api_properties, merged)
        self.api.enqueue(Endpoint.TRACK, payload)
        self._identity.mark_tracked()

    def track_sale(
        self,
        action: str,
        properties: Optional[dict[str, Any]],
        currency: str,
        amount: float,
    ) -> None:
        """Record an action that carries a monetary value."""
        if not isinstance(currency, str) or len(currency) != 3:
            raise ValidationError("currency must be a 3 letter currency code (fictional or otherwise)")
        properties = dict(properties or {})
        properties[ReservedActionProperties.sale_currency] = currency
        properties[ReservedActionProperties.sale_value] = amount
        self.track(action, properties)

    def set_global_property(self, key: str, value: Any) -> None:
        self._identity.set_global_property(key, value)

    def identify(self, actor: str) -> None:
        """Switch to a known identity, merging anonymous history into it if any."""
        self._identity.identify(actor)

    def profile(self, properties: Optional[dict[str, Any]]) -> None:
        """Save information about the (identified) user. Not the same as global properties."""
        if not properties:
            raise ValidationError("profile(...) needs at least one property")
        if self._identity.is_anonymous:
            raise NotIdentifiedError("A client must be identified (call identify(...)) before calling profile(...)")
        self.api.enqueue(Endpoint.PROFILE, payloads.build_profile(self.write_key, self.actor, properties))

    def clear(self) -> None:
        self._identity.clear()

    def flush(self) -> list[PendingCall]:
        return self.api.flush()

    def close(self) -> None:
        self.flush()


def resolve(
    write_key: str,
    context: RequestContext,
    **options: Any,
) -> CalqClient:
    """The client for this unit of work, created on first use.

    A new visitor gets a random anonymous id; a returning one is restored from
    the cookie. Request signals are applied every time a client is created.
    """
    if context.session is not None:
        return context.session

    client = CalqClient(create_anonymous_user_id(), write_key, context=context, **options)
    raw_cookie = context.cookies.get(client.cookie_name)
    if raw_cookie is None or not client.parse_cookie_state(raw_cookie):
        client.write_cookie_state()
    client.apply_request_signals(context)

    context.session = client
    return client
