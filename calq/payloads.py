"""Builders for the request bodies of the Track, Profile and Transfer endpoints."""
import json
from datetime import datetime, timezone
from typing import Any, Optional

from calq.errors import ValidationError
from calq.properties import ReservedApiProperties

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def ensure_json_serializable(value: Any, what: str) -> None:
    """Reject values the API body (or the state cookie) could not carry."""
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{what} must be JSON serializable: {e}") from e


def build_track(
    write_key: str,
    actor: str,
    action: str,
    api_properties: Optional[dict[str, Any]],
    user_properties: Optional[dict[str, Any]],
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Body for a Track call. Reserved API fields overwrite same-named caller fields."""
    if api_properties is None:
        raise ValidationError("api_properties must be specified")
    if user_properties is None:
        raise ValidationError("user_properties must be specified")
    if not actor:
        raise ValidationError("actor must be specified")
    if not action:
        raise ValidationError("action must be specified")

    payload: dict[str, Any] = dict(api_properties)
    payload[ReservedApiProperties.actor] = actor
    payload[ReservedApiProperties.action_name] = action
    payload[ReservedApiProperties.write_key] = write_key
    # Always an object on the wire, even when empty
    payload[ReservedApiProperties.user_properties] = dict(user_properties)
    payload[ReservedApiProperties.timestamp] = _timestamp(now)
    ensure_json_serializable(payload, "track properties")
    return payload


def build_profile(write_key: str, actor: str, user_properties: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not user_properties:
        raise ValidationError("user_properties must be specified")
    if not actor:
        raise ValidationError("actor must be specified")
    payload = {
        ReservedApiProperties.actor: actor,
        ReservedApiProperties.write_key: write_key,
        ReservedApiProperties.user_properties: dict(user_properties),
    }
    ensure_json_serializable(payload, "profile properties")
    return payload


def build_transfer(write_key: str, old_actor: str, new_actor: str) -> dict[str, Any]:
    if not old_actor:
        raise ValidationError("old_actor must be specified")
    if not new_actor:
        raise ValidationError("new_actor must be specified")
    return {
        ReservedApiProperties.old_actor: old_actor,
        ReservedApiProperties.new_actor: new_actor,
        ReservedApiProperties.write_key: write_key,
    }
