"""
Event envelope decoding.

Turns an authenticated raw body into a typed StripeEvent. Anything that does
not carry the minimum envelope shape is rejected with MalformedEventError,
which the HTTP boundary reports as a 4xx (redelivery will not help).
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from stripe_sync.core.errors import MalformedEventError


@dataclass(frozen=True)
class StripeEvent:
    """Decoded webhook envelope."""
    id: str
    type: str
    created: int  # unix seconds
    data_object: Dict[str, Any]
    previous_attributes: Optional[Dict[str, Any]] = None
    livemode: bool = False
    api_version: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def object_id(self) -> Optional[str]:
        value = self.data_object.get("id")
        return value if isinstance(value, str) else None


def _require_str(envelope: Mapping[str, Any], key: str) -> str:
    value = envelope.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedEventError(f"Event field '{key}' must be a non-empty string")
    return value


def decode_event(raw: Union[bytes, str, Mapping[str, Any]]) -> StripeEvent:
    """
    Parse a raw webhook body into a StripeEvent.

    Accepts bytes/str JSON or an already-parsed mapping (used by replay).

    Raises:
        MalformedEventError: If the body is not JSON or required fields are
            absent or of the wrong type
    """
    if isinstance(raw, (bytes, str)):
        try:
            envelope = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedEventError(f"Invalid JSON payload: {e}")
    else:
        envelope = raw

    if not isinstance(envelope, Mapping):
        raise MalformedEventError("Event body must be a JSON object")

    event_id = _require_str(envelope, "id")
    event_type = _require_str(envelope, "type")

    created = envelope.get("created")
    # bool is an int subclass; reject it explicitly
    if isinstance(created, bool) or not isinstance(created, int):
        raise MalformedEventError("Event field 'created' must be an integer timestamp")

    data = envelope.get("data")
    if not isinstance(data, Mapping):
        raise MalformedEventError("Event field 'data' must be an object")
    data_object = data.get("object")
    if not isinstance(data_object, Mapping):
        raise MalformedEventError("Event field 'data.object' must be an object")

    previous = data.get("previous_attributes")
    api_version = envelope.get("api_version")

    return StripeEvent(
        id=event_id,
        type=event_type,
        created=created,
        data_object=dict(data_object),
        previous_attributes=dict(previous) if isinstance(previous, Mapping) else None,
        livemode=bool(envelope.get("livemode", False)),
        api_version=api_version if isinstance(api_version, str) else None,
        raw=dict(envelope),
    )
