import json
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _decode_value(value):
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("[", "{"):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


def unflatten_form(items) -> dict:
    """
    Build a nested payload from multipart form items.

    Dotted keys ("doctor.name") become nested objects, a key given more than
    once becomes a list, and values that look like JSON arrays/objects are
    decoded. Empty strings are dropped so optional fields stay unset.
    """
    grouped: dict[str, list] = {}
    for key, value in items:
        if isinstance(value, str) and value == "":
            continue
        grouped.setdefault(key, []).append(_decode_value(value))

    payload: dict = {}
    for key, values in grouped.items():
        value = values[0] if len(values) == 1 else values
        parts = key.split(".")
        node = payload
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return payload


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
