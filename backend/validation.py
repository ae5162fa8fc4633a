import uuid
from typing import Any, Dict, Iterable, Optional


def is_valid_uuid(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return False
    # canonical hyphenated form only
    return str(parsed) == value.lower()


def first_invalid_uuid(payload: Dict[str, Any], fields: Iterable[str], required: Iterable[str] = ()) -> Optional[str]:
    """Name of the first field that is missing (when required) or not a UUID."""
    required_fields = set(required)
    for field in fields:
        value = payload.get(field)
        if value in (None, ""):
            if field in required_fields:
                return field
            continue
        if not is_valid_uuid(value):
            return field
    return None
