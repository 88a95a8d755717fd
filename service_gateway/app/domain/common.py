"""
Small helpers shared by the in-memory domain stores.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ModelT = TypeVar("ModelT", bound=BaseModel)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime, precise: bool = False) -> str:
    """RFC 3339 in UTC with a ``Z`` suffix, optionally keeping microseconds."""
    value = value.astimezone(timezone.utc)
    if precise:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def now_iso(precise: bool = False) -> str:
    return format_timestamp(utc_now(), precise=precise)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; anything unparseable yields None."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))


def new_id(prefix: str, length: int = 12) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:length]}"


def positive_int(value: Any, default: int) -> int:
    """Coerce a query value to a positive int, falling back to ``default``."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def paginate(items: Sequence[Any], page: int, limit: int) -> List[Any]:
    """1-based page slice; pages past the end are empty."""
    start = min((page - 1) * limit, len(items))
    return list(items[start:start + limit])


def page_params(page: Any, limit: Any, default_limit: int,
                max_limit: Optional[int] = None) -> Tuple[int, int]:
    page_number = positive_int(page, 1)
    page_size = positive_int(limit, default_limit)
    if max_limit is not None:
        page_size = min(page_size, max_limit)
    return page_number, page_size


def parse_model(model: Type[ModelT], payload: Any, message: str = "invalid payload") -> ModelT:
    """Build a request model from a decoded JSON body or raise a 400."""
    if not isinstance(payload, dict):
        raise ValidationError(message)
    try:
        return model.model_validate(payload)
    except PydanticValidationError:
        raise ValidationError(message)


def text_field(payload: Mapping[str, Any], key: str) -> str:
    """A string field of a JSON object; missing or null reads as ``""``."""
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError()
    return value


def object_field(payload: Mapping[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError()
    return value
