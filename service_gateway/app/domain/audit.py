"""
Append-only in-memory audit log.
"""

import json
import re
import threading
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel

from shared.errors import NotFoundError, PayloadTooLargeError, ValidationError

from .common import new_id, now_iso, object_field, page_params, paginate, parse_timestamp, text_field

ACTION_PATTERN = re.compile(r"^[\w\-:]+$")
MAX_DETAILS_BYTES = 6000
REDACTED_KEYS = frozenset({"old_password", "new_password"})
REDACTED_VALUE = "***redacted***"


class AuditLog(BaseModel):
    id: str
    timestamp: str
    user_id: str
    action: str
    resource_type: str
    resource_id: str = ""
    details: Optional[Dict[str, Any]] = None
    ip_address: str = ""
    user_agent: str = ""
    event_type: str = ""
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        if not data["event_type"]:
            del data["event_type"]
        if not data["metadata"]:
            del data["metadata"]
        return data


def sanitize_details(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    return {
        key: REDACTED_VALUE if key.lower() in REDACTED_KEYS else value
        for key, value in details.items()
    }


class AuditLogStore:
    """Thread-safe list of audit entries in insertion order."""

    def __init__(self):
        self._lock = threading.RLock()
        self._logs: List[AuditLog] = []

    def create(self, payload: Mapping[str, Any], client_ip: str = "",
               user_agent: str = "") -> AuditLog:
        """Validate and append one entry; IP and User-Agent default from the request."""
        user_id = text_field(payload, "user_id")
        action = text_field(payload, "action")
        resource_type = text_field(payload, "resource_type")
        resource = text_field(payload, "resource")
        details = object_field(payload, "details")
        metadata = object_field(payload, "metadata")
        timestamp = text_field(payload, "timestamp")

        if not user_id.strip() or not action.strip():
            raise ValidationError("missing required field")
        if not resource_type.strip() and not resource.strip():
            raise ValidationError("missing required field: resource_type or resource")
        if not ACTION_PATTERN.match(action):
            raise ValidationError("action is invalid")
        if details is not None and len(json.dumps(details, separators=(",", ":")).encode("utf-8")) > MAX_DETAILS_BYTES:
            raise PayloadTooLargeError()

        if not timestamp.strip() or parse_timestamp(timestamp) is None:
            timestamp = now_iso(precise=True)

        entry = AuditLog(
            id=new_id("audit", 8),
            timestamp=timestamp,
            user_id=user_id,
            action=action,
            resource_type=resource_type or resource,
            resource_id=text_field(payload, "resource_id"),
            details=sanitize_details(details),
            ip_address=text_field(payload, "ip_address").strip() or client_ip,
            user_agent=text_field(payload, "user_agent").strip() or user_agent,
            event_type=text_field(payload, "event_type"),
            metadata=metadata,
        )
        with self._lock:
            self._logs.append(entry)
        return entry

    def get(self, log_id: str) -> AuditLog:
        with self._lock:
            for entry in self._logs:
                if entry.id == log_id:
                    return entry
        raise NotFoundError("audit log not found")

    def list(self, *, user_id: Optional[str] = None, action: Optional[str] = None,
             resource_type: Optional[str] = None, start_date: Optional[str] = None,
             end_date: Optional[str] = None, sort: str = "timestamp", order: str = "desc",
             page: Any = None, limit: Any = None) -> Dict[str, Any]:
        user_id = (user_id or "").strip()
        action = (action or "").strip()
        resource_type = (resource_type or "").strip()
        start_date = (start_date or "").strip()
        end_date = (end_date or "").strip()
        order = (order or "desc").lower()

        start = parse_timestamp(start_date) if start_date else None
        end = parse_timestamp(end_date) if end_date else None
        if (start_date and start is None) or (end_date and end is None):
            raise ValidationError("invalid date format")

        page_number, page_size = page_params(page, limit, default_limit=50, max_limit=1000)

        with self._lock:
            entries = list(self._logs)

        filtered = []
        for entry in entries:
            if user_id and entry.user_id != user_id:
                continue
            if action and entry.action != action:
                continue
            if resource_type and entry.resource_type != resource_type:
                continue
            if start or end:
                stamp = parse_timestamp(entry.timestamp)
                if stamp is not None:
                    if start and stamp < start:
                        continue
                    if end and stamp > end:
                        continue
            filtered.append(entry)

        # Stored timestamps always parse.
        filtered.sort(key=lambda e: parse_timestamp(e.timestamp), reverse=order != "asc")

        return {
            "logs": [entry.to_dict() for entry in paginate(filtered, page_number, page_size)],
            "total": len(filtered),
            "page": page_number,
            "limit": page_size,
            "sort": sort or "timestamp",
            "order": order,
            "filters": {
                "user_id": user_id,
                "action": action,
                "resource_type": resource_type,
                "start_date": start_date,
                "end_date": end_date,
            },
        }
