"""
In-memory notification store.

Notifications are partitioned by caller credential so independent clients
(or test runs) never see each other's data.
"""

import threading
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from shared.errors import NotFoundError, PayloadTooLargeError, ValidationError

from .common import (
    is_valid_email,
    format_timestamp,
    new_id,
    now_iso,
    object_field,
    page_params,
    paginate,
    parse_timestamp,
    text_field,
    utc_now,
)

NOTIFICATION_TYPES = ("info", "warning", "alert", "error")
NOTIFICATION_PRIORITIES = ("low", "medium", "normal", "high", "critical")
PRIORITY_RANK = {"low": 1, "medium": 2, "normal": 2, "high": 3, "critical": 4}

MAX_TITLE_LENGTH = 300
MAX_MESSAGE_LENGTH = 4000


class Notification(BaseModel):
    id: str
    title: str
    message: str
    type: str = "info"
    recipient: str = ""
    priority: str = "normal"
    status: str = "unread"
    created_at: str
    updated_at: str
    read_by: Optional[str] = None
    read_at: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        if data["metadata"] is None:
            del data["metadata"]
        return data


def credential_namespace(headers: Mapping[str, str]) -> str:
    """Partition key: the raw Authorization header, else the API key, else ``anon``."""
    authorization = (headers.get("authorization") or "").strip()
    if authorization:
        return authorization
    api_key = (headers.get("x-api-key") or "").strip()
    if api_key:
        return f"apikey:{api_key}"
    return "anon"


def allowed_or_default(value: Optional[str], allowed: Tuple[str, ...], default: str) -> str:
    normalized = (value or "").strip().lower()
    return normalized if normalized in allowed else default


class NotificationStore:
    """Thread-safe notification storage keyed by credential namespace."""

    def __init__(self):
        self._lock = threading.RLock()
        self._namespaces: Dict[str, Dict[str, Notification]] = {}

    def _bucket(self, namespace: str) -> Dict[str, Notification]:
        return self._namespaces.setdefault(namespace, {})

    def list(self, namespace: str, *,
             recipient: Optional[str] = None,
             status: Optional[str] = None,
             type: Optional[str] = None,
             priority: Optional[str] = None,
             search: Optional[str] = None,
             start_date: Optional[str] = None,
             end_date: Optional[str] = None,
             sort: str = "created_at",
             order: str = "desc",
             page: Any = None,
             limit: Any = None) -> Dict[str, Any]:
        recipient = (recipient or "").strip()
        status = (status or "").strip()
        type_filter = (type or "").strip()
        priority = (priority or "").strip()
        search = (search or "").strip().lower()
        start_date = (start_date or "").strip()
        end_date = (end_date or "").strip()
        order = (order or "desc").lower()
        page_number, page_size = page_params(page, limit, default_limit=20)

        start = parse_timestamp(start_date)
        end = parse_timestamp(end_date)

        with self._lock:
            candidates = list(self._bucket(namespace).values())

        items: List[Notification] = []
        for item in candidates:
            if recipient and item.recipient.lower() != recipient.lower():
                continue
            if status and item.status.lower() != status.lower():
                continue
            if type_filter and item.type.lower() != type_filter.lower():
                continue
            if priority and item.priority.lower() != priority.lower():
                continue
            if search and search not in item.title.lower() and search not in item.message.lower():
                continue
            if start or end:
                created = parse_timestamp(item.created_at)
                if created is not None:
                    if start and created < start:
                        continue
                    if end and created > end:
                        continue
            items.append(item)

        descending = order != "asc"
        if sort == "priority":
            items.sort(key=lambda n: PRIORITY_RANK.get(n.priority.lower(), 0), reverse=descending)
        else:
            items.sort(key=lambda n: n.created_at, reverse=descending)

        response: Dict[str, Any] = {
            "notifications": [n.to_dict() for n in paginate(items, page_number, page_size)],
            "total": len(items),
            "page": page_number,
            "limit": page_size,
            "sort": sort,
            "order": order,
        }
        if recipient:
            response["recipient_filter"] = recipient
        if status:
            response["status_filter"] = status
        if type_filter:
            response["type_filter"] = type_filter
        if priority:
            response["priority_filter"] = priority
        if search:
            response["search_query"] = search
        if start or end:
            response["date_range"] = {"start": start_date, "end": end_date}
        return response

    def create(self, namespace: str, payload: Mapping[str, Any]) -> Notification:
        title = text_field(payload, "title")
        message = text_field(payload, "message")
        recipient = text_field(payload, "recipient")
        type_value = text_field(payload, "type")
        priority = text_field(payload, "priority")
        metadata = object_field(payload, "metadata")

        if not title.strip():
            raise ValidationError("title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError("title length too long")
        if not message.strip():
            raise ValidationError("message is required")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise PayloadTooLargeError("message length too long")
        if recipient and not is_valid_email(recipient):
            raise ValidationError("invalid recipient")

        if type_value.strip() and allowed_or_default(type_value, NOTIFICATION_TYPES, "") == "":
            raise ValidationError("type is invalid")
        if priority.strip() and allowed_or_default(priority, NOTIFICATION_PRIORITIES, "") == "":
            raise ValidationError("priority is invalid")

        now = now_iso()
        notification = Notification(
            id=new_id("notif"),
            title=title,
            message=message,
            type=allowed_or_default(type_value, NOTIFICATION_TYPES, "info"),
            recipient=recipient,
            priority=allowed_or_default(priority, NOTIFICATION_PRIORITIES, "normal"),
            status="unread",
            created_at=now,
            updated_at=now,
            metadata=metadata,
        )
        with self._lock:
            self._bucket(namespace)[notification.id] = notification
        return notification

    def get(self, namespace: str, notification_id: str) -> Notification:
        with self._lock:
            notification = self._bucket(namespace).get(notification_id)
        if notification is None:
            raise NotFoundError("notification not found")
        return notification

    def update(self, namespace: str, notification_id: str,
               payload: Mapping[str, Any]) -> Notification:
        """Partial update; unknown enum values keep the stored value."""
        title = text_field(payload, "title")
        message = text_field(payload, "message")
        type_value = text_field(payload, "type")
        priority = text_field(payload, "priority")
        metadata = object_field(payload, "metadata")

        with self._lock:
            current = self.get(namespace, notification_id)
            changes: Dict[str, Any] = {"updated_at": now_iso()}
            if title.strip():
                changes["title"] = title
            if message.strip():
                changes["message"] = message
            if type_value.strip():
                changes["type"] = allowed_or_default(type_value, NOTIFICATION_TYPES, current.type)
            if priority.strip():
                changes["priority"] = allowed_or_default(
                    priority, NOTIFICATION_PRIORITIES, current.priority
                )
            if metadata is not None:
                changes["metadata"] = {**(current.metadata or {}), **metadata}
            updated = current.model_copy(update=changes)
            self._bucket(namespace)[notification_id] = updated
        return updated

    def mark_read(self, namespace: str, notification_id: str,
                  read_by: Optional[str] = None, read_at: Optional[str] = None) -> Notification:
        who = read_by if read_by and read_by.strip() else "system"
        when = read_at if read_at and read_at.strip() else now_iso()
        with self._lock:
            current = self.get(namespace, notification_id)
            updated = current.model_copy(update={
                "status": "read",
                "read_by": who,
                "read_at": when,
                "updated_at": when,
            })
            self._bucket(namespace)[notification_id] = updated
        return updated

    def mark_unread(self, namespace: str, notification_id: str) -> Notification:
        with self._lock:
            current = self.get(namespace, notification_id)
            updated = current.model_copy(update={
                "status": "unread",
                "read_by": None,
                "read_at": None,
                "updated_at": now_iso(),
            })
            self._bucket(namespace)[notification_id] = updated
        return updated

    def delete(self, namespace: str, notification_id: str) -> None:
        with self._lock:
            if self._bucket(namespace).pop(notification_id, None) is None:
                raise NotFoundError("notification not found")

    def broadcast(self, namespace: str, payload: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """Fan a message out to ``recipients``; returns the HTTP status and body.

        ``immediate`` broadcasts create one notification per recipient (201);
        anything else is only acknowledged as scheduled (202).
        """
        title = text_field(payload, "title")
        message = text_field(payload, "message")
        type_value = text_field(payload, "type")
        priority = text_field(payload, "priority")
        schedule_for = text_field(payload, "schedule_for")
        metadata = object_field(payload, "metadata")
        recipients = payload.get("recipients")
        immediate = payload.get("immediate") is True

        if not title.strip() or not message.strip():
            raise ValidationError()
        if recipients is not None and not isinstance(recipients, list):
            raise ValidationError()
        if not recipients:
            raise ValidationError("recipients are required")
        if not all(is_valid_email(r) for r in recipients):
            raise ValidationError("recipient email invalid")

        broadcast_id = new_id("broadcast", 8)
        if not immediate:
            scheduled_for = schedule_for if schedule_for.strip() else format_timestamp(
                utc_now() + timedelta(hours=1)
            )
            return 202, {
                "broadcast_id": broadcast_id,
                "recipients_count": len(recipients),
                "status": "scheduled",
                "scheduled_for": scheduled_for,
            }

        now = now_iso()
        created: List[str] = []
        with self._lock:
            bucket = self._bucket(namespace)
            for recipient in recipients:
                notification = Notification(
                    id=new_id("notif"),
                    title=title,
                    message=message,
                    type=allowed_or_default(type_value, NOTIFICATION_TYPES, "info"),
                    recipient=recipient,
                    priority=allowed_or_default(priority, NOTIFICATION_PRIORITIES, "normal"),
                    status="unread",
                    created_at=now,
                    updated_at=now,
                    metadata=metadata,
                )
                bucket[notification.id] = notification
                created.append(notification.id)

        return 201, {
            "broadcast_id": broadcast_id,
            "status": "sent",
            "notifications_created": created,
        }
