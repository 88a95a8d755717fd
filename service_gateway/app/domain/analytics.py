"""
Synthetic analytics reports.

Nothing here is stored; every response is generated from fixed figures so the
endpoints behave predictably for test suites.
"""

import re
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from shared.errors import PayloadTooLargeError, ValidationError

from .common import format_timestamp, parse_timestamp, utc_now

EVENT_TYPE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_LARGE_DATA_LENGTH = 5000
UNKNOWN_ENDPOINT = "/non/existent/endpoint"
SAMPLE_ERROR_ENDPOINTS = ("/login", "/v1/ai/complete", "/v1/workflows")


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _series(base, count: int, step: timedelta, build: Callable[[int], Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"timestamp": format_timestamp(base + step * i), **build(i)}
        for i in range(count)
    ]


class AnalyticsService:
    """Stateless generator for usage, performance and error reports."""

    def __init__(self, clock=utc_now):
        self._clock = clock

    def usage(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
              endpoint: Optional[str] = None, group_by: Optional[str] = None) -> Dict[str, Any]:
        start_date = (start_date or "").strip()
        end_date = (end_date or "").strip()
        endpoint = (endpoint or "").strip()
        group_by = (group_by or "").strip()

        start = parse_timestamp(start_date) if start_date else None
        end = parse_timestamp(end_date) if end_date else None
        if (start_date and start is None) or (end_date and end is None):
            raise ValidationError("invalid date format")
        if start and end and end < start:
            raise ValidationError("invalid date range")

        now = self._clock()
        total, unique = 1000, 50
        if start and end and start > now and end > now:
            total, unique = 0, 0

        report: Dict[str, Any] = {
            "total_requests": total,
            "unique_users": unique,
            "requests_by_endpoint": [{"endpoint": "/v1/ai/complete", "count": min(total, 200)}],
            "requests_by_method": [
                {"method": "GET", "count": min(total, 600)},
                {"method": "POST", "count": min(total, 400)},
            ],
            "time_period": {"start": start_date, "end": end_date},
            "generated_at": format_timestamp(now),
        }
        if endpoint:
            report["endpoint_filter"] = endpoint
        if group_by:
            report["time_series"] = _series(
                now - timedelta(hours=1), 5, timedelta(minutes=1),
                lambda i: {"requests": 10 + i, "unique_users": 5 + i % 3},
            )
        return report

    def performance(self, endpoint: Optional[str] = None, include_trends: Optional[str] = None,
                    check_thresholds: Optional[str] = None) -> Dict[str, Any]:
        endpoint = (endpoint or "").strip()
        if endpoint == UNKNOWN_ENDPOINT:
            times = {"avg": 0, "p50": 0, "p95": 0, "p99": 0, "max": 0}
            throughput = {"requests_per_second": 0, "requests_per_minute": 0}
        else:
            times = {"avg": 120, "p50": 100, "p95": 200, "p99": 300, "max": 800}
            throughput = {"requests_per_second": 15, "requests_per_minute": 900}

        report: Dict[str, Any] = {
            "response_times": times,
            "throughput": throughput,
            "error_rates": {"total": 0.01, "by_status_code": [{"status": 500, "rate": 0.001}]},
            "system_resources": {"cpu_usage": 0.35, "memory_usage": 0.55, "active_connections": 5},
        }
        if endpoint:
            report["endpoint_filter"] = endpoint
        if _flag(include_trends):
            trend = _series(
                self._clock() - timedelta(hours=24), 6, timedelta(hours=4),
                lambda i: {"value": 100 + i * 10},
            )
            report["trends"] = {
                "response_time_trend": trend,
                "throughput_trend": trend,
                "error_rate_trend": trend,
            }
        if _flag(check_thresholds):
            report["threshold_checks"] = {
                "response_time_status": "healthy",
                "error_rate_status": "healthy",
                "throughput_status": "healthy",
                "overall_health": "healthy",
            }
        return report

    def errors(self, endpoint: Optional[str] = None, group_by: Optional[str] = None,
               include_trends: Optional[str] = None, limit: Optional[str] = None,
               status_code: Optional[str] = None) -> Dict[str, Any]:
        endpoint = (endpoint or "").strip()
        group_by = (group_by or "").strip()
        limit_text = (limit or "").strip()
        status_text = (status_code or "").strip()

        try:
            limit_value = int(limit_text) if limit_text else 10
        except ValueError:
            raise ValidationError("invalid limit")
        try:
            status_filter = int(status_text) if status_text else 0
        except ValueError:
            raise ValidationError("invalid status_code")

        now = self._clock()
        recent = []
        for i in range(limit_value):
            code = 400 + i % 5
            path = SAMPLE_ERROR_ENDPOINTS[i % 3]
            if status_filter and code != status_filter:
                continue
            if endpoint and path != endpoint:
                continue
            recent.append({
                "timestamp": format_timestamp(now - timedelta(minutes=i)),
                "endpoint": path,
                "status_code": code,
                "message": "sample error",
            })

        report: Dict[str, Any] = {
            "total_errors": 9,
            "error_rate": 0.01,
            "errors_by_status_code": [
                {"status_code": 400, "count": 5},
                {"status_code": 401, "count": 3},
                {"status_code": 500, "count": 1},
            ],
            "errors_by_endpoint": [
                {"endpoint": "/login", "count": 6},
                {"endpoint": "/v1/ai/complete", "count": 3},
            ],
            "recent_errors": recent,
            "time_period": {"start": "", "end": ""},
            "limit": limit_value,
        }
        if endpoint:
            report["endpoint_filter"] = endpoint
        if status_filter:
            report["status_code_filter"] = status_filter
        if _flag(include_trends) or group_by:
            report["error_trends"] = _series(
                now - timedelta(hours=2), 6, timedelta(minutes=20),
                lambda i: {"error_count": i, "error_rate": i / 100},
            )
        return report

    def track_event(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        event_type = payload.get("event_type")
        event_name = payload.get("event_name") or ""
        timestamp = payload.get("timestamp") or ""
        properties = payload.get("properties")

        if event_type is not None and not isinstance(event_type, str):
            raise ValidationError("invalid event")
        if properties is not None and not isinstance(properties, dict):
            raise ValidationError("invalid event")
        if not (event_type or "").strip():
            raise ValidationError("event_type required")
        if not EVENT_TYPE_PATTERN.match(event_type):
            raise ValidationError("event_type invalid")

        large_data = (properties or {}).get("large_data")
        if isinstance(large_data, str) and len(large_data) > MAX_LARGE_DATA_LENGTH:
            raise PayloadTooLargeError()

        return {
            "event_id": uuid.uuid4().hex,
            "status": "recorded",
            "timestamp": timestamp or format_timestamp(self._clock()),
            "event_type": event_type,
            "event_name": event_name,
        }

    def track_batch(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        events = payload.get("events")
        if not isinstance(events, list) or not events:
            raise ValidationError("invalid events batch")
        return {
            "batch_id": uuid.uuid4().hex,
            "events_received": len(events),
            "status": "processing",
        }
