"""
System administration state: maintenance mode, runtime configuration and
backup bookkeeping.
"""

import copy
import ipaddress
import threading
from datetime import datetime, timedelta
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError

from .common import format_timestamp, new_id, utc_now

PositiveInt = Annotated[StrictInt, Field(gt=0)]

BACKUP_PROGRESS_PER_SECOND = 30
BACKUP_FILE_SIZE = 1024 * 1024

DEFAULT_SYSTEM_CONFIG: Dict[str, Any] = {
    "application": {
        "name": "QA Showcase Gateway",
        "version": "0.1.0",
        "environment": "test",
    },
    "database": {
        "type": "sqlite",
        "max_connections": 25,
        "connection_string": "file::memory:?cache=shared",
    },
    "security": {
        "jwt_expiry": 3600,
        "cors_enabled": True,
        "rate_limiting": {
            "enabled": True,
            "rate_limit_requests": 200,
            "rate_limit_window": 60,
        },
    },
    "performance": {
        "max_connections": 100,
        "timeout_settings": {"request_timeout": 15000},
        "cache_settings": {"cache_ttl": 600},
    },
    "logging": {"level": "info"},
    "features": {
        "analytics_enabled": True,
        "notifications_enabled": True,
        "audit_logging": True,
    },
}


class PerformancePatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_connections: Optional[PositiveInt] = None
    request_timeout: Optional[PositiveInt] = None
    cache_ttl: Optional[PositiveInt] = None


class SecurityPatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rate_limit_requests: Optional[PositiveInt] = None
    rate_limit_window: Optional[PositiveInt] = None


class ConfigPatch(BaseModel):
    """Typed configuration update; absent sections and fields are left alone."""

    model_config = ConfigDict(extra="ignore")

    performance: Optional[PerformancePatch] = None
    security: Optional[SecurityPatch] = None
    features: Optional[Dict[str, StrictBool]] = None

    @classmethod
    def parse(cls, payload: Any) -> "ConfigPatch":
        """Validate every field, reporting all problems at once."""
        if not isinstance(payload, dict):
            raise ValidationError()
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            problems = []
            for error in exc.errors():
                field = ".".join(str(part) for part in error["loc"])
                problem = f"{field} invalid"
                if problem not in problems:
                    problems.append(problem)
            raise ValidationError("configuration invalid", validation_errors=problems)


class MaintenanceRequest(BaseModel):
    enabled: bool = False
    message: str = ""
    estimated_duration: int = 0
    allowed_ips: List[str] = Field(default_factory=list)
    maintenance_type: str = ""
    contact_info: str = ""
    completion_message: str = ""


class BackupRequest(BaseModel):
    backup_type: str = ""
    include_database: bool = False
    include_files: bool = False
    include_configuration: bool = False
    description: str = ""
    compression: bool = False


class AdminStore:
    """Guarded admin state for one gateway instance."""

    def __init__(self, clock=utc_now):
        self._lock = threading.RLock()
        self._clock = clock
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_SYSTEM_CONFIG)
        self._maintenance: Dict[str, Any] = {"enabled": False}
        self._backups: List[Dict[str, Any]] = []
        self._backup_started: Dict[str, datetime] = {}

    @property
    def maintenance_enabled(self) -> bool:
        with self._lock:
            return bool(self._maintenance.get("enabled"))

    def system_status(self) -> Dict[str, Any]:
        healthy = {"status": "healthy"}
        return {
            "overall_status": "degraded" if self.maintenance_enabled else "healthy",
            "services": {"gateway": healthy, "adapter_a": healthy, "adapter_b": healthy},
            "database": {"status": "healthy", "connections": 3, "response_time": 12},
            "external_dependencies": ["sqlite"],
            "system_resources": {
                "cpu_usage": 0.35,
                "memory_usage": 0.55,
                "disk_usage": 0.40,
                "network_io": {"rx": 12345, "tx": 9876},
            },
            "uptime": "72h",
            "version": "0.1.0",
            "timestamp": format_timestamp(self._clock()),
            "gateway_status": {"healthy": True, "status": "healthy"},
            "adapter_statuses": {
                "adapter_a": {"healthy": True, "status": "healthy"},
                "adapter_b": {"healthy": True, "status": "healthy"},
            },
        }

    def set_maintenance(self, request: MaintenanceRequest) -> Dict[str, Any]:
        now = self._clock()
        if not request.enabled:
            with self._lock:
                self._maintenance = {
                    "enabled": False,
                    "completed_at": now,
                    "completion_message": request.completion_message,
                }
            return {
                "maintenance_mode": False,
                "completed_at": format_timestamp(now),
                "completion_message": request.completion_message,
            }

        problems = []
        if request.estimated_duration <= 0:
            problems.append("estimated duration invalid")
        for ip in request.allowed_ips:
            try:
                ipaddress.ip_address(ip)
            except ValueError:
                problems.append(f"allowed ip invalid: {ip}")
        if problems:
            raise ValidationError("; ".join(problems), validation_errors=problems)

        estimated_end = now + timedelta(seconds=request.estimated_duration)
        maintenance_type = request.maintenance_type.strip().lower()
        with self._lock:
            self._maintenance = {
                "enabled": True,
                "message": request.message,
                "estimated_duration": request.estimated_duration,
                "allowed_ips": list(request.allowed_ips),
                "maintenance_type": maintenance_type,
                "contact_info": request.contact_info,
                "started_at": now,
                "estimated_end": estimated_end,
            }
        return {
            "maintenance_mode": True,
            "message": request.message,
            "estimated_duration": request.estimated_duration,
            "maintenance_type": maintenance_type,
            "started_at": format_timestamp(now),
            "estimated_end_time": format_timestamp(estimated_end),
        }

    def get_config(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._config)

    def update_config(self, patch: ConfigPatch) -> Dict[str, Any]:
        """Apply an already validated patch and report the touched sections."""
        updated: Dict[str, Any] = {}
        with self._lock:
            if patch.performance is not None:
                performance = self._config["performance"]
                if patch.performance.max_connections is not None:
                    performance["max_connections"] = patch.performance.max_connections
                if patch.performance.request_timeout is not None:
                    performance["timeout_settings"]["request_timeout"] = patch.performance.request_timeout
                if patch.performance.cache_ttl is not None:
                    performance["cache_settings"]["cache_ttl"] = patch.performance.cache_ttl
                updated["performance"] = copy.deepcopy(performance)

            if patch.security is not None:
                security = self._config["security"]
                rate_limiting = security["rate_limiting"]
                # Mirrored flat under security as well
                if patch.security.rate_limit_requests is not None:
                    rate_limiting["rate_limit_requests"] = patch.security.rate_limit_requests
                    security["rate_limit_requests"] = patch.security.rate_limit_requests
                if patch.security.rate_limit_window is not None:
                    rate_limiting["rate_limit_window"] = patch.security.rate_limit_window
                    security["rate_limit_window"] = patch.security.rate_limit_window
                updated["security"] = copy.deepcopy(security)

            if patch.features is not None:
                self._config["features"].update(patch.features)
                updated["features"] = dict(self._config["features"])

        return {
            "updated_settings": updated,
            "applied_at": format_timestamp(self._clock()),
            "restart_required": False,
        }

    def create_backup(self, request: BackupRequest) -> Dict[str, Any]:
        now = self._clock()
        backup = {
            "backup_id": new_id("backup", 8),
            "status": "started",
            "started_at": format_timestamp(now),
            "created_at": format_timestamp(now),
            "estimated_completion": format_timestamp(now + timedelta(minutes=2)),
            "backup_type": request.backup_type.strip().lower(),
            "compression": request.compression,
            "progress": 0,
            "file_size": 0,
        }
        with self._lock:
            self._backups.append(backup)
            self._backup_started[backup["backup_id"]] = now
        return dict(backup)

    def list_backups(self, backup_type: Optional[str] = None, status: Optional[str] = None,
                     order: str = "desc") -> Dict[str, Any]:
        backup_type = (backup_type or "").lower()
        status = (status or "").lower()
        with self._lock:
            backups = [
                dict(b) for b in self._backups
                if (not backup_type or str(b.get("backup_type", "")).lower() == backup_type)
                and (not status or str(b.get("status", "")).lower() == status)
            ]
        backups.sort(key=lambda b: b["created_at"], reverse=(order or "desc").lower() != "asc")
        return {
            "backups": backups,
            "total": len(backups),
            "storage_usage": sum(int(b.get("file_size") or 0) for b in backups),
        }

    def backup_status(self, backup_id: str) -> Dict[str, Any]:
        """Advance simulated progress; unknown ids get a synthetic in-progress record."""
        now = self._clock()
        with self._lock:
            for backup in self._backups:
                if backup["backup_id"] != backup_id:
                    continue
                elapsed = (now - self._backup_started[backup_id]).total_seconds()
                progress = min(int(elapsed * BACKUP_PROGRESS_PER_SECOND), 100)
                backup["progress"] = progress
                if progress >= 100:
                    backup["status"] = "completed"
                    backup["completed_at"] = format_timestamp(now)
                    if not backup.get("file_size"):
                        backup["file_size"] = BACKUP_FILE_SIZE
                    backup["download_url"] = f"/downloads/{backup_id}.tar.gz"
                elif progress > 0:
                    backup["status"] = "in_progress"
                return dict(backup)

        return {
            "backup_id": backup_id,
            "status": "in_progress",
            "progress": 10,
            "started_at": format_timestamp(now - timedelta(minutes=1)),
            "backup_type": "full",
        }

