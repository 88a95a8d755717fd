"""
API Gateway service for the QA Showcase.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.errors import AdapterError, ValidationError
from shared.logging import request_id_var

from .adapters import AdapterResolver, CompletionClient, ReverseProxyForwarder
from .adapters.disconnect import cancel_on_disconnect
from .adapters.proxy import AnyMethodEndpoint, wildcard_remainder
from .auth import JWTTokenizer, Tokenizer
from .domain import (
    AdminStore,
    AnalyticsService,
    AuditLogStore,
    AuthGate,
    NotificationStore,
    WorkflowStore,
)
from .domain.admin import BackupRequest, ConfigPatch, MaintenanceRequest
from .domain.common import format_timestamp, parse_model, utc_now
from .domain.notifications import credential_namespace
from .domain.workflows import WorkflowCreate, WorkflowPatch

MODEL_CATALOG = {
    "adapter-a": {"type": "text-completion", "status": "active", "version": "1.0.0", "max_tokens": 4096},
    "adapter-b": {"type": "text-completion", "status": "active", "version": "1.2.0", "max_tokens": 8192},
}


async def read_json_object(request: Request, message: str = "invalid payload") -> Dict[str, Any]:
    """Decode the request body as a JSON object or raise a 400."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError(message)
    if not isinstance(body, dict):
        raise ValidationError(message)
    return body


async def read_optional_json_object(request: Request) -> Dict[str, Any]:
    """Like ``read_json_object`` but an empty or malformed body reads as ``{}``."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self,
                 resolver: Optional[AdapterResolver] = None,
                 tokenizer: Optional[Tokenizer] = None,
                 forwarder: Optional[ReverseProxyForwarder] = None,
                 completion_client: Optional[CompletionClient] = None):
        super().__init__("gateway", 8080)

        self.resolver = resolver or AdapterResolver()
        self.tokenizer = tokenizer or JWTTokenizer(self.config.jwt_secret, self.config.jwt_algorithm)
        self.forwarder = forwarder or ReverseProxyForwarder(
            timeout=self.config.proxy_timeout_seconds,
            metrics=self.metrics,
        )
        self.completion_client = completion_client or CompletionClient(
            timeout=self.config.completion_timeout_seconds,
            max_attempts=self.config.completion_max_attempts,
            backoff_seconds=self.config.completion_backoff_seconds,
            service_token=self.config.internal_service_token,
            metrics=self.metrics,
        )
        self.auth_gate = AuthGate(self.tokenizer, self.config.service_api_key, metrics=self.metrics)

        self.notification_store = NotificationStore()
        self.workflow_store = WorkflowStore()
        self.audit_store = AuditLogStore()
        self.analytics = AnalyticsService()
        self.admin_store = AdminStore()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.forwarder.close()
            await self.completion_client.close()

        self._require_auth = Depends(self.auth_gate.dependency())

        self._setup_gateway_routes()
        self._setup_proxy_routes()
        self._setup_ai_routes()
        self._setup_notification_routes()
        self._setup_workflow_routes()
        self._setup_audit_routes()
        self._setup_analytics_routes()
        self._setup_admin_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def _check_dependencies(self) -> Dict[str, str]:
        """Probe each adapter's ``/health`` endpoint."""
        dependencies = {}
        async with httpx.AsyncClient(timeout=2.0) as client:
            for model in self.resolver.models:
                url = self.resolver.resolve(model).rstrip("/") + "/health"
                try:
                    response = await client.get(url)
                    dependencies[model] = "ok" if response.status_code == 200 else "error"
                except httpx.HTTPError as e:
                    self.logger.warning("Adapter health probe failed", adapter=model, error=str(e) or repr(e))
                    dependencies[model] = "error"
        return dependencies

    def _setup_gateway_routes(self):
        """Set up the liveness route."""

        @self.app.get("/healthz")
        async def healthz():
            """Liveness probe."""
            return {"status": "ok"}

    # ===== ADAPTER PROXY =====

    def _setup_proxy_routes(self):
        """Mount one transparent proxy per adapter under ``/v1/<model>``."""
        for model in self.resolver.models:
            self._add_proxy_route(model)

    def _add_proxy_route(self, model: str):
        prefix = f"/v1/{model}"
        health_path = f"{prefix}/health"

        async def proxy_to_adapter(request: Request) -> Response:
            self.auth_gate.check(request, health_path=health_path)
            target_base_url = self.resolver.resolve(model)
            path = wildcard_remainder(request, prefix)
            return await self.forwarder.proxy(request, target_base_url, path, adapter=model)

        # No method list: TRACE, PURGE and friends reach the backend too
        self.app.add_route(
            prefix + "/{path:path}",
            AnyMethodEndpoint(proxy_to_adapter),
            methods=None,
            name=f"proxy_{model.replace('-', '_')}",
            include_in_schema=False,
        )

    # ===== AI =====

    def _setup_ai_routes(self):
        """Set up completion and model management routes."""
        auth = [self._require_auth]

        @self.app.post("/v1/ai/complete", dependencies=auth)
        async def ai_complete(request: Request):
            """Run a completion against the adapter serving ``model``."""
            return await self.complete(request)

        @self.app.get("/v1/ai/models", dependencies=auth)
        async def ai_list_models():
            return {
                "models": [
                    {"name": model, **MODEL_CATALOG.get(model, {})}
                    for model in self.resolver.models
                ]
            }

        @self.app.get("/v1/ai/models/{model}/status", dependencies=auth)
        async def ai_model_status(model: str):
            return {
                "model": model,
                "status": {"status": "online", "uptime": "99.99%"},
                "health": {"errors": 3, "avg_latency": "150ms", "memory_usage": "512MB"},
            }

        @self.app.post("/v1/ai/models/{model}/configure", dependencies=auth)
        async def ai_configure_model(model: str, request: Request):
            if not self.resolver.is_known(model):
                return JSONResponse(status_code=404, content={"error": "model not found"})
            await read_json_object(request, "invalid configuration")
            return {"message": "model configured successfully", "model": model}

        @self.app.get("/v1/ai/metrics", dependencies=auth)
        async def ai_metrics():
            return {
                "metrics": {
                    "total_requests": 5420,
                    "successful_requests": 5380,
                    "failed_requests": 40,
                    "avg_response_time": "145ms",
                    "models": {
                        "adapter-a": {"requests": 2710, "avg_latency": "130ms"},
                        "adapter-b": {"requests": 2710, "avg_latency": "160ms"},
                    },
                }
            }

        @self.app.post("/v1/ai/batch", status_code=202, dependencies=auth)
        async def ai_batch(request: Request):
            body = await read_json_object(request, "invalid batch request")
            requests = body.get("requests")
            if not isinstance(requests, list) or not requests:
                raise ValidationError("invalid batch request")
            return {
                "job_id": uuid.uuid4().hex,
                "status": "queued",
                "estimated_completion": "2-5 minutes",
            }

        @self.app.get("/v1/ai/jobs/{job_id}", dependencies=auth)
        async def ai_job_status(job_id: str):
            now = utc_now()
            return {
                "job_id": job_id,
                "status": "completed",
                "created_at": format_timestamp(now - timedelta(minutes=3)),
                "completed_at": format_timestamp(now),
                "results": [
                    {"index": 0, "completion": "Sample completion for first prompt", "status": "success"},
                    {"index": 1, "completion": "Sample completion for second prompt", "status": "success"},
                ],
            }

    async def complete(self, request: Request) -> JSONResponse:
        """Validate the payload, resolve the model and call its adapter."""
        body = await read_json_object(request)
        prompt = body.get("prompt")
        model = body.get("model")
        if not isinstance(prompt, str) or not isinstance(model, str) or not prompt or not model:
            raise ValidationError()

        target_base_url = self.resolver.resolve(model)

        try:
            completion = await cancel_on_disconnect(
                request,
                self.completion_client.complete(
                    target_base_url,
                    prompt,
                    model,
                    authorization=request.headers.get("authorization"),
                    test_fail=request.headers.get("x-test-fail"),
                )
            )
        except AdapterError as e:
            self.logger.error("Completion failed", model=model, error=e.message)
            return JSONResponse(
                status_code=502,
                content={"error": e.message, "model": model, "completion": ""}
            )

        prompt_tokens = len(prompt) // 4
        completion_tokens = len(completion) // 4
        return JSONResponse(content={
            "model": model,
            "completion": completion,
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
            "traceId": request_id_var.get(),
        })

    # ===== NOTIFICATIONS =====

    def _setup_notification_routes(self):
        """Set up notification routes; data is partitioned per caller credential."""
        auth = [self._require_auth]
        store = self.notification_store

        @self.app.get("/v1/notifications", dependencies=auth)
        async def list_notifications(request: Request):
            params = request.query_params
            return store.list(
                credential_namespace(request.headers),
                recipient=params.get("recipient"),
                status=params.get("status"),
                type=params.get("type"),
                priority=params.get("priority"),
                search=params.get("search"),
                start_date=params.get("start_date"),
                end_date=params.get("end_date"),
                sort=params.get("sort", "created_at"),
                order=params.get("order", "desc"),
                page=params.get("page"),
                limit=params.get("limit"),
            )

        @self.app.post("/v1/notifications", status_code=201, dependencies=auth)
        async def create_notification(request: Request):
            body = await read_json_object(request)
            return store.create(credential_namespace(request.headers), body).to_dict()

        @self.app.post("/v1/notifications/broadcast", dependencies=auth)
        async def broadcast_notification(request: Request):
            body = await read_json_object(request)
            status_code, result = store.broadcast(credential_namespace(request.headers), body)
            return JSONResponse(status_code=status_code, content=result)

        @self.app.get("/v1/notifications/{notification_id}", dependencies=auth)
        async def get_notification(notification_id: str, request: Request):
            return store.get(credential_namespace(request.headers), notification_id).to_dict()

        @self.app.put("/v1/notifications/{notification_id}", dependencies=auth)
        async def update_notification(notification_id: str, request: Request):
            namespace = credential_namespace(request.headers)
            store.get(namespace, notification_id)
            body = await read_json_object(request)
            return store.update(namespace, notification_id, body).to_dict()

        @self.app.put("/v1/notifications/{notification_id}/read", dependencies=auth)
        async def mark_notification_read(notification_id: str, request: Request):
            body = await read_optional_json_object(request)
            read_by = body.get("read_by")
            read_at = body.get("read_at")
            return store.mark_read(
                credential_namespace(request.headers),
                notification_id,
                read_by=read_by if isinstance(read_by, str) else None,
                read_at=read_at if isinstance(read_at, str) else None,
            ).to_dict()

        @self.app.put("/v1/notifications/{notification_id}/unread", dependencies=auth)
        async def mark_notification_unread(notification_id: str, request: Request):
            return store.mark_unread(credential_namespace(request.headers), notification_id).to_dict()

        @self.app.delete("/v1/notifications/{notification_id}", dependencies=auth)
        async def delete_notification(notification_id: str, request: Request):
            store.delete(credential_namespace(request.headers), notification_id)
            return Response(status_code=204)

    # ===== WORKFLOWS =====

    def _setup_workflow_routes(self):
        """Set up workflow definition and execution routes."""
        auth = [self._require_auth]
        store = self.workflow_store

        @self.app.get("/v1/workflows", dependencies=auth)
        async def list_workflows(request: Request):
            params = request.query_params
            return store.list(
                name=params.get("name"),
                status=params.get("status"),
                sort_by=params.get("sort_by", "created_at"),
                order=params.get("order", "desc"),
                page=params.get("page"),
                limit=params.get("limit"),
            )

        @self.app.post("/v1/workflows", status_code=201, dependencies=auth)
        async def create_workflow(request: Request):
            body = await read_json_object(request, "invalid workflow payload")
            workflow = store.create(parse_model(WorkflowCreate, body, "invalid workflow payload"))
            return workflow.model_dump(exclude_none=True)

        @self.app.get("/v1/workflows/{workflow_id}", dependencies=auth)
        async def get_workflow(workflow_id: str):
            return store.get(workflow_id).model_dump(exclude_none=True)

        @self.app.put("/v1/workflows/{workflow_id}", dependencies=auth)
        async def update_workflow(workflow_id: str, request: Request):
            store.get(workflow_id)
            body = await read_json_object(request)
            return store.update(workflow_id, parse_model(WorkflowPatch, body)).model_dump(exclude_none=True)

        @self.app.post("/v1/workflows/{workflow_id}/execute", status_code=202, dependencies=auth)
        async def execute_workflow(workflow_id: str, request: Request):
            body = await read_optional_json_object(request)
            triggered_by = body.get("triggered_by")
            execution = store.execute(
                workflow_id,
                triggered_by=triggered_by if isinstance(triggered_by, str) else "",
            )
            return execution.model_dump(exclude={"history"})

        @self.app.get("/v1/workflows/{workflow_id}/status", dependencies=auth)
        async def workflow_status(workflow_id: str):
            return store.status(workflow_id)

        @self.app.post("/v1/workflows/{workflow_id}/approve", dependencies=auth)
        async def approve_workflow(workflow_id: str, request: Request):
            body = await read_json_object(request, "invalid approval data")
            return store.approve(workflow_id, body)

        @self.app.post("/v1/workflows/{workflow_id}/reject", dependencies=auth)
        async def reject_workflow(workflow_id: str, request: Request):
            body = await read_json_object(request, "invalid rejection data")
            return store.reject(workflow_id, body)

    # ===== AUDIT =====

    def _setup_audit_routes(self):
        """Set up audit log routes."""
        auth = [self._require_auth]
        store = self.audit_store

        @self.app.get("/v1/audit/logs", dependencies=auth)
        async def list_audit_logs(request: Request):
            params = request.query_params
            return store.list(
                user_id=params.get("user_id"),
                action=params.get("action"),
                resource_type=params.get("resource_type"),
                start_date=params.get("start_date"),
                end_date=params.get("end_date"),
                sort=params.get("sort", "timestamp"),
                order=params.get("order", "desc"),
                page=params.get("page"),
                limit=params.get("limit"),
            )

        @self.app.post("/v1/audit/logs", status_code=201, dependencies=auth)
        async def create_audit_log(request: Request):
            body = await read_json_object(request)
            entry = store.create(
                body,
                client_ip=request.client.host if request.client else "",
                user_agent=request.headers.get("user-agent", ""),
            )
            return entry.to_dict()

        @self.app.get("/v1/audit/logs/{log_id}", dependencies=auth)
        async def get_audit_log(log_id: str):
            return store.get(log_id).to_dict()

    # ===== ANALYTICS =====

    def _setup_analytics_routes(self):
        """Set up synthetic analytics routes."""
        auth = [self._require_auth]
        analytics = self.analytics

        @self.app.get("/v1/analytics/usage", dependencies=auth)
        async def usage_analytics(request: Request):
            params = request.query_params
            return analytics.usage(
                start_date=params.get("start_date"),
                end_date=params.get("end_date"),
                endpoint=params.get("endpoint"),
                group_by=params.get("group_by"),
            )

        @self.app.get("/v1/analytics/performance", dependencies=auth)
        async def performance_analytics(request: Request):
            params = request.query_params
            return analytics.performance(
                endpoint=params.get("endpoint"),
                include_trends=params.get("include_trends"),
                check_thresholds=params.get("check_thresholds"),
            )

        @self.app.get("/v1/analytics/errors", dependencies=auth)
        async def error_analytics(request: Request):
            params = request.query_params
            return analytics.errors(
                endpoint=params.get("endpoint"),
                group_by=params.get("group_by"),
                include_trends=params.get("include_trends"),
                limit=params.get("limit"),
                status_code=params.get("status_code"),
            )

        @self.app.post("/v1/analytics/events", status_code=201, dependencies=auth)
        async def track_event(request: Request):
            body = await read_json_object(request, "invalid event")
            return analytics.track_event(body)

        @self.app.post("/v1/analytics/events/batch", status_code=202, dependencies=auth)
        async def track_event_batch(request: Request):
            body = await read_json_object(request, "invalid events batch")
            return analytics.track_batch(body)

    # ===== ADMIN =====

    def _setup_admin_routes(self):
        """Set up system administration routes."""
        auth = [self._require_auth]
        store = self.admin_store

        @self.app.get("/v1/admin/system/status", dependencies=auth)
        async def system_status():
            return store.system_status()

        @self.app.post("/v1/admin/system/maintenance", dependencies=auth)
        async def set_maintenance(request: Request):
            body = await read_json_object(request)
            return store.set_maintenance(parse_model(MaintenanceRequest, body))

        @self.app.get("/v1/admin/system/config", dependencies=auth)
        async def get_system_config():
            return store.get_config()

        @self.app.put("/v1/admin/system/config", dependencies=auth)
        async def update_system_config(request: Request):
            body = await read_json_object(request)
            return store.update_config(ConfigPatch.parse(body))

        @self.app.post("/v1/admin/system/backup", status_code=202, dependencies=auth)
        async def create_backup(request: Request):
            body = await read_json_object(request)
            return store.create_backup(parse_model(BackupRequest, body))

        @self.app.get("/v1/admin/system/backups", dependencies=auth)
        async def list_backups(request: Request):
            params = request.query_params
            return store.list_backups(
                backup_type=params.get("type"),
                status=params.get("status"),
                order=params.get("order", "desc"),
            )

        @self.app.get("/v1/admin/system/backup/{backup_id}", dependencies=auth)
        async def backup_status(backup_id: str):
            return store.backup_status(backup_id)


def create_app():
    """Create FastAPI application."""
    service = GatewayService()
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
