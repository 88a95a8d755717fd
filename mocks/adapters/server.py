"""
Mock AI completion backend used for both adapter-a and adapter-b.

Fault injection (``x-test-fail`` header on ``POST /complete``):

- ``status``: respond 503
- ``invalid-json``: respond 200 with a body that is not JSON
- ``slow``: sleep past the gateway's completion timeout before answering
"""

import asyncio
import copy
import random
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.logging import get_logger

MAX_PROMPT_LENGTH = 5000
SLOW_RESPONSE_SECONDS = 2.5

ADAPTER_PROFILES = {
    "adapter-a": {"port": 8081, "version": "1.2.0", "max_tokens": 4096},
    "adapter-b": {"port": 8082, "version": "2.1.0", "max_tokens": 8192},
}


def _timestamp(value: Optional[datetime] = None) -> str:
    value = value or datetime.now(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class MockAdapterServer:
    """Mock completion backend; every instance owns its config and batches."""

    def __init__(self, name: str = "adapter-a", version: str = "1.2.0",
                 max_tokens: int = 4096, chars_per_token: int = 4,
                 slow_seconds: float = SLOW_RESPONSE_SECONDS):
        self.name = name
        self.version = version
        self.max_tokens = max_tokens
        self.chars_per_token = chars_per_token
        self.slow_seconds = slow_seconds
        self.logger = get_logger(f"mock.{name}")
        self.app = FastAPI(title=f"Mock {name}", version=version)

        self._lock = threading.Lock()
        self._start_time = time.time()
        self.request_count = 0
        self.error_count = 0
        self.model_config = {
            "temperature": 0.7,
            "max_tokens": max_tokens,
            "top_p": 0.9,
            "model_type": "transformer",
        }
        self.batches: Dict[str, Dict[str, Any]] = {}

        self._setup_middleware()
        self._setup_routes()

    @property
    def prefix(self) -> str:
        """Completion prefix: ``A`` for adapter-a, ``B`` for adapter-b."""
        return self.name.rsplit("-", 1)[-1].upper()

    def _setup_middleware(self):
        @self.app.middleware("http")
        async def count_requests(request: Request, call_next):
            response = await call_next(request)
            with self._lock:
                self.request_count += 1
                if response.status_code >= 400:
                    self.error_count += 1
            return response

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    def _setup_routes(self):
        """Set up mock adapter routes."""

        @self.app.post("/complete")
        async def complete(request: Request):
            if not request.headers.get("authorization", "").strip():
                raise HTTPException(status_code=401, detail="unauthorized")

            payload = await self._read_json(request, "invalid payload")
            prompt = payload.get("prompt")
            if not isinstance(prompt, str) or not prompt:
                raise HTTPException(status_code=400, detail="invalid payload")
            if len(prompt) > MAX_PROMPT_LENGTH:
                raise HTTPException(status_code=413, detail="prompt too long")

            failure = request.headers.get("x-test-fail", "").strip().lower()
            if failure == "status":
                self.logger.info("Injected failure", mode=failure)
                raise HTTPException(status_code=503, detail="service unavailable")
            if failure == "invalid-json":
                self.logger.info("Injected failure", mode=failure)
                return PlainTextResponse("this is not json", media_type="application/json")
            if failure == "slow":
                self.logger.info("Injected failure", mode=failure, delay=self.slow_seconds)
                await asyncio.sleep(self.slow_seconds)

            return self.completion(prompt)

        @self.app.get("/health")
        async def health():
            return {
                "status": "healthy",
                "service": self.name,
                "timestamp": _timestamp(),
                "uptime": format_uptime(time.time() - self._start_time),
            }

        @self.app.get("/model")
        async def model_info():
            with self._lock:
                config = copy.deepcopy(self.model_config)
            return {
                "name": self.name,
                "version": self.version,
                "type": "text-completion",
                "max_tokens": self.max_tokens,
                "status": "active",
                "capabilities": [
                    "text-completion",
                    "conversation",
                    "code-generation",
                    "summarization",
                ],
                "config": config,
                "supported_features": ["streaming", "batch", "benchmark"],
            }

        @self.app.put("/model/config")
        async def update_model_config(request: Request):
            updates = await self._read_json(request, "invalid configuration")
            with self._lock:
                self.model_config.update(updates)
                config = copy.deepcopy(self.model_config)
            return {"updated_config": config, "applied_at": _timestamp()}

        @self.app.get("/metrics")
        async def metrics():
            uptime = max(time.time() - self._start_time, 1e-6)
            with self._lock:
                count = self.request_count
            return {
                "requests_per_second": count / uptime,
                "average_response_time": 150 + random.randint(0, 49),
                "active_connections": random.randint(0, 49),
                "memory_usage": 256 + random.randint(0, 255),
                "cpu_usage": 15 + random.randint(0, 29),
                "queue_length": random.randint(0, 9),
            }

        @self.app.get("/status")
        async def status():
            with self._lock:
                requests, errors = self.request_count, self.error_count
            return {
                "service_status": {
                    "running": True,
                    "uptime": format_uptime(time.time() - self._start_time),
                },
                "model_status": {"loaded": True, "version": self.version},
                "system_resources": {"cpu_usage": 25, "memory_usage": 512, "disk_usage": 28},
                "performance_metrics": {
                    "average_latency": 150,
                    "p95_latency": 300,
                    "request_count": requests,
                    "error_count": errors,
                },
                "last_request_time": _timestamp(),
            }

        @self.app.post("/batch", status_code=202)
        async def create_batch(request: Request):
            payload = await self._read_json(request, "invalid batch request")
            requests = payload.get("requests")
            if requests is not None and not isinstance(requests, list):
                raise HTTPException(status_code=400, detail="invalid batch request")
            if not requests:
                raise HTTPException(status_code=400, detail="requests array cannot be empty")

            batch_id = f"batch-{int(time.time())}-{random.randint(0, 9999)}"
            created_at = datetime.now(timezone.utc)
            with self._lock:
                self.batches[batch_id] = {"total": len(requests), "created_at": created_at}
            return {
                "batch_id": batch_id,
                "status": "queued",
                "total_requests": len(requests),
                "estimated_completion": "3-8 minutes",
            }

        @self.app.get("/batch/{batch_id}")
        async def get_batch(batch_id: str):
            with self._lock:
                batch = self.batches.get(batch_id)
            if batch is None:
                raise HTTPException(status_code=404, detail="batch not found")
            now = datetime.now(timezone.utc)
            return {
                "batch_id": batch_id,
                "status": "completed",
                "created_at": _timestamp(batch["created_at"]),
                "progress": {"completed": batch["total"], "total": batch["total"], "percentage": 100},
                "results": [
                    {"index": i, "completion": f"{self.prefix}: batch result", "status": "success"}
                    for i in range(batch["total"])
                ],
                "completed_at": _timestamp(max(now, batch["created_at"] + timedelta(seconds=1))),
            }

        @self.app.delete("/batch/{batch_id}")
        async def cancel_batch(batch_id: str):
            with self._lock:
                batch = self.batches.pop(batch_id, None)
            if batch is None:
                raise HTTPException(status_code=404, detail="batch not found")
            return {"batch_id": batch_id, "status": "cancelled"}

    async def _read_json(self, request: Request, message: str) -> Dict[str, Any]:
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail=message)
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail=message)
        return payload

    def completion(self, prompt: str) -> Dict[str, Any]:
        """Build a synthetic completion echoing the prompt."""
        text = f"{self.prefix}: {prompt} [Generated response with {random.randint(20, 119)} chars]"
        return {
            "model": self.name,
            "completion": text,
            "usage": {
                "prompt_tokens": len(prompt) // self.chars_per_token,
                "completion_tokens": len(text) // self.chars_per_token,
                "total_tokens": (len(prompt) + len(text)) // self.chars_per_token,
            },
            "request_id": f"req-{int(time.time())}-{random.randint(0, 9999)}",
            "created_at": _timestamp(),
        }


def create_app(name: str = "adapter-a") -> FastAPI:
    """Create a mock adapter application from one of the known profiles."""
    profile = ADAPTER_PROFILES[name]
    server = MockAdapterServer(name, profile["version"], profile["max_tokens"])
    return server.app


if __name__ == "__main__":
    import uvicorn

    adapter = sys.argv[1] if len(sys.argv) > 1 else "adapter-a"
    if adapter not in ADAPTER_PROFILES:
        raise SystemExit(f"unknown adapter {adapter!r}; expected one of {sorted(ADAPTER_PROFILES)}")
    uvicorn.run(create_app(adapter), host="0.0.0.0", port=ADAPTER_PROFILES[adapter]["port"])
