"""
In-memory workflow definitions and executions.
"""

import threading
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from shared.errors import NotFoundError, ValidationError

from .common import format_timestamp, new_id, now_iso, page_params, paginate, parse_timestamp, utc_now

TIMEOUT_STEP_ID = "timeout_step"
EXECUTION_TIMEOUT = timedelta(milliseconds=1500)


class WorkflowStep(BaseModel):
    id: str = ""
    name: str = ""
    type: str = ""
    depends_on: List[str] = Field(default_factory=list)


class Workflow(BaseModel):
    id: str
    name: str
    description: str = ""
    steps: List[WorkflowStep]
    metadata: Optional[Dict[str, Any]] = None
    status: str = "draft"
    created_at: str
    updated_at: str
    execution_history: List[Dict[str, Any]] = Field(default_factory=list)
    current_step: str = ""

    def first_step(self) -> str:
        """First step without dependencies, else the first step."""
        for step in self.steps:
            if not step.depends_on:
                return step.id
        return self.steps[0].id if self.steps else ""

    def has_step(self, step_id: str) -> bool:
        return any(step.id == step_id for step in self.steps)


class WorkflowExecution(BaseModel):
    execution_id: str
    workflow_id: str
    status: str = "started"
    current_step: str = ""
    started_at: str
    triggered_by: str = ""
    history: List[Dict[str, Any]] = Field(default_factory=list)


class WorkflowCreate(BaseModel):
    id: str = ""
    name: str = ""
    description: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


class WorkflowPatch(BaseModel):
    """Explicit optional fields; ``None`` means "leave unchanged"."""

    name: Optional[str] = None
    description: Optional[str] = None
    steps: Optional[List[WorkflowStep]] = None
    metadata: Optional[Dict[str, Any]] = None


def validate_steps(steps: List[WorkflowStep]) -> None:
    """Require id/name/type, unique ids and an acyclic ``depends_on`` graph."""
    if not steps:
        raise ValidationError("steps must not be empty")

    graph: Dict[str, List[str]] = {}
    for step in steps:
        if not step.id.strip() or not step.name.strip() or not step.type.strip():
            raise ValidationError("step missing required fields")
        if step.id in graph:
            raise ValidationError("duplicate step id")
        graph[step.id] = list(step.depends_on)

    # 1 = on the current path, 2 = fully explored
    state: Dict[str, int] = {}

    def visit(node: str) -> bool:
        mark = state.get(node)
        if mark == 1:
            return True
        if mark == 2:
            return False
        state[node] = 1
        if any(visit(dep) for dep in graph.get(node, ())):
            return True
        state[node] = 2
        return False

    for node in graph:
        if visit(node):
            raise ValidationError("circular dependency detected")


class WorkflowStore:
    """Workflow definitions plus the latest execution per workflow."""

    def __init__(self, clock=utc_now):
        self._lock = threading.RLock()
        self._workflows: Dict[str, Workflow] = {}
        self._executions: Dict[str, WorkflowExecution] = {}
        self._clock = clock

    def list(self, *, name: Optional[str] = None, status: Optional[str] = None,
             sort_by: str = "created_at", order: str = "desc",
             page: Any = None, limit: Any = None) -> Dict[str, Any]:
        name = (name or "").strip().lower()
        status = (status or "").strip().lower()
        page_number, page_size = page_params(page, limit, default_limit=10)

        with self._lock:
            items = [
                wf for wf in self._workflows.values()
                if (not name or name in wf.name.lower())
                and (not status or wf.status.lower() == status)
            ]

        descending = (order or "desc").lower() != "asc"
        if sort_by == "name":
            items.sort(key=lambda wf: wf.name, reverse=descending)
        else:
            items.sort(key=lambda wf: wf.created_at, reverse=descending)

        return {
            "workflows": [wf.model_dump(exclude_none=True) for wf in paginate(items, page_number, page_size)],
            "total": len(items),
            "page": page_number,
            "limit": page_size,
        }

    def create(self, request: WorkflowCreate) -> Workflow:
        if not request.name.strip():
            raise ValidationError("name is required")
        if not request.steps:
            raise ValidationError("steps must not be empty")
        validate_steps(request.steps)

        now = format_timestamp(self._clock())
        workflow = Workflow(
            id=request.id or new_id("wf"),
            name=request.name,
            description=request.description,
            steps=request.steps,
            metadata=request.metadata,
            status="draft",
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._workflows[workflow.id] = workflow
        return workflow

    def get(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError("workflow not found")
        return workflow

    def update(self, workflow_id: str, patch: WorkflowPatch) -> Workflow:
        changes: Dict[str, Any] = {}
        if patch.name is not None:
            if not patch.name.strip():
                raise ValidationError("name is required")
            changes["name"] = patch.name
        if patch.description is not None:
            changes["description"] = patch.description
        if patch.steps is not None:
            validate_steps(patch.steps)
            changes["steps"] = patch.steps
        if patch.metadata is not None:
            changes["metadata"] = patch.metadata

        with self._lock:
            current = self.get(workflow_id)
            changes["updated_at"] = format_timestamp(self._clock())
            updated = current.model_copy(update=changes)
            self._workflows[workflow_id] = updated
        return updated

    def execute(self, workflow_id: str, triggered_by: str = "") -> WorkflowExecution:
        with self._lock:
            workflow = self.get(workflow_id)
            started = self._clock()
            execution = WorkflowExecution(
                execution_id="exec-" + started.strftime("%Y%m%dT%H%M%SZ"),
                workflow_id=workflow_id,
                status="started",
                current_step=workflow.first_step(),
                started_at=format_timestamp(started, precise=True),
                triggered_by=triggered_by,
            )
            self._executions[workflow_id] = execution
        return execution

    def status(self, workflow_id: str) -> Dict[str, Any]:
        """Status of the latest execution, flipping to ``timeout`` for timeout drills."""
        with self._lock:
            execution = self._execution(workflow_id)
            workflow = self._workflows.get(workflow_id)
            now = self._clock()

            if workflow is not None and workflow.has_step(TIMEOUT_STEP_ID):
                started = parse_timestamp(execution.started_at)
                if started is not None and now - started > EXECUTION_TIMEOUT:
                    execution = execution.model_copy(update={"status": "timeout"})
                    self._executions[workflow_id] = execution

            total_steps = len(workflow.steps) if workflow is not None else 0

        return {
            "workflow_id": workflow_id,
            "status": execution.status,
            "current_step": execution.current_step,
            "progress": "0%",
            "execution_history": execution.history,
            "next_actions": ["continue", "pause"],
            "total_steps": total_steps,
            "started_at": execution.started_at,
            "estimated_completion": format_timestamp(now + timedelta(minutes=5)),
        }

    def approve(self, workflow_id: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        approver, decision, comments = _decision_fields(payload, "invalid approval data")
        if not approver.strip():
            raise ValidationError("approver is required")
        if decision.lower() != "approved":
            raise ValidationError("decision invalid")
        with self._lock:
            self._execution(workflow_id)
        return {
            "workflow_id": workflow_id,
            "approver": approver,
            "decision": "approved",
            "comments": comments,
            "next_step": "proceed",
            "updated_status": "in_progress",
        }

    def reject(self, workflow_id: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        approver, decision, comments = _decision_fields(payload, "invalid rejection data")
        reason = payload.get("reason") or ""
        if decision.lower() != "rejected":
            raise ValidationError("decision invalid")
        with self._lock:
            self._execution(workflow_id)
        return {
            "workflow_id": workflow_id,
            "approver": approver,
            "decision": "rejected",
            "comments": comments,
            "reason": reason,
            "workflow_status": "waiting_correction",
        }

    def _execution(self, workflow_id: str) -> WorkflowExecution:
        execution = self._executions.get(workflow_id)
        if execution is None:
            raise NotFoundError("no execution found")
        return execution


def _decision_fields(payload: Mapping[str, Any], invalid_message: str) -> Tuple[str, str, str]:
    values = []
    for key in ("approver", "decision", "comments"):
        value = payload.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValidationError(invalid_message)
        values.append(value)
    return values[0], values[1], values[2]
