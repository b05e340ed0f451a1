"""Pipeline run record.

This module defines the serializable state object owned by the controller for
the duration of one run.

It stores only stable primitives so the final report can be written as JSON
and validated against run_report.schema.json.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from formatbot.triggers.evaluator import TriggerEvent


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunState(str, Enum):
    IDLE = "idle"
    ADMITTED = "admitted"
    PROVISIONED = "provisioned"
    NORMALIZED = "normalized"
    PUBLISHED = "published"
    NOOP = "noop"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RunState.PUBLISHED, RunState.NOOP, RunState.FAILED})

# Strictly sequential; FAILED is reachable from every non-terminal state.
_NEXT_STATE = {
    RunState.IDLE: {RunState.ADMITTED},
    RunState.ADMITTED: {RunState.PROVISIONED},
    RunState.PROVISIONED: {RunState.NORMALIZED},
    RunState.NORMALIZED: {RunState.PUBLISHED, RunState.NOOP},
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PipelineRun:
    """State of one admitted pipeline run."""

    event: TriggerEvent
    run_id: str = field(default_factory=lambda: uuid4().hex)
    started_at: str = field(default_factory=_utc_now_iso)
    finished_at: Optional[str] = None

    status: RunStatus = RunStatus.PENDING
    state: RunState = RunState.IDLE
    transitions: List[Dict[str, str]] = field(default_factory=list)

    working_tree_ref: Optional[str] = None
    tree_path: Optional[Path] = None
    outcome: Optional[str] = None
    published_sha: Optional[str] = None
    failure_kind: Optional[str] = None

    errors: List[str] = field(default_factory=list)
    step_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    degradations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: RunState) -> None:
        """Move to new_state, enforcing the sequential state machine."""

        if self.is_terminal:
            raise InvalidTransition(f"run {self.run_id} already terminal ({self.state.value})")
        if new_state is not RunState.FAILED and new_state not in _NEXT_STATE.get(self.state, set()):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value} is not allowed")

        self.state = new_state
        self.transitions.append({"state": new_state.value, "at": _utc_now_iso()})

        if new_state is RunState.ADMITTED:
            self.status = RunStatus.RUNNING
        elif new_state in (RunState.PUBLISHED, RunState.NOOP):
            self.status = RunStatus.SUCCEEDED
            self.outcome = new_state.value
            self.finished_at = _utc_now_iso()
        elif new_state is RunState.FAILED:
            self.status = RunStatus.FAILED
            self.finished_at = _utc_now_iso()

    def fail(self, failure_kind: str, message: str) -> None:
        self.failure_kind = failure_kind
        if message.strip():
            self.errors.append(message)
        self.transition(RunState.FAILED)

    def record_step_result(self, step: str, result: Any) -> None:
        payload: Dict[str, Any]

        if hasattr(result, "to_dict") and callable(getattr(result, "to_dict")):
            payload = result.to_dict()
        elif isinstance(result, dict):
            payload = dict(result)
        else:
            payload = {
                "success": bool(getattr(result, "success", False)),
                "repr": repr(result),
            }

        self.step_results[step] = payload

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": "1.0",
            "run_id": self.run_id,
            "status": self.status.value,
            "state": self.state.value,
            "outcome": self.outcome,
            "failure_kind": self.failure_kind,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "working_tree_ref": self.working_tree_ref,
            "published_sha": self.published_sha,
            "tree_path": str(self.tree_path) if self.tree_path else None,
            "event": self.event.to_dict(),
            "transitions": list(self.transitions),
            "step_results": dict(self.step_results),
            "errors": list(self.errors),
            "degradations": list(self.degradations),
            "degradation_counts": dict(Counter(str(d.get("reason_code")) for d in self.degradations)),
        }

    def write_json(self, path: str | Path) -> Path:
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_payload(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return path
