"""Trigger evaluator.

Pure admission decision for incoming events. A rejected event is a filter
result, not an error: nothing is raised and no run is created.

Policy:
- push events are admitted only for branches in the allow-list
- manual dispatch is admitted for any branch, unless the config sets
  manual_requires_allowed_branch
- every other event kind is rejected
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from formatbot.config import PipelineConfig

_HEADS_PREFIX = "refs/heads/"


class EventKind(str, Enum):
    PUSH = "push"
    MANUAL = "manual"
    UNSUPPORTED = "unsupported"


def normalize_branch(branch: str) -> str:
    """Strip a refs/heads/ prefix and surrounding whitespace."""
    b = (branch or "").strip()
    if b.startswith(_HEADS_PREFIX):
        b = b[len(_HEADS_PREFIX):]
    return b


@dataclass(frozen=True)
class TriggerEvent:
    """An external notification that may start a run. Immutable once received."""

    event_kind: EventKind
    branch: str
    actor: str = "unknown"
    sha: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_kind": self.event_kind.value,
            "branch": self.branch,
            "actor": self.actor,
            "sha": self.sha,
        }


@dataclass(frozen=True)
class Admitted:
    event: TriggerEvent
    branch: str

    admitted = True


@dataclass(frozen=True)
class Rejected:
    event: TriggerEvent
    reason: str

    admitted = False


Decision = Union[Admitted, Rejected]


def evaluate(event: TriggerEvent, config: PipelineConfig) -> Decision:
    """Return Admitted or Rejected for event under config. No side effects."""

    branch = normalize_branch(event.branch)

    if event.event_kind is EventKind.PUSH:
        if branch in config.allowed_branches:
            return Admitted(event=event, branch=branch)
        return Rejected(event=event, reason="branch_not_allowed")

    if event.event_kind is EventKind.MANUAL:
        if config.manual_requires_allowed_branch and branch not in config.allowed_branches:
            return Rejected(event=event, reason="branch_not_allowed")
        return Admitted(event=event, branch=branch)

    return Rejected(event=event, reason="unsupported_event")
