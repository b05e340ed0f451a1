"""Trigger evaluation: decide whether an incoming event starts a pipeline run."""

from .evaluator import Admitted, EventKind, Rejected, TriggerEvent, evaluate, normalize_branch
from .github import event_from_args, event_from_environment

__all__ = [
    "Admitted",
    "EventKind",
    "Rejected",
    "TriggerEvent",
    "evaluate",
    "normalize_branch",
    "event_from_args",
    "event_from_environment",
]
