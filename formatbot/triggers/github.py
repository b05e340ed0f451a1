"""Build trigger events from a CI environment or from command line values.

The CI mapping follows the GitHub Actions runner variables:
GITHUB_EVENT_NAME ("push" or "workflow_dispatch"), GITHUB_REF_NAME /
GITHUB_REF, GITHUB_ACTOR and GITHUB_SHA.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from formatbot.exceptions import TriggerError
from formatbot.triggers.evaluator import EventKind, TriggerEvent, normalize_branch

_EVENT_NAMES = {
    "push": EventKind.PUSH,
    "workflow_dispatch": EventKind.MANUAL,
    "manual": EventKind.MANUAL,
}


def _kind_from_name(name: str) -> EventKind:
    return _EVENT_NAMES.get((name or "").strip().lower(), EventKind.UNSUPPORTED)


def event_from_environment(environ: Optional[Mapping[str, str]] = None) -> TriggerEvent:
    """Build a TriggerEvent from CI runner environment variables.

    Unknown event names map to EventKind.UNSUPPORTED so the evaluator can
    filter them.

    Raises:
        TriggerError: When no event name or no branch can be determined.
    """

    env = os.environ if environ is None else environ

    event_name = env.get("GITHUB_EVENT_NAME", "")
    if not event_name.strip():
        raise TriggerError("GITHUB_EVENT_NAME is not set; not running inside a CI event")

    branch = env.get("GITHUB_REF_NAME") or ""
    if not branch.strip():
        ref = env.get("GITHUB_REF") or ""
        if ref and not ref.startswith("refs/heads/"):
            raise TriggerError(f"GITHUB_REF does not name a branch: {ref}")
        branch = ref
    branch = normalize_branch(branch)
    if not branch:
        raise TriggerError("Cannot determine branch from GITHUB_REF_NAME or GITHUB_REF")

    sha = (env.get("GITHUB_SHA") or "").strip() or None

    return TriggerEvent(
        event_kind=_kind_from_name(event_name),
        branch=branch,
        actor=(env.get("GITHUB_ACTOR") or "unknown").strip() or "unknown",
        sha=sha,
    )


def event_from_args(
    kind: str,
    branch: str,
    *,
    actor: Optional[str] = None,
    sha: Optional[str] = None,
) -> TriggerEvent:
    """Build a TriggerEvent from explicit values (CLI, tests)."""

    b = normalize_branch(branch)
    if not b:
        raise TriggerError("branch is required")

    return TriggerEvent(
        event_kind=_kind_from_name(kind),
        branch=b,
        actor=(actor or os.getenv("USER") or "unknown"),
        sha=(sha or None),
    )
