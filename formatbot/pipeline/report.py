"""Run report writing and console summary."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

from formatbot.pipeline.context import PipelineRun
from formatbot.utils.schema_validation import validate_run_report


def write_run_report(run: PipelineRun, path: str | Path) -> Path:
    """Validate the run payload and write it as JSON to path."""

    validate_run_report(run.to_payload())
    return run.write_json(path)


def summary_rows(run: Optional[PipelineRun]) -> List[Tuple[str, str]]:
    """Key/value rows describing a run (or a filtered event when run is None)."""

    if run is None:
        return [("status", "filtered"), ("outcome", "no run")]

    rows: List[Tuple[str, str]] = [
        ("run_id", run.run_id),
        ("status", run.status.value),
        ("outcome", run.outcome or "-"),
        ("branch", run.event.branch),
        ("base", (run.working_tree_ref or "-")[:12]),
    ]
    if run.published_sha:
        rows.append(("commit", run.published_sha[:12]))

    normalize = run.step_results.get("normalize") or {}
    changed = normalize.get("changed_paths")
    if isinstance(changed, list):
        rows.append(("changed files", str(len(changed))))

    if run.failure_kind:
        rows.append(("failure", run.failure_kind))
    for err in run.errors:
        rows.append(("error", err))
    for evt in run.degradations:
        rows.append(("degraded", str(evt.get("reason_code"))))
    return rows
