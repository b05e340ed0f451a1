"""Command line entry point.

Exit code behavior:
- 0 when the run published a commit, found nothing to publish, or the event was filtered.
- 1 when the run failed (provisioning, normalization crash, publish race or error).
- 2 for usage, configuration or trigger errors.
"""

from __future__ import annotations

import argparse
import os
import sys
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from formatbot.config import load_pipeline_config
from formatbot.exceptions import ConfigError, GitCommandError, TriggerError
from formatbot.logging_setup import configure_logging
from formatbot.pipeline.context import PipelineRun
from formatbot.pipeline.controller import PipelineController
from formatbot.pipeline.report import summary_rows, write_run_report
from formatbot.publish.git import GitRepository
from formatbot.triggers.evaluator import TriggerEvent
from formatbot.triggers.github import event_from_args, event_from_environment


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="formatbot",
        description="Format and auto-fix a source tree, then commit and push the result if it changed.",
    )
    parser.add_argument("--tree", default=".", help="Checked-out working tree (default: current directory)")
    parser.add_argument(
        "--event",
        choices=["env", "push", "manual"],
        default="env",
        help="Event source: read CI environment variables (default) or build a push/manual event",
    )
    parser.add_argument("--branch", help="Branch for push/manual events")
    parser.add_argument("--sha", help="Commit the event refers to (optional)")
    parser.add_argument("--actor", help="Who triggered the event (optional)")
    parser.add_argument("--config", help="JSON config file (validated against pipeline_config.schema.json)")
    parser.add_argument("--toolchain", choices=["rust", "python"], help="Override the toolchain profile")
    parser.add_argument("--clone-from", help="Clone this remote URL instead of using --tree")
    parser.add_argument("--workdir", help="Directory for --clone-from (default: a temporary directory)")
    parser.add_argument("--report", help="Write the run report JSON to this path")
    parser.add_argument("--log-level", help="Log level (default: FORMATBOT_LOG_LEVEL or INFO)")
    return parser


def _build_event(args: argparse.Namespace) -> TriggerEvent:
    if args.event == "env":
        return event_from_environment(os.environ)
    branch = args.branch
    if not branch and args.event == "manual" and not args.clone_from:
        # No payload: target the branch the tree has checked out.
        branch = _checked_out_branch(args.tree)
    if not branch:
        raise TriggerError(f"--branch is required for --event {args.event}")
    return event_from_args(args.event, branch, actor=args.actor, sha=args.sha)


def _checked_out_branch(tree: str) -> str:
    try:
        branch = GitRepository(Path(tree)).current_branch()
    except GitCommandError as e:
        raise TriggerError(f"cannot read the checked-out branch of {tree}: {e}") from e
    if branch is None:
        raise TriggerError(f"{tree} has a detached HEAD; pass --branch for a manual dispatch")
    return branch


def print_summary(run: Optional[PipelineRun], console: Optional[Console] = None) -> None:
    table = Table(title="formatbot run", show_header=False)
    table.add_column("key", style="bold")
    table.add_column("value")
    for key, value in summary_rows(run):
        table.add_row(key, value)
    (console or Console(stderr=True)).print(table)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        config = load_pipeline_config(args.config)
        if args.toolchain:
            config = replace(config, toolchain=args.toolchain)
        event = _build_event(args)
        workdir = args.workdir
        if args.clone_from and not workdir:
            workdir = tempfile.mkdtemp(prefix="formatbot-")
        controller = PipelineController.from_config(
            config,
            tree=args.tree,
            clone_from=args.clone_from,
            workdir=workdir,
        )
    except (ConfigError, TriggerError) as e:
        logger.error("{}", e)
        return 2

    run = controller.handle(event)
    print_summary(run)

    if run is not None and args.report:
        out = write_run_report(run, args.report)
        logger.info("Run report written to {}", out)

    if run is None or run.succeeded:
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
