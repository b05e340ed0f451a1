"""Pipeline controller.

Composes trigger evaluation, provisioning, normalization and publishing into
one strictly sequential run:

    IDLE -> ADMITTED -> PROVISIONED -> NORMALIZED -> PUBLISHED | NOOP
                    \\-------------\\------------\\----> FAILED

A filtered event creates no run. A typed error from any step moves the run to
FAILED and the remaining steps are skipped. Nothing is retried here; a retry
is a fresh event.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout
from loguru import logger

from formatbot.config import PipelineConfig
from formatbot.exceptions import FormatbotError
from formatbot.normalize.runner import NormalizationRunner, NormalizedTree
from formatbot.normalize.steps import TOOLCHAIN_CACHE_ENV, required_tools, steps_for_config
from formatbot.pipeline.context import PipelineRun, RunState
from formatbot.provision import CloneProvisioner, ExistingCheckoutProvisioner, ProvisionedTree, Provisioner
from formatbot.publish.publisher import ChangePublisher, Published, PublishResult
from formatbot.tracing import annotate_span, mark_span_failed, step_span
from formatbot.triggers.evaluator import Rejected, TriggerEvent, evaluate


class PipelineController:
    """Run the normalization pipeline for admitted trigger events."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        provisioner: Provisioner,
        runner: NormalizationRunner,
        publisher: ChangePublisher,
    ):
        self.config = config
        self.provisioner = provisioner
        self.runner = runner
        self.publisher = publisher

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        *,
        tree: Optional[str | Path] = None,
        clone_from: Optional[str] = None,
        workdir: Optional[str | Path] = None,
    ) -> "PipelineController":
        """Wire the default collaborators for config.

        Uses an existing checkout at `tree`, or clones `clone_from` into `workdir`.
        """

        steps = steps_for_config(config)
        tools = required_tools(steps)
        cache_env_var = TOOLCHAIN_CACHE_ENV.get(config.toolchain) if not config.steps else None

        provisioner: Provisioner
        if clone_from:
            if workdir is None:
                raise ValueError("workdir is required when cloning")
            provisioner = CloneProvisioner(
                clone_from,
                workdir,
                required_tools=tools,
                cache_dir=config.cache_dir,
                cache_env_var=cache_env_var,
            )
        else:
            provisioner = ExistingCheckoutProvisioner(
                tree or Path.cwd(),
                required_tools=tools,
                cache_dir=config.cache_dir,
                cache_env_var=cache_env_var,
            )

        return cls(
            config,
            provisioner=provisioner,
            runner=NormalizationRunner(steps, timeout_seconds=config.tool_timeout_seconds),
            publisher=ChangePublisher(remote=config.remote),
        )

    def handle(self, event: TriggerEvent) -> Optional[PipelineRun]:
        """Evaluate event and, when admitted, execute one run to a terminal state.

        Returns None for a filtered event (no run is created).
        """

        decision = evaluate(event, self.config)
        if isinstance(decision, Rejected):
            logger.info(
                "Event {} on {!r} filtered ({}); no run",
                event.event_kind.value,
                event.branch,
                decision.reason,
            )
            return None

        run = PipelineRun(event=event)
        run.transition(RunState.ADMITTED)
        logger.info("Run {} admitted for {} on {}", run.run_id, event.event_kind.value, decision.branch)

        with step_span("run", {"formatbot.run_id": run.run_id, "formatbot.branch": decision.branch}) as span:
            try:
                self._execute(run)
            except Exception as e:
                # Controller bug or an untyped collaborator error; surfaced as a failed run.
                logger.exception("Run {} aborted by unexpected error", run.run_id)
                if not run.is_terminal:
                    run.fail("internal", f"{type(e).__name__}: {e}")
            annotate_span(
                span,
                {
                    "formatbot.status": run.status.value,
                    "formatbot.outcome": run.outcome,
                    "formatbot.failure_kind": run.failure_kind,
                },
            )

        if run.succeeded:
            logger.info("Run {} succeeded ({})", run.run_id, run.outcome)
        else:
            logger.error("Run {} failed [{}]: {}", run.run_id, run.failure_kind, "; ".join(run.errors))
        return run

    def _execute(self, run: PipelineRun) -> None:
        lock_path = Path(self.provisioner.lock_path)
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            run.fail("provisioning", f"cannot create lock directory {lock_path.parent}: {e}")
            return

        # Held from provisioning through publish: provisioning may already move HEAD.
        lock = FileLock(str(lock_path), timeout=self.config.lock_timeout_seconds)
        try:
            lock.acquire()
        except Timeout:
            run.fail("provisioning", f"another run holds the lock {lock_path}")
            return

        try:
            tree = self._provision(run)
            if tree is None:
                return
            normalized = self._normalize(run, tree)
            if normalized is None:
                return
            self._publish(run, tree)
        finally:
            lock.release()

    def _provision(self, run: PipelineRun) -> Optional[ProvisionedTree]:
        with step_span("provision") as span:
            try:
                tree = self.provisioner.provision(run.event)
            except FormatbotError as e:
                mark_span_failed(span, e.failure_kind, str(e))
                run.fail(e.failure_kind, str(e))
                return None

        run.working_tree_ref = tree.head_sha
        run.tree_path = tree.path
        run.degradations.extend(tree.degradations)
        run.record_step_result("provision", tree)
        run.transition(RunState.PROVISIONED)
        return tree

    def _normalize(self, run: PipelineRun, tree: ProvisionedTree) -> Optional[NormalizedTree]:
        with step_span("normalize", {"formatbot.tree": str(tree.path)}) as span:
            try:
                normalized = self.runner.run(tree.path, extra_env=tree.extra_env)
            except FormatbotError as e:
                mark_span_failed(span, e.failure_kind, str(e))
                run.fail(e.failure_kind, str(e))
                return None

        run.record_step_result("normalize", normalized)
        run.transition(RunState.NORMALIZED)
        return normalized

    def _publish(self, run: PipelineRun, tree: ProvisionedTree) -> Optional[PublishResult]:
        with step_span("publish", {"formatbot.branch": tree.branch}) as span:
            try:
                result = self.publisher.publish(
                    tree.path,
                    self.config.bot_identity,
                    branch=tree.branch,
                    message=self.config.commit_message,
                    base_sha=tree.head_sha,
                )
            except FormatbotError as e:
                mark_span_failed(span, e.failure_kind, str(e))
                run.fail(e.failure_kind, str(e))
                return None

        run.record_step_result("publish", result)
        if isinstance(result, Published):
            run.published_sha = result.commit_sha
            run.transition(RunState.PUBLISHED)
        else:
            run.transition(RunState.NOOP)
        return result
