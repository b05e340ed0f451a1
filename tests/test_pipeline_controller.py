from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from formatbot.config import PipelineConfig
from formatbot.exceptions import NormalizationCrash, ProvisioningError, PublishError, PublishRejected
from formatbot.normalize.runner import NormalizedTree
from formatbot.pipeline.context import RunState, RunStatus
from formatbot.pipeline.controller import PipelineController
from formatbot.provision import ProvisionedTree, tree_lock_path
from formatbot.publish.publisher import NoOp, Published
from formatbot.triggers.evaluator import EventKind, TriggerEvent

BASE = "c0" * 20
NEW = "c1" * 20


def _event(kind: EventKind = EventKind.PUSH, branch: str = "develop") -> TriggerEvent:
    return TriggerEvent(event_kind=kind, branch=branch, actor="dev", sha=BASE)


def _controller(tmp_path: Path, publish_result=None, publish_error=None, provision_error=None, normalize_error=None):
    tree = tmp_path / "tree"
    tree.mkdir(exist_ok=True)

    provisioner = MagicMock()
    provisioner.lock_path = tree_lock_path(tree)
    if provision_error is not None:
        provisioner.provision.side_effect = provision_error
    else:
        provisioner.provision.return_value = ProvisionedTree(path=tree, head_sha=BASE, branch="develop")

    runner = MagicMock()
    if normalize_error is not None:
        runner.run.side_effect = normalize_error
    else:
        runner.run.return_value = NormalizedTree(path=tree)

    publisher = MagicMock()
    if publish_error is not None:
        publisher.publish.side_effect = publish_error
    else:
        publisher.publish.return_value = publish_result or NoOp(head_sha=BASE, branch="develop")

    controller = PipelineController(
        PipelineConfig(lock_timeout_seconds=1),
        provisioner=provisioner,
        runner=runner,
        publisher=publisher,
    )
    return controller, provisioner, runner, publisher


def _states(run):
    return [t["state"] for t in run.transitions]


@pytest.mark.unit
def test_filtered_event_creates_no_run_and_runs_no_step(tmp_path):
    controller, provisioner, runner, publisher = _controller(tmp_path)

    run = controller.handle(_event(branch="main"))

    assert run is None
    provisioner.provision.assert_not_called()
    runner.run.assert_not_called()
    publisher.publish.assert_not_called()


@pytest.mark.unit
def test_published_run_walks_every_state(tmp_path):
    published = Published(commit_sha=NEW, parent_sha=BASE, branch="develop", message="format by actions")
    controller, _, runner, publisher = _controller(tmp_path, publish_result=published)

    run = controller.handle(_event())

    assert run is not None
    assert run.status is RunStatus.SUCCEEDED
    assert run.state is RunState.PUBLISHED
    assert run.outcome == "published"
    assert run.published_sha == NEW
    assert run.working_tree_ref == BASE
    assert _states(run) == ["admitted", "provisioned", "normalized", "published"]

    runner.run.assert_called_once()
    kwargs = publisher.publish.call_args.kwargs
    assert kwargs["branch"] == "develop"
    assert kwargs["message"] == "format by actions"
    assert kwargs["base_sha"] == BASE
    assert publisher.publish.call_args.args[1] == PipelineConfig().bot_identity


@pytest.mark.unit
def test_noop_is_a_success(tmp_path):
    controller, *_ = _controller(tmp_path)

    run = controller.handle(_event())

    assert run.succeeded is True
    assert run.state is RunState.NOOP
    assert run.outcome == "noop"
    assert run.published_sha is None
    assert _states(run) == ["admitted", "provisioned", "normalized", "noop"]


@pytest.mark.unit
def test_manual_event_on_any_branch_runs(tmp_path):
    controller, provisioner, *_ = _controller(tmp_path)
    run = controller.handle(_event(kind=EventKind.MANUAL, branch="feature/x"))
    assert run is not None
    provisioner.provision.assert_called_once()


@pytest.mark.unit
def test_provisioning_failure_stops_before_normalization(tmp_path):
    controller, _, runner, publisher = _controller(tmp_path, provision_error=ProvisioningError("cargo missing"))

    run = controller.handle(_event())

    assert run.status is RunStatus.FAILED
    assert run.failure_kind == "provisioning"
    assert _states(run) == ["admitted", "failed"]
    assert any("cargo missing" in e for e in run.errors)
    runner.run.assert_not_called()
    publisher.publish.assert_not_called()


@pytest.mark.unit
def test_normalization_crash_stops_before_publish(tmp_path):
    controller, _, _, publisher = _controller(
        tmp_path, normalize_error=NormalizationCrash("cargo clippy --fix", "exited with code 101", 101)
    )

    run = controller.handle(_event())

    assert run.status is RunStatus.FAILED
    assert run.failure_kind == "normalization"
    assert _states(run) == ["admitted", "provisioned", "failed"]
    publisher.publish.assert_not_called()


@pytest.mark.unit
def test_publish_race_is_distinct_failure(tmp_path):
    controller, *_ = _controller(tmp_path, publish_error=PublishRejected("develop", BASE, NEW, "fetch first"))

    run = controller.handle(_event())

    assert run.status is RunStatus.FAILED
    assert run.failure_kind == "publish_race"
    assert _states(run) == ["admitted", "provisioned", "normalized", "failed"]


@pytest.mark.unit
def test_other_publish_error(tmp_path):
    controller, *_ = _controller(tmp_path, publish_error=PublishError("commit failed"))
    run = controller.handle(_event())
    assert run.failure_kind == "publish"


@pytest.mark.unit
def test_unexpected_error_becomes_internal_failure(tmp_path):
    controller, *_ = _controller(tmp_path, normalize_error=RuntimeError("boom"))

    run = controller.handle(_event())

    assert run.status is RunStatus.FAILED
    assert run.failure_kind == "internal"
    assert any("RuntimeError: boom" in e for e in run.errors)


@pytest.mark.unit
def test_no_internal_retry(tmp_path):
    controller, _, _, publisher = _controller(tmp_path, publish_error=PublishRejected("develop", BASE, NEW))
    controller.handle(_event())
    assert publisher.publish.call_count == 1


@pytest.mark.unit
def test_tree_lock_held_by_another_run_fails_provisioning(tmp_path):
    from filelock import FileLock

    controller, provisioner, runner, _ = _controller(tmp_path)
    lock = FileLock(str(tree_lock_path(tmp_path / "tree")))
    with lock:
        run = controller.handle(_event())

    assert run.failure_kind == "provisioning"
    assert "another run holds the lock" in run.errors[0]
    assert _states(run) == ["admitted", "failed"]
    provisioner.provision.assert_not_called()
    runner.run.assert_not_called()


@pytest.mark.unit
def test_tree_lock_is_held_while_provisioning(tmp_path):
    from filelock import FileLock, Timeout

    controller, provisioner, _, _ = _controller(tmp_path)
    tree = tmp_path / "tree"
    seen = []

    def provision(event):
        with pytest.raises(Timeout):
            FileLock(str(tree_lock_path(tree)), timeout=0).acquire()
        seen.append(event)
        return ProvisionedTree(path=tree, head_sha=BASE, branch="develop")

    provisioner.provision.side_effect = provision

    run = controller.handle(_event())

    assert len(seen) == 1
    assert run.succeeded


@pytest.mark.unit
def test_tree_lock_path_prefers_git_dir(tmp_path):
    (tmp_path / "repo" / ".git").mkdir(parents=True)
    assert tree_lock_path(tmp_path / "repo") == tmp_path / "repo" / ".git" / "formatbot.lock"
    (tmp_path / "plain").mkdir()
    assert tree_lock_path(tmp_path / "plain") == tmp_path / ".plain.formatbot.lock"


@pytest.mark.unit
def test_failed_step_marks_its_span(tmp_path, monkeypatch):
    import formatbot.pipeline.controller as controller_module

    marked = MagicMock()
    monkeypatch.setattr(controller_module, "mark_span_failed", marked)
    crash = NormalizationCrash("ruff check --fix", "exited with code 2", 2)
    controller, _, _, _ = _controller(tmp_path, normalize_error=crash)

    run = controller.handle(_event())

    assert run.failure_kind == "normalization"
    marked.assert_called_once()
    _span, kind, message = marked.call_args.args
    assert kind == "normalization"
    assert message == run.errors[0]
