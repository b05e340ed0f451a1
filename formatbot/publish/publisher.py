"""Change publisher.

Detect -> Stage -> Commit -> Push for one normalized working tree.

Terminal results:
- NoOp: the tree matches HEAD; nothing is committed or pushed.
- Published: exactly one commit, authored and committed by the bot identity,
  pushed to the originating branch.
- PublishRejected (raised): the remote branch no longer points at the run's base
  commit (push uses --force-with-lease against it). Not retried.
- PublishError (raised): any other git failure.

Staging and committing behave as one unit: if the commit fails, the index is
reset before the error propagates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from formatbot.config import BotIdentity
from formatbot.exceptions import GitCommandError, PublishError, PublishRejected
from formatbot.publish.git import GitRepository, parse_push_porcelain
from formatbot.tracing import annotate_current_span

_REJECTION_MARKERS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "stale info",
    "Updates were rejected",
)


@dataclass(frozen=True)
class Published:
    commit_sha: str
    parent_sha: str
    branch: str
    message: str
    changed_paths: List[str] = field(default_factory=list)

    outcome = "published"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "outcome": self.outcome,
            "commit_sha": self.commit_sha,
            "parent_sha": self.parent_sha,
            "branch": self.branch,
            "message": self.message,
            "changed_paths": list(self.changed_paths),
        }


@dataclass(frozen=True)
class NoOp:
    head_sha: str
    branch: str

    outcome = "noop"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "outcome": self.outcome,
            "head_sha": self.head_sha,
            "branch": self.branch,
        }


PublishResult = Union[Published, NoOp]


class ChangePublisher:
    """Commit and push a changed working tree under a fixed bot identity."""

    def __init__(
        self,
        *,
        remote: str = "origin",
        git_factory: Callable[[Path], GitRepository] = GitRepository,
    ):
        self.remote = remote
        self.git_factory = git_factory

    def publish(
        self,
        tree: str | Path,
        identity: BotIdentity,
        *,
        branch: str,
        message: str,
        base_sha: Optional[str] = None,
    ) -> PublishResult:
        """Publish the working tree at `tree` to `branch`.

        Args:
            tree: Working tree path.
            identity: Author and committer of the commit.
            branch: Branch the triggering event originated from.
            message: Commit message.
            base_sha: Revision the run started from; defaults to the current HEAD.

        Raises:
            PublishRejected: The remote branch moved away from base_sha.
            PublishError: Any other git failure.
        """

        git = self.git_factory(Path(tree))

        try:
            base = base_sha or git.head_sha()
            changed = git.status_paths()
        except GitCommandError as e:
            raise PublishError(f"change detection failed: {e}") from e

        if not changed:
            logger.info("Working tree is clean; nothing to publish on {}", branch)
            annotate_current_span({"formatbot.publish.outcome": "noop"})
            return NoOp(head_sha=base, branch=branch)

        logger.info("Publishing {} changed path(s) to {}", len(changed), branch)
        commit_sha = self._stage_and_commit(git, identity, message)
        self._push(git, branch=branch, base_sha=base, commit_sha=commit_sha)

        annotate_current_span(
            {
                "formatbot.publish.outcome": "published",
                "formatbot.publish.commit": commit_sha,
                "formatbot.publish.changed_count": len(changed),
            }
        )
        logger.info("Pushed {} to {}/{}", commit_sha[:12], self.remote, branch)
        return Published(
            commit_sha=commit_sha,
            parent_sha=base,
            branch=branch,
            message=message,
            changed_paths=sorted(changed),
        )

    def _stage_and_commit(self, git: GitRepository, identity: BotIdentity, message: str) -> str:
        try:
            git.add_all()
            # Detection is best effort against a moving tree; the commit
            # tolerates an empty index instead of failing.
            return git.commit(message, identity, allow_empty=True)
        except GitCommandError as e:
            try:
                git.reset_index()
            except GitCommandError as reset_err:
                logger.warning("Failed to reset index after commit failure: {}", reset_err)
            raise PublishError(f"commit failed: {e}") from e

    def _push(self, git: GitRepository, *, branch: str, base_sha: str, commit_sha: str) -> None:
        try:
            res = git.push(self.remote, branch, expected_sha=base_sha)
        except GitCommandError as e:
            raise PublishError(f"push failed: {e}") from e

        statuses = parse_push_porcelain(res.stdout)
        rejected = [s for s in statuses if s.rejected]
        if rejected:
            raise PublishRejected(branch, base_sha, commit_sha, detail=rejected[0].summary)

        # An identical commit already on the remote was not advanced by this run.
        if any(s.up_to_date for s in statuses):
            raise PublishRejected(branch, base_sha, commit_sha, detail="remote already at commit")

        if res.ok:
            return

        stderr = res.stderr or ""
        if any(marker in stderr for marker in _REJECTION_MARKERS):
            raise PublishRejected(branch, base_sha, commit_sha, detail=stderr.strip().splitlines()[-1])

        raise PublishError(str(GitCommandError(res.argv, res.returncode, res.stdout, res.stderr)))
