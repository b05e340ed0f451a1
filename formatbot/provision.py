"""Environment provisioning.

The pipeline does not install toolchains or manage caches itself; it only
requires that, before normalization starts:

- a working tree exists at the exact commit of the admitted event, on the
  event's branch, with enough history to push;
- every tool the normalization steps invoke is on PATH;
- an optional cache directory is usable. A cache that cannot be prepared is
  recorded as a degradation and the run continues cold.

Two provisioners cover the CI case (tree already checked out by the host) and
the standalone case (clone from a remote URL).
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from loguru import logger

from formatbot.exceptions import GitCommandError, ProvisioningError
from formatbot.publish.git import GitRepository
from formatbot.triggers.evaluator import TriggerEvent, normalize_branch


LOCK_FILENAME = "formatbot.lock"


def tree_lock_path(tree: Path) -> Path:
    """Lock file for a working tree: inside .git when it is a directory."""
    git_dir = tree / ".git"
    if git_dir.is_dir():
        return git_dir / LOCK_FILENAME
    return tree.parent / f".{tree.name}.{LOCK_FILENAME}"


@dataclass
class ProvisionedTree:
    """A checked-out working tree ready for normalization."""

    path: Path
    head_sha: str
    branch: str
    cache_dir: Optional[Path] = None
    extra_env: Dict[str, str] = field(default_factory=dict)
    degradations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "path": str(self.path),
            "head_sha": self.head_sha,
            "branch": self.branch,
            "cache_dir": str(self.cache_dir) if self.cache_dir else None,
        }


class Provisioner(Protocol):
    @property
    def lock_path(self) -> Path:
        """Lock file guarding the tree this provisioner hands out."""
        ...

    def provision(self, event: TriggerEvent) -> ProvisionedTree:
        """Return a tree at the event's commit or raise ProvisioningError."""
        ...


def check_required_tools(tools: Sequence[str]) -> None:
    missing = [t for t in tools if shutil.which(t) is None]
    if missing:
        raise ProvisioningError(f"required tool(s) not found on PATH: {', '.join(missing)}")


def prepare_cache(
    cache_dir: Optional[Path],
    cache_env_var: Optional[str],
) -> tuple[Optional[Path], Dict[str, str], List[Dict[str, Any]]]:
    """Create cache_dir if configured. Failure degrades to a cold run."""

    if cache_dir is None:
        return None, {}, []

    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Cache directory {} unavailable, running cold: {}", cache_dir, e)
        degradation = {
            "stage": "provision",
            "reason_code": "cache_unavailable",
            "message": f"cache directory {cache_dir} could not be created; running cold",
            "cache_dir": str(cache_dir),
            "error": f"{type(e).__name__}: {e}",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        return None, {}, [degradation]

    extra_env = {cache_env_var: str(cache_dir)} if cache_env_var else {}
    return cache_dir, extra_env, []


def _ensure_on_branch(git: GitRepository, branch: str, head_sha: str) -> None:
    current = git.current_branch()
    if current == branch:
        return
    if current is None:
        # Detached HEAD at the right commit (common in CI checkouts): attach a local branch.
        git.checkout(head_sha, create_branch=branch)
        return
    raise ProvisioningError(f"working tree is on branch {current!r}, event targets {branch!r}")


class ExistingCheckoutProvisioner:
    """Use a tree the hosting environment already checked out."""

    def __init__(
        self,
        path: str | Path,
        *,
        required_tools: Sequence[str] = (),
        cache_dir: Optional[Path] = None,
        cache_env_var: Optional[str] = None,
    ):
        self.path = Path(path).expanduser().resolve()
        self.required_tools = list(required_tools)
        self.cache_dir = cache_dir
        self.cache_env_var = cache_env_var

    @property
    def lock_path(self) -> Path:
        return tree_lock_path(self.path)

    def provision(self, event: TriggerEvent) -> ProvisionedTree:
        if not self.path.is_dir():
            raise ProvisioningError(f"working tree not found: {self.path}")

        git = GitRepository(self.path)
        if not git.is_work_tree():
            raise ProvisioningError(f"not a git working tree: {self.path}")

        branch = normalize_branch(event.branch)
        try:
            head = git.head_sha()
            if event.sha and head != event.sha:
                raise ProvisioningError(
                    f"working tree HEAD {head[:12]} does not match event commit {event.sha[:12]}"
                )
            _ensure_on_branch(git, branch, head)
            if git.is_shallow():
                logger.warning("Working tree {} is a shallow clone; push may be refused", self.path)
        except GitCommandError as e:
            raise ProvisioningError(f"checkout inspection failed: {e}") from e

        check_required_tools(self.required_tools)
        cache_dir, extra_env, degradations = prepare_cache(self.cache_dir, self.cache_env_var)

        logger.info("Using existing checkout {} at {} ({})", self.path, head[:12], branch)
        return ProvisionedTree(
            path=self.path,
            head_sha=head,
            branch=branch,
            cache_dir=cache_dir,
            extra_env=extra_env,
            degradations=degradations,
        )


class CloneProvisioner:
    """Clone the event's branch from a remote into a fresh directory."""

    def __init__(
        self,
        remote_url: str,
        workdir: str | Path,
        *,
        required_tools: Sequence[str] = (),
        cache_dir: Optional[Path] = None,
        cache_env_var: Optional[str] = None,
    ):
        self.remote_url = remote_url
        self.workdir = Path(workdir).expanduser().resolve()
        self.required_tools = list(required_tools)
        self.cache_dir = cache_dir
        self.cache_env_var = cache_env_var

    @property
    def lock_path(self) -> Path:
        return self.workdir / LOCK_FILENAME

    def provision(self, event: TriggerEvent) -> ProvisionedTree:
        branch = normalize_branch(event.branch)
        dest = self.workdir / "tree"
        if dest.exists() and any(dest.iterdir()):
            raise ProvisioningError(f"clone destination is not empty: {dest}")

        check_required_tools(self.required_tools)

        try:
            git = GitRepository.clone(self.remote_url, dest, branch=branch)
            if event.sha:
                git.checkout(event.sha, create_branch=branch)
            head = git.head_sha()
        except GitCommandError as e:
            raise ProvisioningError(f"clone of {branch} failed: {e}") from e

        cache_dir, extra_env, degradations = prepare_cache(self.cache_dir, self.cache_env_var)

        logger.info("Cloned {} ({}) at {}", self.remote_url, branch, head[:12])
        return ProvisionedTree(
            path=dest,
            head_sha=head,
            branch=branch,
            cache_dir=cache_dir,
            extra_env=extra_env,
            degradations=degradations,
        )
