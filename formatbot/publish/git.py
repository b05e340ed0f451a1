"""
Git Command Wrapper
===================
Thin subprocess wrapper around the git CLI for one working tree.

All git invocations of the pipeline go through GitRepository so they share one
environment policy, one timeout policy and one error type.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from formatbot.config import TIMEOUTS, BotIdentity
from formatbot.exceptions import GitCommandError
from formatbot.utils.subprocess_env import build_tool_subprocess_env
from formatbot.utils.subprocess_text import to_text


@dataclass(frozen=True)
class GitResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class PushRefStatus:
    """One ref line of `git push --porcelain` output."""

    flag: str
    source: str
    destination: str
    summary: str

    @property
    def rejected(self) -> bool:
        return self.flag == "!"

    @property
    def up_to_date(self) -> bool:
        return self.flag == "="


def parse_push_porcelain(stdout: str) -> List[PushRefStatus]:
    """Parse ref status lines of `git push --porcelain`.

    Ref lines look like `<flag>\\t<from>:<to>\\t<summary>`; the To/Done
    lines are skipped.
    """

    out: List[PushRefStatus] = []
    for line in (stdout or "").splitlines():
        if not line or line.startswith("To ") or line == "Done":
            continue
        parts = line.split("\t")
        if len(parts) < 3 or len(parts[0]) != 1:
            continue
        flag, refspec, summary = parts[0], parts[1], parts[2]
        src, _, dst = refspec.partition(":")
        out.append(PushRefStatus(flag=flag, source=src, destination=dst, summary=summary.strip()))
    return out


def parse_porcelain_status(stdout: str) -> List[str]:
    """Return the paths listed by `git status --porcelain` (renames give the new path)."""

    paths: List[str] = []
    for line in (stdout or "").splitlines():
        if len(line) < 4:
            continue
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        paths.append(path.strip('"'))
    return paths


class GitRepository:
    """Run git commands inside one working tree."""

    def __init__(
        self,
        path: str | Path,
        *,
        git_executable: str = "git",
        extra_env: Optional[Dict[str, str]] = None,
        local_timeout: int = TIMEOUTS.GIT_LOCAL,
        network_timeout: int = TIMEOUTS.GIT_NETWORK,
    ):
        self.path = Path(path).expanduser().resolve()
        self.git_executable = git_executable
        self.extra_env = dict(extra_env or {})
        self.local_timeout = local_timeout
        self.network_timeout = network_timeout

    def run(
        self,
        *args: str,
        check: bool = True,
        network: bool = False,
        config: Optional[Dict[str, str]] = None,
    ) -> GitResult:
        """Run `git <args>` in the working tree.

        Args:
            args: git arguments.
            check: Raise GitCommandError on a non-zero exit.
            network: Use the network timeout instead of the local one.
            config: One-off `-c key=value` settings for this invocation.

        Raises:
            GitCommandError: On non-zero exit (when check), timeout, or a missing git binary.
        """

        argv: List[str] = [self.git_executable]
        for key, value in (config or {}).items():
            argv.extend(["-c", f"{key}={value}"])
        argv.extend(args)

        timeout = self.network_timeout if network else self.local_timeout
        env = build_tool_subprocess_env(extra=self.extra_env)

        logger.debug("git: {}", " ".join(argv[1:]))
        try:
            proc = subprocess.run(
                argv,
                cwd=str(self.path),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(argv, -1, to_text(e.stdout), f"timed out after {timeout} seconds") from e
        except OSError as e:
            raise GitCommandError(argv, -1, "", f"{type(e).__name__}: {e}") from e

        result = GitResult(argv=argv, returncode=int(proc.returncode), stdout=proc.stdout or "", stderr=proc.stderr or "")
        if check and not result.ok:
            raise GitCommandError(argv, result.returncode, result.stdout, result.stderr)
        return result

    # Queries

    def is_work_tree(self) -> bool:
        try:
            res = self.run("rev-parse", "--is-inside-work-tree", check=False)
        except GitCommandError:
            return False
        return res.ok and res.stdout.strip() == "true"

    def head_sha(self) -> str:
        return self.run("rev-parse", "HEAD").stdout.strip()

    def current_branch(self) -> Optional[str]:
        """Return the checked-out branch name, or None when HEAD is detached."""
        res = self.run("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        name = res.stdout.strip()
        return name if res.ok and name else None

    def is_shallow(self) -> bool:
        res = self.run("rev-parse", "--is-shallow-repository", check=False)
        return res.ok and res.stdout.strip() == "true"

    def status_paths(self) -> List[str]:
        """Paths that differ from HEAD, including untracked files (ignores .gitignore'd ones)."""
        res = self.run("status", "--porcelain", "--untracked-files=all")
        return parse_porcelain_status(res.stdout)

    def commit_identity(self, rev: str = "HEAD") -> Dict[str, str]:
        fmt = "%an%x00%ae%x00%cn%x00%ce%x00%s%x00%P"
        fields = self.run("log", "-1", f"--format={fmt}", rev).stdout.rstrip("\n").split("\x00")
        keys = ["author_name", "author_email", "committer_name", "committer_email", "subject", "parents"]
        return dict(zip(keys, fields))

    # Mutations

    def checkout(self, ref: str, *, create_branch: Optional[str] = None) -> None:
        if create_branch:
            self.run("checkout", "-B", create_branch, ref)
        else:
            self.run("checkout", ref)

    def add_all(self) -> None:
        self.run("add", "--all", ".")

    def reset_index(self) -> None:
        self.run("reset", "--quiet")

    def commit(self, message: str, identity: BotIdentity, *, allow_empty: bool = True) -> str:
        """Commit the index with identity as both author and committer; return the new sha."""

        args = ["commit", "--no-verify", "--author", identity.as_author(), "-m", message]
        if allow_empty:
            args.insert(1, "--allow-empty")
        self.run(
            *args,
            config={
                "user.name": identity.name,
                "user.email": identity.email,
                "commit.gpgsign": "false",
            },
        )
        return self.head_sha()

    def push(self, remote: str, branch: str, *, expected_sha: Optional[str] = None) -> GitResult:
        """Push HEAD to branch; the caller interprets ref status from the porcelain output.

        With expected_sha the remote only accepts the update while the branch
        still points at expected_sha (`--force-with-lease`).
        """
        args = ["push", "--porcelain"]
        if expected_sha:
            args.append(f"--force-with-lease=refs/heads/{branch}:{expected_sha}")
        args.extend([remote, f"HEAD:refs/heads/{branch}"])
        return self.run(*args, check=False, network=True)

    @classmethod
    def clone(
        cls,
        remote_url: str,
        dest: str | Path,
        *,
        branch: str,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> "GitRepository":
        """Clone branch with full history into dest and return a repository for it."""

        dest_path = Path(dest).expanduser().resolve()
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        launcher = cls(dest_path.parent, extra_env=extra_env)
        launcher.run(
            "clone",
            "--branch",
            branch,
            "--single-branch",
            "--no-tags",
            remote_url,
            str(dest_path),
            network=True,
        )
        return cls(dest_path, extra_env=extra_env)
