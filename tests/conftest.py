"""Shared fixtures: throwaway git repositories with a bare remote, and a
deterministic whitespace-stripping formatter used in place of a real toolchain.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import pytest

from formatbot.config import PipelineConfig, StepSpec

BRANCH = "develop"

_GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Dev",
    "GIT_AUTHOR_EMAIL": "dev@example.com",
    "GIT_COMMITTER_NAME": "Test Dev",
    "GIT_COMMITTER_EMAIL": "dev@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd: Path, *args: str) -> str:
    env = {**os.environ, **_GIT_ENV}
    proc = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", "-c", "init.defaultBranch=main", *args],
        cwd=str(cwd),
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return proc.stdout.strip()


@dataclass
class RemoteRepo:
    root: Path
    remote: Path

    def clone(self, name: str) -> Path:
        dest = self.root / name
        git(self.root, "clone", "-q", "--branch", BRANCH, str(self.remote), str(dest))
        return dest

    def head(self, branch: str = BRANCH) -> str:
        return git(self.remote, "rev-parse", f"refs/heads/{branch}")

    def commit_count(self, branch: str = BRANCH) -> int:
        return int(git(self.remote, "rev-list", "--count", f"refs/heads/{branch}"))

    def push_change(self, relpath: str, content: str, message: str = "dev change") -> str:
        """Advance the remote branch from an independent clone; return the new sha."""
        work = self.clone(f"pusher-{self.commit_count()}")
        (work / relpath).write_text(content, encoding="utf-8")
        git(work, "add", "--all")
        git(work, "commit", "-q", "-m", message)
        git(work, "push", "-q", "origin", f"HEAD:refs/heads/{BRANCH}")
        return git(work, "rev-parse", "HEAD")


@pytest.fixture
def make_remote(tmp_path):
    """Factory: create a bare remote whose develop branch holds `files`."""

    def _make(files: Dict[str, str], extra_branches: Optional[Dict[str, Dict[str, str]]] = None) -> RemoteRepo:
        root = tmp_path / "repos"
        root.mkdir(exist_ok=True)
        remote = root / "remote.git"
        git(root, "init", "-q", "--bare", str(remote))
        git(remote, "symbolic-ref", "HEAD", f"refs/heads/{BRANCH}")

        seed = root / "seed"
        git(root, "init", "-q", str(seed))
        git(seed, "checkout", "-q", "-b", BRANCH)
        for rel, content in files.items():
            p = seed / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
        git(seed, "add", "--all")
        git(seed, "commit", "-q", "-m", "initial")
        git(seed, "remote", "add", "origin", str(remote))
        git(seed, "push", "-q", "origin", BRANCH)

        for branch, branch_files in (extra_branches or {}).items():
            git(seed, "checkout", "-q", "-b", branch)
            for rel, content in branch_files.items():
                (seed / rel).write_text(content, encoding="utf-8")
            git(seed, "add", "--all")
            git(seed, "commit", "-q", "-m", f"{branch} work")
            git(seed, "push", "-q", "origin", branch)
            git(seed, "checkout", "-q", BRANCH)

        return RemoteRepo(root=root, remote=remote)

    return _make


STRIP_WHITESPACE_SCRIPT = """\
import os
import sys

changed = 0
for dirpath, dirnames, filenames in os.walk("."):
    dirnames[:] = [d for d in dirnames if d != ".git"]
    for name in filenames:
        if not name.endswith(".txt"):
            continue
        path = os.path.join(dirpath, name)
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        lines = [line.rstrip(" \\t") for line in text.split("\\n")]
        new = "\\n".join(lines)
        if new != text:
            with open(path, "w", encoding="utf-8") as f:
                f.write(new)
            changed += 1
print(f"reformatted {changed} file(s)")
"""


@pytest.fixture
def tool_scripts(tmp_path) -> Path:
    """Directory holding fake formatter / linter scripts."""
    d = tmp_path / "tools"
    d.mkdir()
    (d / "strip_ws.py").write_text(STRIP_WHITESPACE_SCRIPT, encoding="utf-8")
    (d / "lint_diagnostics.py").write_text(
        "import sys\nprint('warning: needs human judgment')\nsys.exit(1)\n",
        encoding="utf-8",
    )
    (d / "crash.py").write_text(
        "import sys\nsys.stderr.write('internal compiler error\\n')\nsys.exit(101)\n",
        encoding="utf-8",
    )
    return d


@pytest.fixture
def formatter_spec(tool_scripts) -> StepSpec:
    return StepSpec(name="strip-ws", argv=(sys.executable, str(tool_scripts / "strip_ws.py")), role="formatter")


@pytest.fixture
def pipeline_config(formatter_spec) -> PipelineConfig:
    return PipelineConfig(steps=(formatter_spec,), lock_timeout_seconds=5)
