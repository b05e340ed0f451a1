"""
Normalization Runner
====================
Run the formatter and then the linter in auto-fix mode against a working tree,
in place, and record which files each step rewrote.

A tool that reports diagnostics is not a failure. A tool that crashes, times
out or cannot be started raises NormalizationCrash and stops the sequence.
"""

from __future__ import annotations

import hashlib
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger

from formatbot.config import TIMEOUTS
from formatbot.exceptions import NormalizationCrash
from formatbot.normalize.steps import NormalizationStep, order_steps
from formatbot.tracing import annotate_current_span
from formatbot.utils.subprocess_env import build_tool_subprocess_env
from formatbot.utils.subprocess_text import tail_lines, to_text

EXCLUDE_DIRS = {
    ".git",
    "target",
    "node_modules",
    ".venv",
    "__pycache__",
    ".ruff_cache",
    ".mypy_cache",
    ".pytest_cache",
}


@dataclass(frozen=True)
class StepResult:
    """Outcome of one normalization step."""

    name: str
    argv: List[str]
    returncode: int
    status: str  # clean | diagnostics
    started_at: str
    finished_at: str
    changed_paths: List[str]
    stdout_tail: str = ""
    stderr_tail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "argv": list(self.argv),
            "returncode": self.returncode,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "changed_paths": list(self.changed_paths),
            "stdout_tail": self.stdout_tail,
            "stderr_tail": self.stderr_tail,
        }


@dataclass
class NormalizedTree:
    """Working tree after all normalization steps ran."""

    path: Path
    steps: List[StepResult] = field(default_factory=list)

    @property
    def changed_paths(self) -> List[str]:
        out: set[str] = set()
        for s in self.steps:
            out.update(s.changed_paths)
        return sorted(out)

    @property
    def changed(self) -> bool:
        return bool(self.changed_paths)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "path": str(self.path),
            "changed_paths": self.changed_paths,
            "steps": [s.to_dict() for s in self.steps],
        }


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _file_sha256(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


def snapshot_tree(root: Path) -> Dict[str, str]:
    """Map each regular file under root (relative, posix) to its content hash.

    Build output and VCS directories in EXCLUDE_DIRS are skipped.
    """

    snapshot: Dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDE_DIRS)
        for name in filenames:
            p = Path(dirpath) / name
            if p.is_symlink() or not p.is_file():
                continue
            rel = p.relative_to(root).as_posix()
            snapshot[rel] = _file_sha256(p)
    return snapshot


def diff_snapshots(before: Mapping[str, str], after: Mapping[str, str]) -> List[str]:
    """Paths added, removed or modified between two snapshots."""
    keys = set(before) | set(after)
    return sorted(k for k in keys if before.get(k) != after.get(k))


class NormalizationRunner:
    """Execute normalization steps in fixed order."""

    def __init__(
        self,
        steps: Sequence[NormalizationStep],
        *,
        timeout_seconds: Optional[int] = None,
        sanitize_env: bool = False,
    ):
        if not steps:
            raise ValueError("NormalizationRunner requires at least one step")
        self.steps = order_steps(steps)
        self.timeout_seconds = int(timeout_seconds) if timeout_seconds is not None else int(TIMEOUTS.TOOL_EXECUTION)
        self.sanitize_env = sanitize_env

    def run(self, tree: str | Path, *, extra_env: Optional[Mapping[str, str]] = None) -> NormalizedTree:
        """Run every step against tree.

        Raises:
            NormalizationCrash: On the first step that crashes; later steps do not run.
        """

        root = Path(tree).expanduser().resolve()
        if not root.is_dir():
            raise NormalizationCrash("normalize", f"working tree not found: {root}")

        env = build_tool_subprocess_env(sanitize_env=self.sanitize_env, extra=dict(extra_env or {}))
        result = NormalizedTree(path=root)

        snapshot = snapshot_tree(root)
        for step in self.steps:
            step_result, snapshot = self._run_step(step, root, env, snapshot)
            result.steps.append(step_result)

        annotate_current_span(
            {
                "formatbot.normalize.steps": [s.name for s in result.steps],
                "formatbot.normalize.changed_count": len(result.changed_paths),
            }
        )
        return result

    def _run_step(
        self,
        step: NormalizationStep,
        root: Path,
        env: Dict[str, str],
        before: Dict[str, str],
    ) -> tuple[StepResult, Dict[str, str]]:
        started_at = _now_utc_iso()
        logger.info("Running {}: {}", step.name, " ".join(step.argv))

        try:
            proc = subprocess.run(
                list(step.argv),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_seconds,
                cwd=str(root),
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            stderr = tail_lines(to_text(e.stderr))
            raise NormalizationCrash(
                step.name,
                f"timed out after {self.timeout_seconds} seconds" + (f"\n{stderr}" if stderr else ""),
            ) from e
        except FileNotFoundError as e:
            raise NormalizationCrash(step.name, f"executable not found: {step.executable}") from e
        except OSError as e:
            raise NormalizationCrash(step.name, f"failed to start: {type(e).__name__}: {e}") from e

        returncode = int(proc.returncode)
        stdout = proc.stdout or ""
        stderr = proc.stderr or ""

        if returncode == 0:
            status = "clean"
        elif returncode in step.diagnostic_returncodes:
            status = "diagnostics"
            logger.info("{} left unfixable diagnostics (exit {})", step.name, returncode)
        else:
            logger.error("{} crashed with exit code {}\n{}", step.name, returncode, tail_lines(stderr or stdout))
            raise NormalizationCrash(step.name, f"exited with code {returncode}", returncode=returncode)

        after = snapshot_tree(root)
        changed = diff_snapshots(before, after)
        if changed:
            logger.info("{} rewrote {} file(s)", step.name, len(changed))

        return (
            StepResult(
                name=step.name,
                argv=list(step.argv),
                returncode=returncode,
                status=status,
                started_at=started_at,
                finished_at=_now_utc_iso(),
                changed_paths=changed,
                stdout_tail=tail_lines(stdout),
                stderr_tail=tail_lines(stderr),
            ),
            after,
        )
