"""
Error Taxonomy
==============
Typed errors raised by pipeline steps.

Each fatal condition has its own class so the controller (and callers of the
individual components) can tell "raced" apart from "broken toolchain". A
filtered trigger and a clean tree are outcomes, not errors, and have no class
here.
"""

from __future__ import annotations

from typing import Optional, Sequence


class FormatbotError(Exception):
    """Base class for all formatbot errors."""

    failure_kind = "internal"


class ConfigError(FormatbotError, ValueError):
    """Raised when configuration is missing or malformed."""

    failure_kind = "config"


class TriggerError(FormatbotError, ValueError):
    """Raised when a trigger event cannot be built from its source."""

    failure_kind = "trigger"


class GitCommandError(FormatbotError):
    """Raised when a git subprocess exits non-zero or cannot be started."""

    failure_kind = "git"

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ):
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip().splitlines()
        tail = detail[-1] if detail else "no output"
        super().__init__(f"git {' '.join(self.argv[1:3])} failed ({returncode}): {tail}")


class ProvisioningError(FormatbotError):
    """Checkout or toolchain preconditions are not met."""

    failure_kind = "provisioning"


class NormalizationCrash(FormatbotError):
    """A formatter or linter process crashed (not merely reported diagnostics)."""

    failure_kind = "normalization"

    def __init__(self, step: str, message: str, returncode: Optional[int] = None):
        self.step = step
        self.returncode = returncode
        super().__init__(f"{step}: {message}")


class PublishError(FormatbotError):
    """Staging, committing or pushing failed for a reason other than a race."""

    failure_kind = "publish"


class PublishRejected(PublishError):
    """The remote rejected the push because the branch moved since the run started."""

    failure_kind = "publish_race"

    def __init__(self, branch: str, base_sha: str, attempted_sha: str, detail: str = ""):
        self.branch = branch
        self.base_sha = base_sha
        self.attempted_sha = attempted_sha
        self.detail = detail
        msg = f"push to {branch} rejected: remote is no longer at {base_sha[:12]}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
