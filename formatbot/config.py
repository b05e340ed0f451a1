"""
Centralized Configuration
=========================
Configuration values and constants for the formatbot pipeline.

This module provides:
- Timeout configuration for tool and git subprocesses
- Tracing and logging environment defaults
- The immutable PipelineConfig handed to the controller at construction

Environment variables use the FORMATBOT_ prefix. A JSON config file may be
layered on top of the defaults; env overrides win over the file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from loguru import logger

from formatbot.exceptions import ConfigError
from formatbot.utils.schema_validation import validate_against_schema


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration in seconds."""

    # Formatter / linter execution (clippy may compile the whole workspace)
    TOOL_EXECUTION: int = int(os.getenv("FORMATBOT_TOOL_TIMEOUT", "1800"))

    # Local git commands (status, add, commit)
    GIT_LOCAL: int = int(os.getenv("FORMATBOT_GIT_TIMEOUT", "120"))

    # Network git commands (clone, push)
    GIT_NETWORK: int = int(os.getenv("FORMATBOT_GIT_NETWORK_TIMEOUT", "600"))

    # Per-tree run lock acquisition
    FILE_LOCK: int = int(os.getenv("FORMATBOT_LOCK_TIMEOUT", "30"))


@dataclass(frozen=True)
class TracingConfig:
    """Tracing configuration."""

    SERVICE_NAME: str = "formatbot"
    OTLP_ENDPOINT: str = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
    ENABLED: bool = os.getenv("ENABLE_TRACING", "false").lower() == "true"


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    LEVEL: str = os.getenv("FORMATBOT_LOG_LEVEL", "INFO").upper()
    JSON: bool = os.getenv("FORMATBOT_LOG_JSON", "false").lower() == "true"


# Global singleton instances
TIMEOUTS = TimeoutConfig()
TRACING = TracingConfig()
LOGGING = LoggingConfig()


DEFAULT_BRANCH = "develop"
DEFAULT_COMMIT_MESSAGE = "format by actions"
DEFAULT_BOT_NAME = "github-actions[bot]"
DEFAULT_BOT_EMAIL = "41898282+github-actions[bot]@users.noreply.github.com"
DEFAULT_REMOTE = "origin"
DEFAULT_TOOLCHAIN = "rust"


@dataclass(frozen=True)
class BotIdentity:
    """Fixed identity used as both author and committer of publish commits."""

    name: str
    email: str

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ConfigError("bot identity name must be non-empty")
        if "@" not in self.email or any(ch in self.email for ch in "<>\n"):
            raise ConfigError(f"bot identity email is not usable: {self.email!r}")
        if any(ch in self.name for ch in "<>\n"):
            raise ConfigError(f"bot identity name is not usable: {self.name!r}")

    def as_author(self) -> str:
        return f"{self.name} <{self.email}>"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "email": self.email}


@dataclass(frozen=True)
class StepSpec:
    """Declarative form of a normalization step as read from config."""

    name: str
    argv: Tuple[str, ...]
    role: str = "formatter"
    diagnostic_returncodes: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "argv": list(self.argv),
            "role": self.role,
            "diagnostic_returncodes": list(self.diagnostic_returncodes),
        }


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline configuration.

    Built once per process and passed into the controller. Alternate
    configurations (tests, other repositories) are just other instances.
    """

    allowed_branches: FrozenSet[str] = frozenset({DEFAULT_BRANCH})
    bot_identity: BotIdentity = field(
        default_factory=lambda: BotIdentity(name=DEFAULT_BOT_NAME, email=DEFAULT_BOT_EMAIL)
    )
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    remote: str = DEFAULT_REMOTE
    toolchain: str = DEFAULT_TOOLCHAIN
    # Explicit steps replace the toolchain profile when non-empty.
    steps: Tuple[StepSpec, ...] = ()
    manual_requires_allowed_branch: bool = False
    tool_timeout_seconds: int = TIMEOUTS.TOOL_EXECUTION
    lock_timeout_seconds: int = TIMEOUTS.FILE_LOCK
    cache_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if not self.allowed_branches:
            raise ConfigError("allowed_branches must contain at least one branch")
        if not self.commit_message.strip():
            raise ConfigError("commit_message must be non-empty")
        if not self.remote.strip():
            raise ConfigError("remote must be non-empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed_branches": sorted(self.allowed_branches),
            "bot_identity": self.bot_identity.to_dict(),
            "commit_message": self.commit_message,
            "remote": self.remote,
            "toolchain": self.toolchain,
            "steps": [s.to_dict() for s in self.steps],
            "manual_requires_allowed_branch": self.manual_requires_allowed_branch,
            "tool_timeout_seconds": self.tool_timeout_seconds,
            "lock_timeout_seconds": self.lock_timeout_seconds,
            "cache_dir": str(self.cache_dir) if self.cache_dir else None,
        }


def _split_csv(value: str) -> FrozenSet[str]:
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _steps_from_raw(raw: Any) -> Tuple[StepSpec, ...]:
    steps = []
    for item in raw or []:
        steps.append(
            StepSpec(
                name=str(item["name"]),
                argv=tuple(str(a) for a in item["argv"]),
                role=str(item.get("role", "formatter")),
                diagnostic_returncodes=tuple(int(c) for c in item.get("diagnostic_returncodes", [])),
            )
        )
    return tuple(steps)


def config_from_mapping(raw: Mapping[str, Any], base: Optional[PipelineConfig] = None) -> PipelineConfig:
    """Apply a validated config-file mapping on top of base (or defaults)."""

    cfg = base or PipelineConfig()
    changes: Dict[str, Any] = {}

    if "allowed_branches" in raw:
        changes["allowed_branches"] = frozenset(str(b) for b in raw["allowed_branches"])
    if "bot_identity" in raw:
        ident = raw["bot_identity"]
        changes["bot_identity"] = BotIdentity(name=str(ident["name"]), email=str(ident["email"]))
    if "commit_message" in raw:
        changes["commit_message"] = str(raw["commit_message"])
    if "remote" in raw:
        changes["remote"] = str(raw["remote"])
    if "toolchain" in raw:
        changes["toolchain"] = str(raw["toolchain"])
    if "steps" in raw:
        changes["steps"] = _steps_from_raw(raw["steps"])
    if "manual_requires_allowed_branch" in raw:
        changes["manual_requires_allowed_branch"] = bool(raw["manual_requires_allowed_branch"])
    if "tool_timeout_seconds" in raw:
        changes["tool_timeout_seconds"] = int(raw["tool_timeout_seconds"])
    if "lock_timeout_seconds" in raw:
        changes["lock_timeout_seconds"] = int(raw["lock_timeout_seconds"])
    if raw.get("cache_dir"):
        changes["cache_dir"] = Path(str(raw["cache_dir"])).expanduser()

    return replace(cfg, **changes) if changes else cfg


def config_from_env(environ: Mapping[str, str], base: Optional[PipelineConfig] = None) -> PipelineConfig:
    """Apply FORMATBOT_* environment overrides on top of base (or defaults)."""

    cfg = base or PipelineConfig()
    changes: Dict[str, Any] = {}

    branches = environ.get("FORMATBOT_ALLOWED_BRANCHES")
    if branches:
        changes["allowed_branches"] = _split_csv(branches)

    bot_name = environ.get("FORMATBOT_BOT_NAME")
    bot_email = environ.get("FORMATBOT_BOT_EMAIL")
    if bot_name or bot_email:
        changes["bot_identity"] = BotIdentity(
            name=bot_name or cfg.bot_identity.name,
            email=bot_email or cfg.bot_identity.email,
        )

    if environ.get("FORMATBOT_COMMIT_MESSAGE"):
        changes["commit_message"] = environ["FORMATBOT_COMMIT_MESSAGE"]
    if environ.get("FORMATBOT_REMOTE"):
        changes["remote"] = environ["FORMATBOT_REMOTE"]
    if environ.get("FORMATBOT_TOOLCHAIN"):
        changes["toolchain"] = environ["FORMATBOT_TOOLCHAIN"]
    if environ.get("FORMATBOT_MANUAL_REQUIRES_ALLOWED_BRANCH"):
        changes["manual_requires_allowed_branch"] = _as_bool(environ["FORMATBOT_MANUAL_REQUIRES_ALLOWED_BRANCH"])
    if environ.get("FORMATBOT_CACHE_DIR"):
        changes["cache_dir"] = Path(environ["FORMATBOT_CACHE_DIR"]).expanduser()

    return replace(cfg, **changes) if changes else cfg


def read_config_file(path: str | Path) -> Dict[str, Any]:
    """Load and schema-validate a JSON config file.

    Raises:
        ConfigError: When the file is missing, not JSON, or fails validation.
    """

    p = Path(path).expanduser()
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")

    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Config file {p} is not valid JSON: {type(e).__name__}") from e

    try:
        validate_against_schema(payload, "pipeline_config.schema.json")
    except ValueError as e:
        raise ConfigError(f"Config file {p}: {e}") from e

    return payload


def load_pipeline_config(
    path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Build a PipelineConfig from defaults, an optional file and the environment.

    Precedence, lowest to highest: built-in defaults, config file, env vars.
    """

    env = os.environ if environ is None else environ
    cfg = PipelineConfig()

    if path is not None:
        cfg = config_from_mapping(read_config_file(path), cfg)
        logger.debug("Loaded pipeline config file {}", path)

    return config_from_env(env, cfg)
