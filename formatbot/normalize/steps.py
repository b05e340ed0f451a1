"""Normalization steps and toolchain profiles.

A step is one external tool invocation. The formatter always runs before the
linter so lint fixes apply to already canonical code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Sequence, Tuple

from formatbot.config import PipelineConfig, StepSpec
from formatbot.exceptions import ConfigError

ROLE_ORDER = {"formatter": 0, "linter": 1}


@dataclass(frozen=True)
class NormalizationStep:
    """One tool invocation run from the working tree root.

    Return code 0 is clean. Codes in diagnostic_returncodes mean the tool ran
    and left unfixable diagnostics behind; they are recorded, not failed.
    Anything else is a crash.
    """

    name: str
    argv: Tuple[str, ...]
    role: str = "formatter"
    diagnostic_returncodes: FrozenSet[int] = frozenset()

    def __post_init__(self) -> None:
        if not self.argv:
            raise ConfigError(f"step {self.name!r} has an empty command")
        if self.role not in ROLE_ORDER:
            raise ConfigError(f"step {self.name!r} has unknown role {self.role!r}")

    @property
    def executable(self) -> str:
        return self.argv[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "argv": list(self.argv),
            "role": self.role,
            "diagnostic_returncodes": sorted(self.diagnostic_returncodes),
        }


TOOLCHAIN_PROFILES: Dict[str, Tuple[NormalizationStep, ...]] = {
    "rust": (
        NormalizationStep(name="cargo fmt", argv=("cargo", "fmt", "--all"), role="formatter"),
        NormalizationStep(
            name="cargo clippy --fix",
            argv=("cargo", "clippy", "--fix", "--allow-dirty"),
            role="linter",
        ),
    ),
    "python": (
        NormalizationStep(name="ruff format", argv=("ruff", "format", "."), role="formatter"),
        NormalizationStep(
            name="ruff check --fix",
            argv=("ruff", "check", "--fix", "."),
            role="linter",
            # ruff exits 1 when violations remain after fixing, 2 on abnormal termination
            diagnostic_returncodes=frozenset({1}),
        ),
    ),
}


def step_from_spec(spec: StepSpec) -> NormalizationStep:
    return NormalizationStep(
        name=spec.name,
        argv=tuple(spec.argv),
        role=spec.role,
        diagnostic_returncodes=frozenset(spec.diagnostic_returncodes),
    )


def order_steps(steps: Sequence[NormalizationStep]) -> List[NormalizationStep]:
    """Formatters before linters; declaration order kept within a role."""
    return sorted(steps, key=lambda s: ROLE_ORDER[s.role])


def steps_for_config(config: PipelineConfig) -> List[NormalizationStep]:
    """Resolve the step list: explicit config steps, else the toolchain profile."""

    if config.steps:
        return order_steps([step_from_spec(s) for s in config.steps])

    profile = TOOLCHAIN_PROFILES.get(config.toolchain)
    if profile is None:
        known = ", ".join(sorted(TOOLCHAIN_PROFILES))
        raise ConfigError(f"Unknown toolchain {config.toolchain!r} (known: {known})")
    return list(profile)


def required_tools(steps: Sequence[NormalizationStep]) -> List[str]:
    seen: List[str] = []
    for s in steps:
        if s.executable not in seen:
            seen.append(s.executable)
    return seen


# Environment variable pointing each toolchain at a reusable build/cache dir.
TOOLCHAIN_CACHE_ENV: Dict[str, str] = {
    "rust": "CARGO_TARGET_DIR",
    "python": "RUFF_CACHE_DIR",
}
