"""Normalization: canonical formatting followed by auto-fixable lint corrections."""

from .runner import NormalizationRunner, NormalizedTree, StepResult, diff_snapshots, snapshot_tree
from .steps import TOOLCHAIN_PROFILES, NormalizationStep, required_tools, steps_for_config

__all__ = [
    "NormalizationRunner",
    "NormalizationStep",
    "NormalizedTree",
    "StepResult",
    "TOOLCHAIN_PROFILES",
    "diff_snapshots",
    "required_tools",
    "snapshot_tree",
    "steps_for_config",
]
