"""Publish normalized trees back to their origin branch."""

from .git import GitRepository, GitResult, parse_porcelain_status, parse_push_porcelain
from .publisher import ChangePublisher, NoOp, Published

__all__ = [
    "ChangePublisher",
    "GitRepository",
    "GitResult",
    "NoOp",
    "Published",
    "parse_porcelain_status",
    "parse_push_porcelain",
]
