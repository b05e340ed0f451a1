"""
Utility Functions
=================
Subprocess environment handling, output normalization and schema validation.
"""

from .subprocess_env import build_tool_subprocess_env
from .subprocess_text import tail_lines, to_text
from .schema_validation import validate_against_schema

__all__ = [
    "build_tool_subprocess_env",
    "tail_lines",
    "to_text",
    "validate_against_schema",
]
