#!/usr/bin/env python3
"""Run the format-and-publish pipeline for a working tree.

Typical CI use (after checkout and toolchain install):

    python scripts/run_format_pipeline.py --tree . --report formatbot_run.json

Exit code behavior:
- 0 for published, no-op and filtered events.
- 1 for a failed run.
- 2 for usage/configuration errors.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[1]
root_str = str(ROOT_DIR)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from formatbot.cli import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
