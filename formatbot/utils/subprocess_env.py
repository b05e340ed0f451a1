""" 
Subprocess Environment Utilities
===============================
Helpers for building environment dictionaries for formatter, linter and git
subprocesses.
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, Mapping, Optional


def build_tool_subprocess_env(
    *,
    sanitize_env: bool = True,
    allowlist: Optional[Iterable[str]] = None,
    extra: Optional[Mapping[str, str]] = None,
    parent: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return an environment dict suitable for tool and git execution.

    When sanitize_env is True, only a small allowlist is inherited from the parent
    environment. The allowlist keeps what toolchains and git need to find their
    installs and credentials (PATH, HOME, cargo/rustup homes, ssh agent).

    Args:
        sanitize_env: If False, inherits the full parent env.
        allowlist: Optional extra allowlist keys to include.
        extra: Values set unconditionally on top (for example CARGO_TARGET_DIR).
        parent: Source environment; defaults to os.environ.

    Returns:
        Dict[str, str] to pass as subprocess env.
    """

    base_allowlist = {
        "PATH",
        "HOME",
        "USER",
        "LANG",
        "LC_ALL",
        "LC_CTYPE",
        "TMPDIR",
        "TEMP",
        "TMP",
        "SSL_CERT_FILE",
        "SSL_CERT_DIR",
        "CARGO_HOME",
        "RUSTUP_HOME",
        "RUSTUP_TOOLCHAIN",
        "VIRTUAL_ENV",
        "SSH_AUTH_SOCK",
        "GIT_SSH_COMMAND",
        "GIT_ASKPASS",
        "GIT_CONFIG_GLOBAL",
        "GIT_CONFIG_NOSYSTEM",
        "HTTP_PROXY",
        "HTTPS_PROXY",
        "NO_PROXY",
        "http_proxy",
        "https_proxy",
        "no_proxy",
    }

    if allowlist is not None:
        for key in allowlist:
            if isinstance(key, str) and key:
                base_allowlist.add(key)

    source = os.environ if parent is None else parent
    env: Dict[str, str] = {}

    for key in base_allowlist:
        value = source.get(key)
        if value is not None:
            env[key] = value

    # git output is parsed; keep it stable and non-interactive.
    env["LC_ALL"] = "C"
    env["GIT_TERMINAL_PROMPT"] = "0"

    if not sanitize_env:
        inherited = dict(source)
        inherited.update(env)
        env = inherited

    if extra:
        env.update({str(k): str(v) for k, v in extra.items()})

    return env
