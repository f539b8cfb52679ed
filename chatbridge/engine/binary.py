"""Process-wide resolution of the assistant binary.

Resolution happens at most once per name; the result is cached for the
life of the process.
"""
from __future__ import annotations

import functools
import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "claude"


def _login_shell_which(name: str) -> str | None:
    """Ask a login shell, which sees PATH entries added by profile scripts."""
    bash = shutil.which("bash")
    if not bash:
        return None
    try:
        out = subprocess.run(
            [bash, "-lc", f"which {name}"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Login-shell lookup for %s failed: %s", name, exc)
        return None
    if out.returncode != 0:
        return None
    path = out.stdout.strip().splitlines()
    return path[-1].strip() if path and path[-1].strip() else None


@functools.lru_cache(maxsize=None)
def resolve_binary(name: str = DEFAULT_BINARY) -> str | None:
    """Return an executable path for *name*, or None when it is absent."""
    path = shutil.which(name)
    if path:
        logger.info("Resolved %s binary at %s", name, path)
        return path
    path = _login_shell_which(name)
    if path:
        logger.info("Resolved %s binary via login shell at %s", name, path)
        return path
    logger.warning("Could not find %s on PATH", name)
    return None


def binary_path(configured: str = "") -> str | None:
    """Resolve the configured binary name or path, defaulting to ``claude``."""
    return resolve_binary(configured or DEFAULT_BINARY)
