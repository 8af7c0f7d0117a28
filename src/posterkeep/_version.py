"""Version calculation for posterkeep.

Version format: MAJOR.MINOR.PATCH where PATCH is the git commit count when
running from a checkout, or the installed distribution's patch otherwise.
"""

from __future__ import annotations

import subprocess
from importlib.metadata import PackageNotFoundError, version

# Base version - bump this manually for releases
BASE_VERSION = "1.0"


def _git_commit_count() -> int | None:
    """Count commits reachable from HEAD, or None outside a git checkout."""
    try:
        result = subprocess.run(
            ["git", "rev-list", "--count", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.strip())
    except ValueError:
        return None


def get_version() -> str:
    """Get the full version string (e.g. "1.0.47")."""
    commit_count = _git_commit_count()
    if commit_count is not None:
        return f"{BASE_VERSION}.{commit_count}"
    try:
        return version("posterkeep")
    except PackageNotFoundError:
        return f"{BASE_VERSION}.0"


__version__ = get_version()
