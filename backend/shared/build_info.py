"""Version and commit reported by the health endpoints.

CI sets APP_VERSION and GIT_COMMIT. Local runs ask git for the commit.
"""

import os
import subprocess


def _git_short_sha() -> str:
    try:
        output = subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],  # noqa: S607
            text=True,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, subprocess.CalledProcessError):
        return "dev"
    return output.strip() or "dev"


APP_VERSION: str = os.environ.get("APP_VERSION", "dev")
GIT_COMMIT: str = os.environ.get("GIT_COMMIT") or _git_short_sha()


def build_info() -> dict[str, str]:
    return {"version": APP_VERSION, "commit": GIT_COMMIT}
