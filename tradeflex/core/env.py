from __future__ import annotations

from pathlib import Path
import os

from dotenv import load_dotenv


def load_local_environment() -> None:
    """Load environment variables (log level overrides etc.) from a .env file.

    Canonical path: <project_root>/.env, falling back to ~/.tradeflex/.env.
    The resolved path is exposed via TRADEFLEX_ENV_PATH for diagnostics.
    """
    project_root = Path(__file__).resolve().parents[2]
    root_env = project_root / ".env"

    for candidate in (root_env, Path.home() / ".tradeflex" / ".env"):
        if candidate.exists():
            load_dotenv(dotenv_path=candidate, override=True)
            os.environ["TRADEFLEX_ENV_PATH"] = str(candidate)
            return

    # Nothing loaded; still indicate the intended canonical path
    os.environ.setdefault("TRADEFLEX_ENV_PATH", str(root_env))
