"""Environment configuration for the publish pipeline.

All required settings come from environment variables, optionally seeded
from a ``.env`` file. Variables already present in the environment take
precedence over the file.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from deskulpt_registry import exit_codes
from deskulpt_registry.errors import PublishError

GHCR_REPO_PREFIX = "GHCR_REPO_PREFIX"
PUBLISH_PLAN_PATH = "PUBLISH_PLAN_PATH"
REGISTRY_DIR = "REGISTRY_DIR"

REQUIRED_ENV_VARS = (GHCR_REPO_PREFIX, PUBLISH_PLAN_PATH, REGISTRY_DIR)

DEFAULT_ENV_FILE = Path(".env")

# Shared staging directory, relative to the working directory
DEFAULT_STAGING_DIR = Path("temp")


class MissingConfigError(PublishError):
    """Raised when required environment variables are not set."""

    exit_code = exit_codes.CONFIG_ERROR

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required environment variable: {', '.join(missing)}")


@dataclass(frozen=True)
class PublishConfig:
    """Settings for one publish run."""

    repo_prefix: str
    plan_path: Path
    registry_dir: Path
    staging_dir: Path
    dry_run: bool = False


def load_env_file(path: Path) -> dict[str, str]:
    """Load environment variables from a .env file.

    Args:
        path: Path to the .env file.

    Returns:
        Dictionary of environment variable names to values.
        Returns empty dict if file doesn't exist.
    """
    if not path.exists():
        return {}

    raw_values = dotenv_values(path)
    return {k: v for k, v in raw_values.items() if v is not None}


def load_config(
    environ: Mapping[str, str] | None = None,
    env_file: Path | None = None,
    staging_dir: Path | None = None,
    dry_run: bool = False,
) -> PublishConfig:
    """Resolve the publish configuration.

    Args:
        environ: Environment to read. Defaults to ``os.environ``.
        env_file: Optional .env file providing fallback values.
        staging_dir: Staging directory override. Defaults to ``./temp``.
        dry_run: Push to a local OCI layout instead of the registry.

    Returns:
        The resolved configuration.

    Raises:
        MissingConfigError: If any required variable is unset, listing all of them.
    """
    values = load_env_file(env_file) if env_file is not None else {}
    values.update(os.environ if environ is None else environ)

    missing = [name for name in REQUIRED_ENV_VARS if name not in values]
    if missing:
        raise MissingConfigError(missing)

    return PublishConfig(
        repo_prefix=values[GHCR_REPO_PREFIX],
        plan_path=Path(values[PUBLISH_PLAN_PATH]),
        registry_dir=Path(values[REGISTRY_DIR]),
        staging_dir=(staging_dir or DEFAULT_STAGING_DIR).resolve(),
        dry_run=dry_run,
    )
