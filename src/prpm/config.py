"""User and project configuration.

Sources, lowest to highest precedence:
1. `~/.prpmrc` (user)
2. `<project>/.prpmrc` (repository)
3. `PRPM_REGISTRY_URL` / `PRPM_TOKEN` / `PRPM_DEFAULT_FORMAT` environment variables

Paths are injected by the caller; nothing here is read at import time.
"""

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from .registry import DEFAULT_REGISTRY_URL

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".prpmrc"

_ENV_KEYS = {
    "PRPM_REGISTRY_URL": "registryUrl",
    "PRPM_TOKEN": "token",
    "PRPM_DEFAULT_FORMAT": "defaultFormat",
}


class PrpmConfig(BaseModel):
    """Resolved configuration (camelCase keys on disk, snake_case in Python)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    registry_url: str = Field(default=DEFAULT_REGISTRY_URL, alias="registryUrl")
    token: str | None = None
    default_format: str | None = Field(default=None, alias="defaultFormat")


def _read_rc(path: Path) -> dict:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: expected a JSON object")
        return {}
    return data


def load_config(
    project_dir: Path | None = None,
    home_dir: Path | None = None,
    environ: dict[str, str] | None = None,
) -> PrpmConfig:
    """
    Load configuration from rc files and environment.

    Args:
        project_dir: Project root holding an optional repository `.prpmrc`
        home_dir: Home directory (defaults to Path.home())
        environ: Environment mapping (defaults to os.environ)

    Returns:
        PrpmConfig with every source merged
    """
    environ = os.environ if environ is None else environ
    home_dir = Path.home() if home_dir is None else home_dir

    merged: dict = {}
    merged.update(_read_rc(home_dir / CONFIG_FILENAME))
    if project_dir is not None:
        merged.update(_read_rc(project_dir / CONFIG_FILENAME))
    for env_key, config_key in _ENV_KEYS.items():
        if environ.get(env_key):
            merged[config_key] = environ[env_key]

    try:
        return PrpmConfig.model_validate(merged)
    except ValidationError as e:
        logger.warning(f"Invalid configuration, using defaults: {e}")
        return PrpmConfig()
