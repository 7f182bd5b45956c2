"""
YAML configuration loading.

Both config files go through the same pipeline: read YAML, expand
``${VAR}`` / ``${VAR:-default}`` references, validate into a pydantic model.
A missing file is not an error; the model defaults apply.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .models import AppConfig, SearchConfig
from .search_space import SearchSpace

DEFAULT_APP_FILE = Path("configs/app.yaml")
DEFAULT_SEARCH_FILE = Path("configs/search.yaml")

ENV_REF = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

ModelT = TypeVar("ModelT", bound=BaseModel)


class ConfigError(Exception):
    """A config file could not be read, parsed or validated."""

    def __init__(self, message: str, path: Path | None = None, details: str | None = None):
        self.path = path
        self.details = details
        super().__init__(message)


def expand_env_vars(value: Any) -> Any:
    """Substitute environment references in every string of a parsed document."""
    if isinstance(value, str):
        return ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Parse a YAML file whose top level must be a mapping (or empty)."""
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}", path=path, details=str(e)) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}", path=path, details=str(e)) from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}", path=path)
    return document


def _load_model(
    path: Path | str | None,
    default_path: Path,
    model: type[ModelT],
    label: str,
    expand_env: bool,
) -> ModelT:
    path = default_path if path is None else Path(path)
    if not path.exists():
        return model()

    data = read_yaml_mapping(path)
    if expand_env:
        data = expand_env_vars(data)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {label} configuration in {path}", path=path, details=str(e)) from e


def load_app_config(path: Path | str | None = None, expand_env: bool = True) -> AppConfig:
    """Load ``configs/app.yaml`` (or *path*).

    Raises:
        ConfigError: If the file exists but is unreadable or invalid
    """
    return _load_model(path, DEFAULT_APP_FILE, AppConfig, "app", expand_env)


def load_search_config(path: Path | str | None = None, expand_env: bool = True) -> SearchConfig:
    """Load the keyword/region/filter configuration.

    Without a file the built-in keywords and regions are used.
    """
    return _load_model(path, DEFAULT_SEARCH_FILE, SearchConfig, "search", expand_env)


def load_search_space(path: Path | str | None = None) -> SearchSpace:
    return load_search_config(path).to_search_space()


def validate_search_config_file(path: Path | str) -> list[str]:
    """Check a search file and collect readable problems instead of raising.

    An empty list means the file would yield a usable search space.
    """
    path = Path(path)
    try:
        config = SearchConfig.model_validate(expand_env_vars(read_yaml_mapping(path)))
    except ConfigError as e:
        return [str(e)]
    except ValidationError as e:
        return [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]

    return [f"no enabled {dimension}" for dimension in config.to_search_space().missing_dimensions()]
