"""Configuration loading with pydantic-settings.

Supports loading configuration from multiple sources with precedence:
1. Direct kwargs (highest priority)
2. Environment variables (MEMPLANE__SECTION__KEY)
3. Flat legacy environment variables (MEMPLANE_EMBEDDING_MODEL, ...)
4. Project config (.memplane/config.yaml)
5. Global config (~/.config/memplane/config.yaml)
6. Built-in defaults (lowest priority)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from memplane.config.models import (
    ContextConfig,
    DatabaseConfig,
    EmbeddingConfig,
    LexicalConfig,
    LoggingConfig,
    MemplaneConfig,
    ScoringConfig,
    VectorConfig,
)
from memplane.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/memplane/config.yaml").expanduser()

PROJECT_DIR_NAME = ".memplane"

# Flat env var -> (section, key). Honored below the nested MEMPLANE__ form.
_LEGACY_ENV_VARS: dict[str, tuple[str, str]] = {
    "MEMPLANE_EMBEDDING_MODEL": ("embedding", "model"),
    "MEMPLANE_EMBEDDING_DIMENSIONS": ("embedding", "dimensions"),
    "MEMPLANE_CONTEXT_TOKENS": ("context", "token_budget"),
}


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top-level value must be a mapping")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _legacy_env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect flat MEMPLANE_* variables into a nested config dict."""
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for var, (section, key) in _LEGACY_ENV_VARS.items():
        value = env.get(var)
        if value:
            overrides.setdefault(section, {})[key] = value
    # A non-numeric token budget is ignored rather than rejected
    budget = overrides.get("context", {}).get("token_budget")
    if budget is not None and not str(budget).isdigit():
        del overrides["context"]
    return overrides


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from pre-loaded YAML config."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _make_settings_class(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    """Create a Settings class with instance-based YAML source (thread-safe)."""

    class MemplaneSettings(BaseSettings):
        """Root config. Env vars: MEMPLANE__LOGGING__LEVEL, MEMPLANE__VECTOR__THRESHOLD, etc."""

        model_config = SettingsConfigDict(
            env_prefix="MEMPLANE__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = LoggingConfig()
        database: DatabaseConfig = DatabaseConfig()
        embedding: EmbeddingConfig = EmbeddingConfig()
        vector: VectorConfig = VectorConfig()
        lexical: LexicalConfig = LexicalConfig()
        scoring: ScoringConfig = ScoringConfig()
        context: ContextConfig = ContextConfig()

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > yaml files
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return MemplaneSettings


def load_config(root: Path | None = None, **kwargs: Any) -> MemplaneConfig:
    """Load config: defaults < global yaml < project yaml < legacy env < env vars < kwargs.

    Args:
        root: Project root holding the .memplane directory.
              Defaults to current working directory.
        **kwargs: Override values (highest precedence).

    Returns:
        Fully resolved configuration object.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    root = root or Path.cwd()

    yaml_config = _load_yaml(GLOBAL_CONFIG_PATH)
    yaml_config = _deep_merge(yaml_config, _load_yaml(root / PROJECT_DIR_NAME / "config.yaml"))
    yaml_config = _deep_merge(yaml_config, _legacy_env_overrides())

    settings_cls = _make_settings_class(yaml_config)
    try:
        settings = settings_cls(**kwargs)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e
    return MemplaneConfig.model_validate(settings.model_dump())


def resolve_db_path(config: MemplaneConfig, root: Path | None = None) -> Path:
    """Get the database file for a project, respecting config.database.path."""
    if config.database.path:
        return Path(config.database.path).expanduser()
    return (root or Path.cwd()) / PROJECT_DIR_NAME / "memory.db"
