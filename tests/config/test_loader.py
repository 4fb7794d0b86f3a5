"""Tests for config/loader.py module.

Covers:
- _load_yaml() function
- _deep_merge() function
- _legacy_env_overrides() function
- load_config() precedence
- resolve_db_path() function
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from memplane.config.loader import (
    GLOBAL_CONFIG_PATH,
    _deep_merge,
    _legacy_env_overrides,
    _load_yaml,
    load_config,
    resolve_db_path,
)
from memplane.core.errors import ConfigError, ErrorCode


def _write_project_config(root: Path, content: str) -> None:
    config_dir = root / ".memplane"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.yaml").write_text(content)


class TestLoadYaml:
    """Tests for _load_yaml function."""

    def test_returns_empty_dict_for_missing_file(self, tmp_path: Path) -> None:
        """Returns empty dict when file doesn't exist."""
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("vector:\n  threshold: 0.5\n")
        assert _load_yaml(yaml_file) == {"vector": {"threshold": 0.5}}

    def test_returns_empty_for_empty_file(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "empty.yaml"
        yaml_file.write_text("")
        assert _load_yaml(yaml_file) == {}

    def test_raises_config_error_for_invalid_yaml(self, tmp_path: Path) -> None:
        """Raises ConfigError for invalid YAML syntax."""
        yaml_file = tmp_path / "invalid.yaml"
        yaml_file.write_text("logging:\n  level:\n    - invalid: [unclosed")

        with pytest.raises(ConfigError) as exc_info:
            _load_yaml(yaml_file)
        assert exc_info.value.code == ErrorCode.CONFIG_PARSE_ERROR

    def test_raises_config_error_for_non_mapping(self, tmp_path: Path) -> None:
        """A top-level list is not a config."""
        yaml_file = tmp_path / "list.yaml"
        yaml_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            _load_yaml(yaml_file)


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self) -> None:
        """Nested dicts are merged recursively."""
        base = {"context": {"token_budget": 2000, "max_summaries": 3}}
        override = {"context": {"token_budget": 4000}}
        result = _deep_merge(base, override)
        assert result == {"context": {"token_budget": 4000, "max_summaries": 3}}

    def test_override_replaces_non_dict(self) -> None:
        base: dict[str, Any] = {"a": {"nested": 1}}
        override: dict[str, Any] = {"a": "simple"}
        assert _deep_merge(base, override) == {"a": "simple"}

    def test_does_not_mutate_base(self) -> None:
        base = {"a": 1}
        _deep_merge(base, {"b": 2})
        assert base == {"a": 1}


class TestLegacyEnvOverrides:
    """Tests for flat MEMPLANE_* variables."""

    def test_collects_known_variables(self) -> None:
        env = {
            "MEMPLANE_EMBEDDING_MODEL": "bge-small-en",
            "MEMPLANE_EMBEDDING_DIMENSIONS": "768",
            "MEMPLANE_CONTEXT_TOKENS": "4000",
        }
        assert _legacy_env_overrides(env) == {
            "embedding": {"model": "bge-small-en", "dimensions": "768"},
            "context": {"token_budget": "4000"},
        }

    def test_ignores_unknown_and_empty_variables(self) -> None:
        env = {"MEMPLANE_UNKNOWN": "x", "MEMPLANE_EMBEDDING_MODEL": ""}
        assert _legacy_env_overrides(env) == {}

    def test_non_numeric_token_budget_ignored(self) -> None:
        assert _legacy_env_overrides({"MEMPLANE_CONTEXT_TOKENS": "lots"}) == {}


class TestLoadConfig:
    """Tests for load_config function."""

    def test_returns_default_config_when_no_files(self, tmp_path: Path) -> None:
        with patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path)
        assert config.logging.level == "INFO"
        assert config.vector.threshold == 0.3
        assert config.vector.max_candidates == 2000
        assert config.context.token_budget == 2000

    def test_loads_project_config(self, tmp_path: Path) -> None:
        _write_project_config(tmp_path, "vector:\n  threshold: 0.45\n")

        with patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path)
        assert config.vector.threshold == 0.45

    def test_project_config_overrides_global(self, tmp_path: Path) -> None:
        global_file = tmp_path / "global.yaml"
        global_file.write_text("context:\n  token_budget: 1000\n  max_summaries: 2\n")
        _write_project_config(tmp_path, "context:\n  token_budget: 3000\n")

        with patch("memplane.config.loader.GLOBAL_CONFIG_PATH", global_file):
            config = load_config(tmp_path)
        assert config.context.token_budget == 3000
        assert config.context.max_summaries == 2

    def test_env_vars_override_yaml(self, tmp_path: Path) -> None:
        _write_project_config(tmp_path, "logging:\n  level: INFO\n")

        with (
            patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch.dict(os.environ, {"MEMPLANE__LOGGING__LEVEL": "WARNING"}),
        ):
            config = load_config(tmp_path)
        assert config.logging.level == "WARNING"

    def test_legacy_env_applies_below_nested_env(self, tmp_path: Path) -> None:
        with (
            patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch.dict(
                os.environ,
                {
                    "MEMPLANE_CONTEXT_TOKENS": "4000",
                    "MEMPLANE_EMBEDDING_MODEL": "bge-small-en",
                    "MEMPLANE__EMBEDDING__MODEL": "jina-code-v2",
                },
            ),
        ):
            config = load_config(tmp_path)
        assert config.context.token_budget == 4000
        assert config.embedding.model == "jina-code-v2"

    def test_kwargs_override_all(self, tmp_path: Path) -> None:
        from memplane.config.models import ContextConfig

        _write_project_config(tmp_path, "context:\n  token_budget: 3000\n")
        with patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path, context=ContextConfig(token_budget=500))
        assert config.context.token_budget == 500

    def test_raises_config_error_for_invalid_value(self, tmp_path: Path) -> None:
        _write_project_config(tmp_path, "vector:\n  threshold: not-a-number\n")

        with (
            patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            pytest.raises(ConfigError) as exc_info,
        ):
            load_config(tmp_path)
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID_VALUE

    def test_raises_config_error_for_weights_not_summing_to_one(self, tmp_path: Path) -> None:
        _write_project_config(
            tmp_path,
            "scoring:\n  search_weights:\n    semantic: 0.5\n    lexical: 0.5\n"
            "    recency: 0.5\n    project_match: 0.0\n",
        )

        with (
            patch("memplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            pytest.raises(ConfigError),
        ):
            load_config(tmp_path)


class TestResolveDbPath:
    """Tests for resolve_db_path function."""

    def test_default_under_project_dir(self, tmp_path: Path) -> None:
        from memplane.config.models import MemplaneConfig

        assert resolve_db_path(MemplaneConfig(), tmp_path) == tmp_path / ".memplane" / "memory.db"

    def test_respects_configured_path(self, tmp_path: Path) -> None:
        from memplane.config.models import DatabaseConfig, MemplaneConfig

        custom = tmp_path / "elsewhere" / "mem.db"
        config = MemplaneConfig(database=DatabaseConfig(path=str(custom)))
        assert resolve_db_path(config, tmp_path) == custom


class TestGlobalConfigPath:
    """Tests for GLOBAL_CONFIG_PATH constant."""

    def test_is_in_user_config(self) -> None:
        assert isinstance(GLOBAL_CONFIG_PATH, Path)
        assert "memplane" in str(GLOBAL_CONFIG_PATH)
