"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tamma.config.loader import load_config, merge_tables
from tamma.config.schema import (
    DispatchConfig,
    LoggingConfig,
    PlatformConfig,
    ProviderConfig,
    RateLimitConfig,
    TammaConfig,
)
from tamma.core.errors import ConfigError


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """No user, project or env config files are visible."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("TAMMA_CONFIG", raising=False)
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    return tmp_path


# ─── Schema Defaults ──────────────────────────────────────────


class TestSchemaDefaults:
    def test_tamma_config_all_defaults(self):
        cfg = TammaConfig()
        assert set(cfg.providers) == {"anthropic", "openai", "google"}
        assert set(cfg.platforms) == {"github", "gitlab"}
        assert cfg.providers["anthropic"].api_key_env == "ANTHROPIC_API_KEY"
        assert cfg.platforms["github"].api_key_env == "GITHUB_TOKEN"
        assert cfg.dispatch.max_rate_limit_waits == 3
        assert cfg.logging.level == "INFO"

    def test_provider_config_defaults(self):
        cfg = ProviderConfig()
        assert cfg.enabled is True
        assert cfg.type is None
        assert cfg.api_key is None
        assert cfg.timeout == 60.0
        assert cfg.max_retries == 2
        assert cfg.rate_limit is None

    def test_dispatch_config_defaults(self):
        cfg = DispatchConfig()
        assert cfg.default_timeout is None
        assert cfg.default_platform is None

    def test_logging_config_defaults(self):
        cfg = LoggingConfig()
        assert cfg.file == ""
        assert cfg.structured is False

    def test_api_key_hidden_from_repr(self):
        cfg = ProviderConfig(api_key="sk-very-secret")
        assert "sk-very-secret" not in repr(cfg)


# ─── Schema Validation ────────────────────────────────────────


class TestSchemaValidation:
    def test_from_dict(self):
        data = {
            "providers": {
                "router": {
                    "type": "openrouter",
                    "api_key_env": "OPENROUTER_API_KEY",
                    "rate_limit": {"requests_per_minute": 20},
                }
            },
            "dispatch": {"default_platform": "gitlab"},
        }
        cfg = TammaConfig.model_validate(data)
        assert cfg.providers["router"].type == "openrouter"
        assert cfg.providers["router"].rate_limit.requests_per_minute == 20
        assert cfg.dispatch.default_platform == "gitlab"

    @pytest.mark.parametrize("value", [0, -5])
    def test_rate_limit_must_be_positive(self, value):
        with pytest.raises(ValidationError):
            RateLimitConfig(requests_per_minute=value)

    def test_base_url_must_be_http(self):
        with pytest.raises(ValidationError, match="http"):
            PlatformConfig(base_url="gitlab.example.com")

    def test_invalid_type_raises(self):
        with pytest.raises(ValidationError):
            TammaConfig.model_validate({"dispatch": {"max_rate_limit_waits": "lots"}})

    def test_extra_fields_ignored_by_default(self):
        cfg = TammaConfig.model_validate({"unknown_section": {"foo": "bar"}})
        assert cfg.dispatch.max_rate_limit_waits == 3


# ─── Table Merge ──────────────────────────────────────────────


class TestMergeTables:
    def test_nested_merge(self):
        base = {"dispatch": {"max_rate_limit_waits": 3, "default_timeout": 10}}
        override = {"dispatch": {"max_rate_limit_waits": 5}}
        result = merge_tables(base, override)
        assert result["dispatch"] == {"max_rate_limit_waits": 5, "default_timeout": 10}

    def test_override_replaces_non_dict(self):
        assert merge_tables({"key": "old"}, {"key": "new"}) == {"key": "new"}

    def test_base_unchanged(self):
        base = {"a": {"b": 1}}
        merge_tables(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


# ─── TOML Loading ─────────────────────────────────────────────


class TestLoadConfig:
    def test_defaults_when_no_files(self, isolated):
        cfg = load_config()
        assert "anthropic" in cfg.providers
        assert "github" in cfg.platforms

    def test_load_from_explicit_path(self, tmp_path):
        toml_file = tmp_path / "test.toml"
        toml_file.write_text(
            "[dispatch]\n"
            "default_timeout = 30.0\n"
            "\n"
            "[platforms.forge]\n"
            'type = "forgejo"\n'
            'base_url = "https://codeberg.org/api/v1"\n'
        )
        cfg = load_config(path=toml_file)
        assert cfg.dispatch.default_timeout == 30.0
        assert cfg.platforms["forge"].type == "forgejo"
        assert cfg.dispatch.max_rate_limit_waits == 3

    def test_explicit_path_not_found_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(path=tmp_path / "nonexistent.toml")

    def test_invalid_toml_raises(self, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text("[invalid\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path=bad)

    def test_validation_failure_raises_config_error(self, tmp_path):
        toml_file = tmp_path / "test.toml"
        toml_file.write_text("[providers.openai.rate_limit]\nrequests_per_minute = 0\n")
        with pytest.raises(ConfigError, match="validation failed"):
            load_config(path=toml_file)

    def test_overrides_beat_file(self, tmp_path):
        toml_file = tmp_path / "test.toml"
        toml_file.write_text("[dispatch]\nmax_rate_limit_waits = 5\n")
        cfg = load_config(
            path=toml_file, overrides={"dispatch": {"max_rate_limit_waits": 0}}
        )
        assert cfg.dispatch.max_rate_limit_waits == 0


# ─── Environment Variables ────────────────────────────────────


class TestEnvVarOverrides:
    def test_tamma_config_env_path(self, isolated, monkeypatch):
        toml_file = isolated / "env.toml"
        toml_file.write_text('[dispatch]\ndefault_platform = "gitlab"\n')
        monkeypatch.setenv("TAMMA_CONFIG", str(toml_file))
        assert load_config().dispatch.default_platform == "gitlab"

    def test_tamma_config_env_missing_file_raises(self, isolated, monkeypatch):
        monkeypatch.setenv("TAMMA_CONFIG", str(isolated / "nope.toml"))
        with pytest.raises(ConfigError, match="non-existent"):
            load_config()

    def test_api_key_resolved_from_env(self, tmp_path, monkeypatch):
        toml_file = tmp_path / "test.toml"
        toml_file.write_text('[platforms.gitlab]\napi_key_env = "GITLAB_TOKEN"\n')
        monkeypatch.setenv("GITLAB_TOKEN", "glpat-test")
        cfg = load_config(path=toml_file)
        assert cfg.platforms["gitlab"].api_key == "glpat-test"

    def test_api_key_not_overwritten_if_set(self, tmp_path, monkeypatch):
        toml_file = tmp_path / "test.toml"
        toml_file.write_text(
            "[providers.anthropic]\n"
            'api_key = "sk-explicit"\n'
            'api_key_env = "ANTHROPIC_API_KEY"\n'
        )
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-from-env")
        cfg = load_config(path=toml_file)
        assert cfg.providers["anthropic"].api_key == "sk-explicit"

    def test_api_key_none_when_env_not_set(self, tmp_path, monkeypatch):
        toml_file = tmp_path / "test.toml"
        toml_file.write_text('[providers.google]\napi_key_env = "MISSING_KEY_VAR"\n')
        monkeypatch.delenv("MISSING_KEY_VAR", raising=False)
        cfg = load_config(path=toml_file)
        assert cfg.providers["google"].api_key is None


# ─── File Discovery ───────────────────────────────────────────


class TestFileDiscovery:
    def test_project_local_config(self, isolated):
        (isolated / "tamma.toml").write_text("[logging]\nlevel = \"DEBUG\"\n")
        assert load_config().logging.level == "DEBUG"

    def test_project_overrides_user(self, isolated, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(isolated / "xdg"))
        xdg_dir = isolated / "xdg" / "tamma"
        xdg_dir.mkdir(parents=True)
        (xdg_dir / "config.toml").write_text(
            "[dispatch]\nmax_rate_limit_waits = 1\ndefault_timeout = 9.0\n"
        )
        (isolated / "tamma.toml").write_text("[dispatch]\nmax_rate_limit_waits = 4\n")

        cfg = load_config()
        assert cfg.dispatch.max_rate_limit_waits == 4
        assert cfg.dispatch.default_timeout == 9.0
