"""Tests for configuration loading."""

import pytest

from triage_access.config import (
    AccessConfig,
    ConfigLoader,
    LogFormat,
    RateLimitCategoryConfig,
    ServiceTokenDefinition,
    StoreBackend,
    deep_merge,
    resolve_env_vars,
)
from triage_access.errors import AccessError


class TestResolveEnvVars:
    """Tests for resolve_env_vars."""

    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_SECRET", "s3cret")
        assert resolve_env_vars("${TRIAGE_SECRET}") == "s3cret"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("TRIAGE_MISSING", raising=False)
        assert resolve_env_vars("redis://${TRIAGE_MISSING:-localhost}:6379") == (
            "redis://localhost:6379"
        )

    def test_required_missing(self, monkeypatch):
        monkeypatch.delenv("TRIAGE_MISSING", raising=False)
        with pytest.raises(AccessError) as exc_info:
            resolve_env_vars("${TRIAGE_MISSING:?session secret required}")
        assert exc_info.value.code == "CONFIG_INVALID"
        assert exc_info.value.detail == "session secret required"


class TestDeepMerge:
    def test_nested(self):
        merged = deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}})
        assert merged == {"a": {"b": 1, "c": 3}}


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_defaults(self):
        config = ConfigLoader().load_defaults()
        assert config == AccessConfig()
        assert config.store.backend == StoreBackend.MEMORY
        assert config.quota.scans["free"] == 10
        assert config.rate_limits.categories["audit"].max_per_window == 10

    def test_partial_override_keeps_defaults(self):
        config = ConfigLoader().load_from_dict({"quota": {"scans": {"free": 25}}})
        assert config.quota.scans["free"] == 25
        assert config.quota.scans["team"] == 500
        assert config.quota.tokens["free"] == 1000

    def test_typed_sections(self):
        config = ConfigLoader().load_from_dict(
            {
                "credentials": {"service_tokens": [{"name": "worker", "token": "t"}]},
                "rate_limits": {"categories": {"bulk": {"max_per_window": 5}}},
                "store": {"backend": "redis"},
                "logging": {"format": "text"},
            }
        )
        assert config.credentials.service_tokens == [ServiceTokenDefinition("worker", "t")]
        assert config.rate_limits.categories["bulk"] == RateLimitCategoryConfig(5, 60)
        assert config.store.backend == StoreBackend.REDIS
        assert config.logging.format == LogFormat.TEXT

    def test_invalid_backend(self):
        with pytest.raises(AccessError) as exc_info:
            ConfigLoader().load_from_dict({"store": {"backend": "mongo"}})
        assert exc_info.value.code == "CONFIG_INVALID"

    def test_negative_ceiling(self):
        with pytest.raises(AccessError):
            ConfigLoader().load_from_dict({"quota": {"scans": {"free": -1}}})

    def test_validate_warnings(self):
        result = ConfigLoader().validate({"billing": {}, "session": {}})
        assert result.valid
        assert {w.path for w in result.warnings} == {"billing", "session.secret"}

    def test_load_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_SESSION_SECRET", "from-env")
        monkeypatch.delenv("TEST_REDIS_HOST", raising=False)
        path = tmp_path / "triage-access.yaml"
        path.write_text(
            "session:\n"
            "  secret: ${TEST_SESSION_SECRET}\n"
            "store:\n"
            "  redis_url: redis://${TEST_REDIS_HOST:-cache}:6379/1\n"
        )
        loader = ConfigLoader()
        config = loader.load(path)
        assert config.session.secret == "from-env"
        assert config.store.redis_url == "redis://cache:6379/1"
        assert loader.get() is config

    def test_missing_file_without_defaults(self, tmp_path):
        with pytest.raises(AccessError) as exc_info:
            ConfigLoader().load(tmp_path / "absent.yaml", use_defaults=False)
        assert exc_info.value.code == "CONFIG_INVALID"

    def test_missing_file_uses_defaults(self, tmp_path):
        assert ConfigLoader().load(tmp_path / "absent.yaml") == AccessConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("quota: [unclosed\n")
        with pytest.raises(AccessError):
            ConfigLoader().load(path)

    def test_get_before_load(self):
        with pytest.raises(AccessError):
            ConfigLoader().get()
