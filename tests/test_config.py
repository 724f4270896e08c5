"""Tests for the central configuration loader (tiercache/config.py)."""

import os

import pytest

from tiercache.config import (
    L1Settings,
    L2Settings,
    Settings,
    WriteBackSettings,
    _apply_dict,
    _apply_env_overrides,
    _load_yaml,
    get_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    """Reset the singleton and strip TIERCACHE_* vars around each test."""
    for name in list(os.environ):
        if name.startswith("TIERCACHE_"):
            monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


# ── YAML loading ────────────────────────────────────────


class TestLoadYaml:
    def test_loads_valid_yaml(self, tmp_path):
        f = tmp_path / "cfg.yaml"
        f.write_text("l1:\n  capacity: 42\n")
        data = _load_yaml(f)
        assert data["l1"]["capacity"] == 42

    def test_returns_empty_dict_for_missing_file(self, tmp_path):
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_returns_empty_dict_for_non_dict_yaml(self, tmp_path):
        f = tmp_path / "cfg.yaml"
        f.write_text("- item1\n- item2\n")
        assert _load_yaml(f) == {}


# ── Settings defaults ───────────────────────────────────


class TestSettingsDefaults:
    def test_default_settings_have_expected_values(self):
        s = Settings()
        assert s.l1.capacity == 10000
        assert s.l1.eviction_policy == "lru"
        assert s.l2.ttl_seconds == 300.0
        assert s.manager.write_policy == "write_through"
        assert s.write_back.max_attempts == 5
        assert s.logging.level == "INFO"

    def test_sections_are_independent_instances(self):
        a, b = Settings(), Settings()
        a.l1.capacity = 1
        assert b.l1.capacity == 10000


# ── Dict / env application ──────────────────────────────


class TestApplyDict:
    def test_known_keys_applied(self):
        section = L1Settings()
        _apply_dict(section, {"capacity": 5, "eviction_policy": "fifo"})
        assert section.capacity == 5
        assert section.eviction_policy == "fifo"

    def test_unknown_keys_ignored(self):
        section = L2Settings()
        _apply_dict(section, {"bogus": 1})
        assert not hasattr(section, "bogus")


class TestEnvOverrides:
    def test_int_override(self, monkeypatch):
        monkeypatch.setenv("TIERCACHE_L1_CAPACITY", "123")
        s = Settings()
        _apply_env_overrides(s)
        assert s.l1.capacity == 123

    def test_float_and_str_overrides(self, monkeypatch):
        monkeypatch.setenv("TIERCACHE_L2_TTL_SECONDS", "12.5")
        monkeypatch.setenv("TIERCACHE_MANAGER_WRITE_POLICY", "write_back")
        s = Settings()
        _apply_env_overrides(s)
        assert s.l2.ttl_seconds == 12.5
        assert s.manager.write_policy == "write_back"

    def test_bool_override(self, monkeypatch):
        monkeypatch.setenv("TIERCACHE_WRITE_BACK_INCLUDE_L2", "false")
        s = Settings()
        _apply_env_overrides(s)
        assert s.write_back.include_l2 is False

    def test_invalid_value_keeps_default(self, monkeypatch):
        monkeypatch.setenv("TIERCACHE_WRITE_BACK_MAX_ATTEMPTS", "many")
        s = Settings()
        _apply_env_overrides(s)
        assert s.write_back.max_attempts == WriteBackSettings().max_attempts


# ── Singleton ───────────────────────────────────────────


class TestGetSettings:
    def test_yaml_then_env_precedence(self, tmp_path, monkeypatch):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("l1:\n  capacity: 50\nl3:\n  pool_size: 3\n")
        monkeypatch.setenv("TIERCACHE_L1_CAPACITY", "75")
        s = get_settings(yaml_path=cfg, env_path=tmp_path / "missing.env")
        assert s.l1.capacity == 75
        assert s.l3.pool_size == 3

    def test_dotenv_file_is_loaded(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("TIERCACHE_L2_KEY_PREFIX=from-dotenv\n")
        s = get_settings(yaml_path=tmp_path / "none.yaml", env_path=env)
        try:
            assert s.l2.key_prefix == "from-dotenv"
        finally:
            os.environ.pop("TIERCACHE_L2_KEY_PREFIX", None)

    def test_singleton_cached(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("l1:\n  capacity: 9\n")
        first = get_settings(yaml_path=cfg, env_path=tmp_path / "x.env")
        assert get_settings() is first

    def test_force_reload(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("l1:\n  capacity: 9\n")
        first = get_settings(yaml_path=cfg, env_path=tmp_path / "x.env")
        cfg.write_text("l1:\n  capacity: 10\n")
        second = get_settings(yaml_path=cfg, env_path=tmp_path / "x.env", _force_reload=True)
        assert second is not first
        assert second.l1.capacity == 10
