"""Tests for arkive.core.config."""

from pathlib import Path

from arkive.core.config import DEFAULTS, _deep_merge, config_path, load_config, resolve_home


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"jobs": {"poll_interval": 1.0, "heartbeat_cap": 95}}
        result = _deep_merge(base, {"jobs": {"poll_interval": 0.2}})
        assert result["jobs"]["poll_interval"] == 0.2
        assert result["jobs"]["heartbeat_cap"] == 95

    def test_does_not_mutate_base(self):
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base["a"]["b"] == 1


class TestLoadConfig:
    def test_returns_defaults_when_no_file(self, tmp_path: Path):
        config = load_config(tmp_path / "nonexistent.yaml")
        assert config["copy"]["chunk_size"] == DEFAULTS["copy"]["chunk_size"]
        assert config["snapshot"]["provider"] == "passthrough"

    def test_loads_and_merges(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("jobs:\n  deadline: 600\nlogging:\n  level: debug\n", encoding="utf-8")

        config = load_config(config_file)
        assert config["jobs"]["deadline"] == 600
        assert config["jobs"]["poll_interval"] == 1.0
        assert config["logging"]["level"] == "debug"

    def test_home_env_override(self, tmp_path: Path, monkeypatch):
        custom_home = tmp_path / "custom"
        monkeypatch.setenv("ARKIVE_HOME", str(custom_home))

        config = load_config(tmp_path / "nonexistent.yaml")
        assert config["home"] == str(custom_home.resolve())
        assert resolve_home() == custom_home.resolve()
        assert config_path() == custom_home.resolve() / "config.yaml"

    def test_handles_empty_file(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("", encoding="utf-8")
        assert load_config(config_file)["imaging"]["chunk_size"] == 1024 * 1024

    def test_invalid_yaml_falls_back(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("jobs: [unclosed\n", encoding="utf-8")
        assert load_config(config_file)["jobs"]["poll_interval"] == 1.0

    def test_non_mapping_falls_back(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n", encoding="utf-8")
        assert load_config(config_file)["manifest"]["encoding"] == "utf-8"
