"""Tests for configuration loading and validation."""

import json

import pytest
import yaml

from context_compactor.config import load_config, validate_config


class TestLoadConfig:
    def test_load_defaults(self):
        config = load_config(config_dict={})
        assert config.version == "0.1"
        assert config.context_window == 200_000
        assert config.accountant.buffer_policy == {64_000: 27_000, 128_000: 30_000, 200_000: 40_000}
        assert config.truncation.savings_threshold == 0.30
        assert config.validator.reject_threshold == 0.70
        assert config.validator.modify_threshold == 0.40
        assert config.storage.backend == "filesystem"

    def test_top_level_shortcuts(self):
        config = load_config(config_dict={
            "buffer_policy": {"32_000": 8_000},
            "keep": "quarter",
            "savings_threshold": 0.5,
            "risk_thresholds": {"reject": 0.8, "modify": 0.3},
        })
        assert config.accountant.buffer_policy == {32_000: 8_000}
        assert config.truncation.keep == "quarter"
        assert config.truncation.savings_threshold == 0.5
        assert config.validator.reject_threshold == 0.8
        assert config.validator.modify_threshold == 0.3

    def test_partial_weights_merge(self):
        config = load_config(config_dict={"relevance": {"weights": {"temporal": 0.5}}})
        assert config.relevance.weights["temporal"] == 0.5
        assert config.relevance.weights["semantic"] == 0.20

    def test_load_from_yaml_file(self, tmp_path):
        path = tmp_path / "context-compactor.yaml"
        path.write_text(yaml.dump({"context_window": 128_000, "dedup": {"read_tools": ["open"]}}))
        config = load_config(path)
        assert config.context_window == 128_000
        assert config.dedup.read_tools == ["open"]

    def test_load_from_json_file(self, tmp_path):
        path = tmp_path / "context-compactor.json"
        path.write_text(json.dumps({"recent_window_pairs": 5}))
        assert load_config(path).recent_window_pairs == 5

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_discovery(self, tmp_path, monkeypatch):
        (tmp_path / "context-compactor.yml").write_text("context_window: 64000\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path)
        assert load_config().context_window == 64_000

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "context-compactor.yaml"
        path.write_text("")
        assert load_config(path).context_window == 200_000


class TestValidateConfig:
    def test_defaults_are_valid(self):
        assert validate_config(load_config(config_dict={})) == []

    def test_inverted_thresholds(self):
        config = load_config(config_dict={"risk_thresholds": {"reject": 0.3, "modify": 0.6}})
        errors = validate_config(config)
        assert any("risk thresholds" in e for e in errors)

    def test_bad_keep(self):
        errors = validate_config(load_config(config_dict={"keep": "most"}))
        assert any("keep policy" in e for e in errors)

    def test_buffer_larger_than_window(self):
        errors = validate_config(load_config(config_dict={"buffer_policy": {1000: 2000}}))
        assert any("buffer_policy" in e for e in errors)

    def test_unknown_backend(self):
        errors = validate_config(load_config(config_dict={"storage": {"backend": "redis"}}))
        assert any("storage backend" in e for e in errors)
