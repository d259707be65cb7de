import json
import logging

import pytest

from servicekit.config import Config, ConfigError, load_and_merge_files, merge_maps


def test_merge_maps_recurses_into_nested_maps():
    dst = {"a": {"x": 1, "y": 2}, "b": 1}
    src = {"a": {"y": 3, "z": 4}, "c": 5}
    result = merge_maps(dst, src)
    assert result is dst
    assert result == {"a": {"x": 1, "y": 3, "z": 4}, "b": 1, "c": 5}


def test_merge_maps_replaces_non_map_values():
    dst = {"a": {"x": 1}, "b": [1, 2]}
    result = merge_maps(dst, {"a": "flat", "b": {"k": "v"}})
    assert result == {"a": "flat", "b": {"k": "v"}}


def test_merge_maps_with_none_source_keeps_destination():
    assert merge_maps({"a": 1}, None) == {"a": 1}


def test_load_and_merge_files_merges_json_and_yaml(tmp_path):
    config_map = tmp_path / "configmap"
    vault = tmp_path / "vault"
    config_map.mkdir()
    vault.mkdir()
    (config_map / "a.json").write_text(json.dumps({"dev": {"host": "a", "port": 1}}))
    (config_map / "b.yaml").write_text("dev:\n  port: 2\n")
    (config_map / "ignored.txt").write_text("not: config")
    (vault / "secrets.yml").write_text("dev:\n  user: admin\n")

    merged = load_and_merge_files(str(config_map), str(vault))
    assert merged == {"dev": {"host": "a", "port": 2, "user": "admin"}}


def test_load_and_merge_files_walks_subdirectories(tmp_path):
    sub = tmp_path / "nested"
    sub.mkdir()
    (sub / "deep.json").write_text(json.dumps({"k": "v"}))
    assert load_and_merge_files(str(tmp_path)) == {"k": "v"}


def test_load_and_merge_files_accepts_single_file(tmp_path):
    path = tmp_path / "one.yml"
    path.write_text("key: value\n")
    assert load_and_merge_files(str(path)) == {"key": "value"}


def test_load_and_merge_files_empty_yaml_is_ignored(tmp_path):
    (tmp_path / "empty.yaml").write_text("")
    assert load_and_merge_files(str(tmp_path)) == {}


def test_load_and_merge_files_invalid_json_raises(tmp_path):
    (tmp_path / "bad.json").write_text("{not json")
    with pytest.raises(ConfigError, match="error parsing JSON file"):
        load_and_merge_files(str(tmp_path))


def test_load_and_merge_files_invalid_yaml_raises(tmp_path):
    (tmp_path / "bad.yaml").write_text("a: [1, 2\n")
    with pytest.raises(ConfigError, match="error parsing YAML file"):
        load_and_merge_files(str(tmp_path))


def test_load_and_merge_files_missing_path_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_and_merge_files(str(tmp_path / "missing"))


def _make_config(tmp_path, env, data):
    config_map = tmp_path / "configmap"
    vault = tmp_path / "vault"
    config_map.mkdir()
    vault.mkdir()
    (config_map / "config.json").write_text(json.dumps(data))
    return Config(env, str(config_map), str(vault))


def test_config_get_from_environment(tmp_path):
    config = _make_config(tmp_path, "dev", {"dev": {"key": "value"}})
    assert config.get("key") == "value"


def test_config_get_falls_back_to_top_level(tmp_path):
    config = _make_config(tmp_path, "prod", {"prod": {}, "direct": 42})
    assert config.get("direct") == 42


def test_config_get_missing_key_raises(tmp_path):
    config = _make_config(tmp_path, "dev", {"dev": {"key": "value"}})
    with pytest.raises(ConfigError, match="key 'other' not found in environment 'dev'"):
        config.get("other")


def test_config_get_missing_environment_raises(tmp_path):
    config = _make_config(tmp_path, "staging", {"dev": {"key": "value"}})
    with pytest.raises(ConfigError, match="environment 'staging' not found"):
        config.get("key")


def test_config_logs_load_failure_and_has_no_values(tmp_path, caplog):
    logger = logging.getLogger("servicekit-test")
    with caplog.at_level(logging.ERROR, logger="servicekit-test"):
        config = Config("dev", str(tmp_path / "nope"), str(tmp_path / "nada"), logger)
    assert "error reading and merging files" in caplog.text
    with pytest.raises(ConfigError):
        config.get("anything")