import json

import pytest

from emuident import config
from emuident.common.exceptions import ConfigurationError
from emuident.core.config_manager import DEFAULT_SOURCES, ConfigManager


def test_defaults_without_file(tmp_path):
    cm = ConfigManager(tmp_path / "settings.json")

    assert cm.get("hash_workers") == config.MAX_HASH_WORKERS
    assert ".gb" in cm.get("extensions")
    assert cm.source_settings("local")["priority"] == 100
    assert cm.source_settings("unknown") == {}


def test_save_and_reload(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    cm = ConfigManager(path)
    cm.set("dats_dir", "/srv/dats")

    assert cm.save()
    assert ConfigManager(path).get("dats_dir") == "/srv/dats"


def test_stored_sources_merge_over_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"sources": {"hasheous": {"api_key": "abc"}, "custom": {"priority": 1}}}))

    cm = ConfigManager(path)

    hasheous = cm.source_settings("hasheous")
    assert hasheous["api_key"] == "abc"
    assert hasheous["priority"] == DEFAULT_SOURCES["hasheous"]["priority"]
    assert cm.source_settings("custom") == {"priority": 1}


def test_defaults_are_not_shared(tmp_path):
    cm = ConfigManager(tmp_path / "a.json")
    cm.values["sources"]["local"]["priority"] = 1

    assert DEFAULT_SOURCES["local"]["priority"] == 100
    assert ConfigManager(tmp_path / "b.json").source_settings("local")["priority"] == 100


def test_corrupt_file_keeps_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    cm = ConfigManager(path)

    assert cm.get("dats_dir") == ""
    assert cm.get("hash_workers") == config.MAX_HASH_WORKERS


def test_non_object_file_keeps_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2]")
    assert ConfigManager(path).get("base_dir") == config.BASE_DEFAULT


def test_save_failure_returns_false(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    cm = ConfigManager(blocker / "settings.json")
    assert cm.save() is False


@pytest.mark.parametrize(
    "settings",
    [{"interval": "fast"}, {"timeout": -1}, {"priority": True}],
)
def test_invalid_source_settings(tmp_path, settings):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"sources": {"thegamesdb": settings}}))

    with pytest.raises(ConfigurationError) as info:
        ConfigManager(path).source_settings("thegamesdb")
    assert "sources.thegamesdb." in str(info.value)
