"""Tests for chorus/pipelines/store.py."""

import json

import pytest

from chorus.errors import ConfigurationError
from chorus.pipelines.config import PipelineConfig, PipelineType
from chorus.pipelines.store import ConfigStore


def serial_config(name: str = "chain", providers: list[str] | None = None) -> PipelineConfig:
    return PipelineConfig(name=name, type=PipelineType.SERIAL, providers=providers or ["openai", "claude"])


def test_missing_file_is_empty_store(store):
    assert store.list() == []
    assert not store.path.exists()


def test_save_and_reload_from_disk(store):
    store.save(serial_config())

    fresh = ConfigStore(store.path)
    assert fresh.get("chain") == serial_config()


def test_file_is_single_sorted_indented_document(store):
    store.save(serial_config("zeta"))
    store.save(serial_config("alpha"))

    text = store.path.read_text(encoding="utf-8")
    data = json.loads(text)
    assert list(data) == ["alpha", "zeta"]
    assert '\n  "alpha": {\n    "name": "alpha"' in text
    assert not store.path.with_name(store.path.name + ".tmp").exists()


def test_list_is_alphabetical(store):
    for name in ("gamma", "alpha", "beta"):
        store.save(serial_config(name))
    assert store.list() == ["alpha", "beta", "gamma"]
    assert store.list_names() == store.list()
    assert [c.name for c in store.list_configs()] == ["alpha", "beta", "gamma"]


def test_save_rejects_invalid_config(store):
    with pytest.raises(ConfigurationError, match="simple pipeline requires provider"):
        store.save(PipelineConfig(name="bad", type=PipelineType.SIMPLE))
    assert not store.exists("bad")


def test_get_returns_a_copy(store):
    store.save(serial_config())
    copy = store.get("chain")
    copy.providers.append("grok")
    assert store.get("chain").providers == ["openai", "claude"]


def test_get_unknown_name(store):
    with pytest.raises(ConfigurationError, match="pipeline config 'nope' not found"):
        store.get("nope")


def test_delete(store):
    store.save(serial_config())
    store.delete("chain")
    assert not store.exists("chain")
    assert ConfigStore(store.path).list() == []
    with pytest.raises(ConfigurationError, match="not found"):
        store.delete("chain")


def test_export_import_round_trip(tmp_path, store):
    store.save(serial_config())
    exported = store.export("chain")

    other = ConfigStore(tmp_path / "other.json")
    imported = other.import_(exported)

    assert imported == serial_config()
    assert other.get("chain") == store.get("chain")


def test_import_rejects_invalid_document(store):
    with pytest.raises(ConfigurationError):
        store.import_(json.dumps({"name": "x", "type": "nested"}))


def test_load_rejects_malformed_file(store):
    store.path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="failed to parse config file"):
        store.load()


def test_load_uses_keys_as_names(store):
    store.path.write_text(
        json.dumps({"renamed": {"name": "old", "type": "simple", "provider": "claude"}}),
        encoding="utf-8",
    )
    assert store.get("renamed").name == "renamed"


def test_clear(store):
    store.save(serial_config())
    store.clear()
    assert store.list() == []
    assert json.loads(store.path.read_text(encoding="utf-8")) == {}


def test_backup_and_restore(store):
    store.save(serial_config("keep"))
    backup = store.backup()
    assert backup is not None and backup.exists()

    store.clear()
    store.restore(backup)
    assert store.list() == ["keep"]


def test_backup_without_file(store):
    assert store.backup() is None


def test_filters(store):
    store.save(serial_config("chain", ["openai", "claude"]))
    store.save(PipelineConfig(name="solo", type=PipelineType.SIMPLE, provider="gemini"))

    assert [c.name for c in store.filter_by_type(PipelineType.SIMPLE)] == ["solo"]
    assert [c.name for c in store.filter_by_provider("claude")] == ["chain"]
    assert store.filter_by_provider("grok") == []
