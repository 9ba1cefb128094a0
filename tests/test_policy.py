import json

import pytest

from kai.policy import Mode, PolicyStore


def test_defaults_without_file(tmp_path):
    store = PolicyStore(tmp_path / "settings.json")
    assert store.state.mode is Mode.PUBLIC
    assert store.state.auto_status_view
    assert not (tmp_path / "settings.json").exists()


def test_mode_change_persists(tmp_path):
    path = tmp_path / "settings.json"
    store = PolicyStore(path)
    store.set_mode("PRIVATE")
    assert store.state.is_private
    assert json.loads(path.read_text()) == {"mode": "private", "autoViewStatus": True}

    reloaded = PolicyStore(path)
    assert reloaded.state.mode is Mode.PRIVATE


def test_enum_mode_accepted(tmp_path):
    store = PolicyStore(tmp_path / "settings.json")
    assert store.update(mode=Mode.PRIVATE).mode is Mode.PRIVATE


def test_invalid_mode_raises(tmp_path):
    store = PolicyStore(tmp_path / "settings.json")
    with pytest.raises(ValueError):
        store.set_mode("secret")
    assert store.state.mode is Mode.PUBLIC


def test_owner_change_is_not_persisted(tmp_path):
    path = tmp_path / "settings.json"
    store = PolicyStore(path)
    store.set_owner("1111@chat")
    assert store.state.owner_identity == "1111@chat"
    assert not path.exists()


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    store = PolicyStore(path)
    assert store.state.mode is Mode.PUBLIC


def test_invalid_values_ignored(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"mode": "weird", "autoViewStatus": "yes"}), encoding="utf-8")
    store = PolicyStore(path)
    assert store.state.mode is Mode.PUBLIC
    assert store.state.auto_status_view is True


def test_write_failure_keeps_memory_state(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = PolicyStore(blocker / "settings.json")
    store.set_auto_status_view(False)
    assert store.state.auto_status_view is False
