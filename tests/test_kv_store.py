from __future__ import annotations

from pathlib import Path

import pytest

from prayerkeeper.kv_store import JsonFileStore, StoreError, open_store


def test_typed_values_round_trip(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store.json")

    store.save("name", "makkah")
    store.save("hour", 21)
    store.save("latitude", 21.4225)
    store.save("enabled", True)
    store.save("tags", ["a", "b"])

    assert store.get_str("name") == "makkah"
    assert store.get_int("hour") == 21
    assert store.get_float("latitude") == 21.4225
    assert store.get_bool("enabled") is True
    assert store.get_str_list("tags") == ["a", "b"]


def test_getters_do_not_cross_types(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store.json")
    store.save("enabled", True)
    store.save("hour", 7)

    assert store.get_int("enabled") is None
    assert store.get_bool("hour") is None
    assert store.get_str("hour") is None
    assert store.get_float("hour") == 7.0


def test_unsupported_value_is_rejected(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store.json")

    with pytest.raises(TypeError):
        store.save("bad", {"nested": 1})  # type: ignore[arg-type]


def test_remove_and_list_keys_by_prefix(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store.json")
    store.save("prayer_times_a", "x")
    store.save("prayer_times_b", "y")
    store.save("app_settings", "{}")

    store.remove("prayer_times_a")
    store.remove("missing")

    assert store.list_keys("prayer_times_") == ["prayer_times_b"]
    assert store.list_keys() == ["app_settings", "prayer_times_b"]


def test_values_written_by_another_instance_are_visible(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    foreground = JsonFileStore(path)
    background = JsonFileStore(path)

    foreground.save("tesbih_reminder_hour", 20)

    assert background.get_int("tesbih_reminder_hour") == 20


def test_corrupt_file_raises_store_error(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not-json", encoding="utf-8")
    store = JsonFileStore(path)

    with pytest.raises(StoreError):
        store.get_str("anything")
    assert path.read_text(encoding="utf-8") == "{not-json"


def test_undecodable_bytes_raise_store_error(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_bytes(b'{"a": "\xff"}')
    store = JsonFileStore(path)

    with pytest.raises(StoreError):
        store.get_str("a")


def test_open_store_closes_on_exit(tmp_path: Path) -> None:
    with open_store(tmp_path / "store.json") as store:
        store.save("k", "v")

    with pytest.raises(StoreError):
        store.get_str("k")
