"""Tests for file-backed model persistence."""

import asyncio
import json

import numpy as np
import pytest

from handsign.model import TemplateModel
from handsign.store import ModelStore, PersistenceError, check_model_name


@pytest.fixture
def store(tmp_path):
    return ModelStore(tmp_path / "models")


@pytest.fixture
def trained(make_sample):
    model = TemplateModel("greetings", 3)
    model.train("hello", make_sample(3, seed=1))
    model.train("bye", make_sample(3, seed=2))
    return model


class TestModelStore:

    def test_save_and_load(self, store, trained):
        async def scenario():
            await store.save("greetings", trained)
            return await store.load("greetings")

        loaded = asyncio.run(scenario())
        assert loaded.labels == ["hello", "bye"]
        assert loaded.counts == trained.counts
        np.testing.assert_allclose(loaded.averages["bye"], trained.averages["bye"])

    def test_saves_snapshot_format(self, store, trained):
        asyncio.run(store.save("greetings", trained.to_snapshot()))
        data = json.loads((store.directory / "greetings.json").read_text())
        assert data["version"] == 2
        assert data["name"] == "greetings"
        assert data["numberOfFrames"] == 3

    def test_load_missing_returns_none(self, store):
        assert asyncio.run(store.load("nothing")) is None

    def test_list_names(self, store, trained):
        async def scenario():
            assert await store.list_names() == []
            await store.save("zeta", trained)
            await store.save("alpha", TemplateModel("alpha", 2))
            return await store.list_names()

        store.directory.mkdir(parents=True)
        (store.directory / ".tmp-partial.json").write_text("{}")
        (store.directory / "notes.txt").write_text("ignored")
        assert asyncio.run(scenario()) == ["alpha", "zeta"]

    def test_exists(self, store):
        async def scenario():
            before = await store.exists("m")
            await store.save("m", TemplateModel("m", 2))
            return before, await store.exists("m")

        assert asyncio.run(scenario()) == (False, True)

    def test_overwrite(self, store, trained, make_sample):
        async def scenario():
            await store.save("greetings", trained)
            trained.train("wave", make_sample(3, seed=7))
            await store.save("greetings", trained)
            return await store.load("greetings")

        assert asyncio.run(scenario()).labels == ["hello", "bye", "wave"]

    def test_corrupt_snapshot(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / "broken.json").write_text('{"name": "broken"}')
        with pytest.raises(PersistenceError):
            asyncio.run(store.load("broken"))

    @pytest.mark.parametrize("averages", [
        {"a": [["abc"]]},
        {"a": [[["x", 0.0, 0.0]]]},
        {"a": [[[None, 0.0, 0.0]]]},
        {"a": [[[True, 0.0, 0.0]]]},
    ])
    def test_non_numeric_template_is_persistence_error(self, store, averages):
        store.directory.mkdir(parents=True)
        snapshot = {
            "name": "m",
            "numberOfFrames": 1,
            "labels": ["a"],
            "averages": averages,
            "counts": {"a": 1},
        }
        (store.directory / "m.json").write_text(json.dumps(snapshot))
        with pytest.raises(PersistenceError):
            asyncio.run(store.load("m"))

    def test_non_finite_template_is_persistence_error(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / "m.json").write_text(
            '{"name": "m", "numberOfFrames": 1, "labels": ["a"], '
            '"averages": {"a": [[[NaN, 0.0, 0.0]]]}, "counts": {"a": 1}}'
        )
        with pytest.raises(PersistenceError):
            asyncio.run(store.load("m"))

    def test_legacy_snapshot_loads(self, store):
        store.directory.mkdir(parents=True)
        legacy = {
            "name": "old",
            "numberOfFrames": 1,
            "labels": ["a"],
            "averages": {"a": [[[0.0, 0.0, 0.0]] * 21]},
            "counts": {"a": 4},
        }
        (store.directory / "old.json").write_text(json.dumps(legacy))
        model = asyncio.run(store.load("old"))
        assert model.landmark_count == 21
        assert model.counts == {"a": 4}

    def test_write_failure(self, tmp_path, trained):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = ModelStore(blocker)
        with pytest.raises(PersistenceError):
            asyncio.run(store.save("greetings", trained))


@pytest.mark.parametrize("name", ["", "../escape", "a/b", "a\\b", ".hidden", "trailing.", "x" * 200])
def test_unsafe_names_rejected(name):
    with pytest.raises(PersistenceError):
        check_model_name(name)


@pytest.mark.parametrize("name", ["greetings", "Model 2", "abc_def-1.v2"])
def test_safe_names_accepted(name):
    assert check_model_name(name) == name
