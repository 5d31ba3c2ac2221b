"""Tests for model artifact persistence and the template dataset."""

import json

import numpy as np
import pytest

from signseq.classifier import GestureModel, ModelFormatError
from signseq.store import ModelStore, SequenceDataset


def _seq(n, dim=4, value=0.0):
    return [np.full(dim, value + i, dtype=np.float32) for i in range(n)]


class TestModelStore:
    def test_missing_file(self, tmp_path):
        store = ModelStore(tmp_path / "model.json")
        assert not store.exists()
        assert store.load() is None
        assert store.load_model() is None

    def test_save_and_load(self, tmp_path):
        model = GestureModel.from_sequences([_seq(3), _seq(5, value=2)], ["a", "b"])
        store = ModelStore(tmp_path / "models" / "model.json")
        store.save(model)

        assert store.exists()
        data = store.load()
        assert data["featureDimension"] == 4
        loaded = store.load_model(expected_dim=4)
        assert loaded.counts() == {"a": 1, "b": 1}
        np.testing.assert_array_equal(loaded.templates["b"][0], np.array(_seq(5, value=2)))

    def test_save_raw_dict(self, tmp_path):
        store = ModelStore(tmp_path / "model.json")
        store.save({"formatVersion": 1})
        assert store.load() == {"formatVersion": 1}
        assert not (tmp_path / "model.json.tmp").exists()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "model.json"
        path.write_text("{not json")
        with pytest.raises(ModelFormatError):
            ModelStore(path).load()

    def test_non_object(self, tmp_path):
        path = tmp_path / "model.json"
        path.write_text("[1, 2]")
        with pytest.raises(ModelFormatError):
            ModelStore(path).load()

    def test_dimension_mismatch_on_load(self, tmp_path):
        store = ModelStore(tmp_path / "model.json")
        store.save(GestureModel.from_sequences([_seq(3)], ["a"]))
        with pytest.raises(ModelFormatError):
            store.load_model(expected_dim=126)

    def test_clear(self, tmp_path):
        store = ModelStore(tmp_path / "model.json")
        store.save({"formatVersion": 1})
        store.clear()
        assert not store.exists()
        store.clear()


class TestSequenceDataset:
    def test_add_and_counts(self):
        data = SequenceDataset()
        data.add("hello", _seq(3), duration_ms=2000)
        data.add("hello", _seq(4))
        data.add("bye", _seq(5))
        assert data.labels == ["bye", "hello"]
        assert data.counts() == {"hello": 2, "bye": 1}
        assert data.samples[0].duration_ms == 2000

    def test_add_rejects_empty(self):
        data = SequenceDataset()
        with pytest.raises(ValueError):
            data.add("hello", [])
        with pytest.raises(ValueError):
            data.add("", _seq(3))

    def test_stats(self):
        data = SequenceDataset()
        assert data.stats() == {"sample_count": 0, "label_count": 0, "avg_sequence_length": 0}
        data.add("a", _seq(2))
        data.add("b", _seq(4))
        data.add("b", _seq(6))
        assert data.stats() == {"sample_count": 3, "label_count": 2, "avg_sequence_length": 4}

    def test_remove_label(self):
        data = SequenceDataset()
        data.add("a", _seq(2))
        data.add("b", _seq(2))
        data.add("a", _seq(2))
        assert data.remove_label("a") == 2
        assert data.labels == ["b"]
        assert data.remove_label("zzz") == 0

    def test_clear(self):
        data = SequenceDataset()
        data.add("a", _seq(2))
        data.clear()
        assert data.samples == []

    def test_build_model(self):
        data = SequenceDataset()
        data.add("a", _seq(2))
        data.add("a", _seq(3))
        data.add("b", _seq(4))
        model = data.build_model(feature_dim=4, params={"window": 2})
        assert model.counts() == {"a": 2, "b": 1}
        assert model.params["window"] == 2

    def test_build_model_empty(self):
        with pytest.raises(ValueError):
            SequenceDataset().build_model()

    def test_build_model_wrong_dimension(self):
        data = SequenceDataset()
        data.add("a", _seq(2))
        with pytest.raises(ModelFormatError):
            data.build_model(feature_dim=126)

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "data" / "dataset.json"
        data = SequenceDataset()
        data.add("a", _seq(2), duration_ms=1500)
        data.save(path)

        raw = json.loads(path.read_text())
        assert raw["version"] == 1
        assert raw["samples"][0]["durationMs"] == 1500

        loaded = SequenceDataset.load(path)
        assert loaded.counts() == {"a": 1}
        assert loaded.samples[0].sequence == data.samples[0].sequence
        assert loaded.created_at == data.created_at

    def test_load_missing_starts_empty(self, tmp_path):
        assert SequenceDataset.load(tmp_path / "nope.json").samples == []

    def test_load_top_level_list(self, tmp_path):
        path = tmp_path / "dataset.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            SequenceDataset.load(path)

    def test_load_invalid(self, tmp_path):
        path = tmp_path / "dataset.json"
        path.write_text(json.dumps({"version": 1}))
        with pytest.raises(ValueError):
            SequenceDataset.load(path)
