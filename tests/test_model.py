"""Tests for the incremental template model."""

import numpy as np
import pytest

from handsign.landmarks import Frame, normalize_array, sample_to_array
from handsign.model import (
    TemplateModel,
    ValidationError,
    best_label,
    confidence_scores,
)


class TestConfidenceScores:

    def test_empty(self):
        assert confidence_scores({}) == {}

    def test_sums_to_one_and_orders_by_distance(self):
        scores = confidence_scores({"a": 1.0, "b": 2.0, "c": 4.0})
        assert sum(scores.values()) == pytest.approx(1.0, abs=1e-9)
        assert scores["a"] > scores["b"] > scores["c"]

    def test_zero_distance_dominates(self):
        scores = confidence_scores({"a": 0.0, "b": 1.0})
        assert scores["a"] > 0.999

    def test_best_label_ties_pick_first(self):
        assert best_label({"x": 0.5, "y": 0.5}) == "x"
        assert best_label({}) is None


class TestTraining:

    def test_first_sample_becomes_template(self, make_sample):
        model = TemplateModel("m", 4)
        sample = make_sample(4)
        assert model.train("wave", sample) == (True, "ok")
        assert model.labels == ["wave"]
        assert model.counts == {"wave": 1}
        np.testing.assert_allclose(
            model.averages["wave"], normalize_array(sample_to_array(sample))
        )

    def test_running_mean(self, make_sample):
        model = TemplateModel("m", 3)
        s1, s2 = make_sample(3, seed=1), make_sample(3, seed=2)
        model.train("a", s1)
        model.train("a", s2)
        expected = (normalize_array(sample_to_array(s1)) + normalize_array(sample_to_array(s2))) / 2
        np.testing.assert_allclose(model.averages["a"], expected)
        assert model.counts["a"] == 2

    def test_mean_is_order_independent(self, make_sample):
        samples = [make_sample(3, seed=s) for s in (1, 2, 3)]
        forward, backward = TemplateModel("f", 3), TemplateModel("b", 3)
        for s in samples:
            forward.train("a", s)
        for s in reversed(samples):
            backward.train("a", s)
        np.testing.assert_allclose(forward.averages["a"], backward.averages["a"], atol=1e-9)

    def test_labels_keep_first_seen_order(self, make_sample):
        model = TemplateModel("m", 2)
        for label in ("b", "a", "b", "c"):
            model.train(label, make_sample(2, seed=len(model.labels)))
        assert model.labels == ["b", "a", "c"]

    def test_wrong_length_leaves_model_unchanged(self, make_sample):
        model = TemplateModel("m", 10)
        assert model.train("a", make_sample(9)) == (False, "wrong_length")
        assert model.labels == []
        assert model.averages == {}
        assert model.counts == {}

    def test_empty_label(self, make_sample):
        model = TemplateModel("m", 2)
        assert model.train("", make_sample(2)) == (False, "empty_label")

    def test_empty_frame(self, make_sample):
        model = TemplateModel("m", 2)
        sample = make_sample(1) + [Frame(landmarks=[])]
        assert model.train("a", sample) == (False, "empty_frame")

    def test_ragged_frames(self, make_frame):
        model = TemplateModel("m", 2)
        assert model.train("a", [make_frame(0), make_frame(1, count=20)]) == (False, "ragged_frames")

    def test_missing_anchor_landmarks(self, make_sample):
        model = TemplateModel("m", 2)
        assert model.train("a", make_sample(2, count=8)) == (False, "missing_anchor_landmarks")
        assert model.landmark_count is None

    def test_first_sample_fixes_landmark_count(self, make_sample):
        model = TemplateModel("m", 2)
        model.train("a", make_sample(2))
        assert model.landmark_count == 21
        assert model.train("b", make_sample(2, count=15)) == (False, "landmark_count_mismatch")
        assert model.labels == ["a"]

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            TemplateModel("m", 0)
        with pytest.raises(ValueError):
            TemplateModel("m", 3, landmark_count=0)


class TestPrediction:

    def test_empty_model_returns_empty(self, make_sample):
        assert TemplateModel("m", 3).predict(make_sample(3)) == {}

    def test_exact_match_scores_highest(self, make_sample):
        model = TemplateModel("m", 3)
        s_a, s_b, s_c = (make_sample(3, seed=s) for s in (1, 2, 3))
        model.train("a", s_a)
        model.train("b", s_b)
        model.train("c", s_c)

        scores = model.predict(s_b)
        assert set(scores) == {"a", "b", "c"}
        assert best_label(scores) == "b"
        assert sum(scores.values()) == pytest.approx(1.0, abs=1e-9)
        assert all(0.0 <= v <= 1.0 for v in scores.values())

    def test_invariant_to_translation_and_scale(self, make_sample):
        model = TemplateModel("m", 3)
        s_a, s_b = make_sample(3, seed=1), make_sample(3, seed=2)
        model.train("a", s_a)
        model.train("b", s_b)

        moved = [
            Frame.from_points([(x * 3 + 1, y * 3 - 2, z * 3) for x, y, z in f.landmarks])
            for f in s_a
        ]
        assert best_label(model.predict(moved)) == "a"

    def test_wrong_length_raises(self, make_sample):
        model = TemplateModel("m", 3)
        model.train("a", make_sample(3))
        with pytest.raises(ValidationError) as exc:
            model.predict(make_sample(2))
        assert exc.value.reason == "wrong_length"

    def test_predict_does_not_mutate(self, make_sample):
        model = TemplateModel("m", 3)
        model.train("a", make_sample(3))
        before = model.averages["a"].copy()
        model.predict(make_sample(3, seed=5))
        np.testing.assert_array_equal(model.averages["a"], before)
        assert model.counts == {"a": 1}


class TestSnapshotConversion:

    def test_round_trip(self, make_sample):
        model = TemplateModel("m", 2)
        model.train("b", make_sample(2, seed=1))
        model.train("a", make_sample(2, seed=2))
        model.train("b", make_sample(2, seed=3))

        restored = TemplateModel.from_snapshot(model.to_snapshot())
        assert restored.name == "m"
        assert restored.number_of_frames == 2
        assert restored.labels == ["b", "a"]
        assert restored.counts == {"b": 2, "a": 1}
        assert restored.landmark_count == 21
        for label in model.labels:
            np.testing.assert_allclose(restored.averages[label], model.averages[label])

    def test_copy_is_independent(self, make_sample):
        model = TemplateModel("m", 2)
        model.train("a", make_sample(2))
        clone = model.copy()
        model.train("a", make_sample(2, seed=9))
        assert clone.counts == {"a": 1}
        assert model.counts == {"a": 2}
