"""
Tests for the KNN background model.
"""
from unittest.mock import MagicMock

import numpy as np
import pytest
from pydantic import ValidationError

from postit_core.background_model import BackgroundModel
from postit_core.config import BackgroundModelConfig

WIDTH, HEIGHT = 64, 48


@pytest.fixture
def scene():
    rng = np.random.default_rng(3)
    return rng.integers(60, 120, size=(HEIGHT, WIDTH, 3), dtype=np.uint8)


def train(model, frame, count=80):
    mask = None
    for _ in range(count):
        mask = model.apply(frame)
    return mask


class TestBackgroundModel:
    def test_static_scene_converges_to_background(self, scene):
        model = BackgroundModel(BackgroundModelConfig(), (WIDTH, HEIGHT))
        mask = train(model, scene)
        assert mask.shape == (HEIGHT, WIDTH)
        assert mask.dtype == np.uint8
        assert np.count_nonzero(mask) == 0

    def test_moving_object_is_foreground(self, scene):
        model = BackgroundModel(BackgroundModelConfig(), (WIDTH, HEIGHT))
        train(model, scene)

        frame = scene.copy()
        frame[10:30, 20:40] = (20, 20, 250)
        mask = model.apply(frame)

        assert np.count_nonzero(mask[10:30, 20:40]) > 0.9 * 400
        assert np.count_nonzero(mask[35:, :]) == 0

    def test_binary_output(self, scene):
        model = BackgroundModel(BackgroundModelConfig(detect_shadows=True), (WIDTH, HEIGHT))
        train(model, scene, count=20)
        frame = scene.copy()
        frame[10:30, 20:40] = frame[10:30, 20:40] // 2
        mask = model.apply(frame)
        assert set(np.unique(mask)) <= {0, 255}

    def test_full_rate_absorbs_stationary_object(self, scene):
        """At learning_rate 1 an object that stops moving becomes background."""
        model = BackgroundModel(BackgroundModelConfig(learning_rate=1.0), (WIDTH, HEIGHT))
        train(model, scene)

        frame = scene.copy()
        frame[10:30, 20:40] = (20, 20, 250)
        first = model.apply(frame)
        last = train(model, frame, count=30)

        assert np.count_nonzero(first[10:30, 20:40]) > 0.9 * 400
        assert np.count_nonzero(last[10:30, 20:40]) < 0.1 * 400

    def test_learning_rate_fixed_at_construction(self, scene):
        """Later changes to the caller's config do not reach the subtractor."""
        config = BackgroundModelConfig(learning_rate=0.5)
        model = BackgroundModel(config, (WIDTH, HEIGHT))
        model._subtractor = MagicMock()
        model._subtractor.apply.return_value = np.zeros((HEIGHT, WIDTH), dtype=np.uint8)

        config.learning_rate = -1.0
        model.apply(scene)

        model._subtractor.apply.assert_called_once()
        assert model._subtractor.apply.call_args.kwargs["learningRate"] == 0.5
        assert model.config.learning_rate == 0.5

    def test_zero_learning_rate_rejected(self):
        with pytest.raises(ValidationError):
            BackgroundModelConfig(learning_rate=0.0)

    def test_reset(self, scene):
        model = BackgroundModel(BackgroundModelConfig(), (WIDTH, HEIGHT))
        train(model, scene, count=5)
        assert model.frames_applied == 5

        old = model._subtractor
        model.reset()
        assert model.frames_applied == 0
        assert model._subtractor is not old

    def test_shape(self):
        assert BackgroundModel(BackgroundModelConfig(), (WIDTH, HEIGHT)).shape == (HEIGHT, WIDTH)
