"""
Shared fixtures for the core service tests.

Everything runs at a small resolution with a headless display so the suite
needs neither a sensor nor a window system.
"""
import threading

import numpy as np
import pytest

from postit_core.config import CoreServiceConfig, DepthMaskConfig
from postit_core.depth_mask import encode_depth
from postit_core.display import DisplayDispatcher, DisplaySurface

WIDTH, HEIGHT = 64, 48


def _make_config(**sections) -> CoreServiceConfig:
    base = {
        "source": {"resolution": (WIDTH, HEIGHT), "fps": 100.0},
        "display": {"backend": "headless"},
        "overlay": {
            "interval": 0.05,
            "sweep_start": -8,
            "sweep_end": 0,
            "sweep_step": 4,
            "pre_delay": 0.0,
            "step_delay": 0.0,
            "hold_delay": 0.0,
            "font_scale": 1.0,
            "thickness": 2,
            "lines": [{"text": "HI", "x": 5, "y": 30}],
        },
    }
    for name, values in sections.items():
        base[name] = {**base.get(name, {}), **values}
    return CoreServiceConfig(**base)


def _depth_frame(intensity, mask_config: DepthMaskConfig = None, flags=0) -> np.ndarray:
    mask_config = mask_config or DepthMaskConfig()
    return encode_depth(intensity, mask_config.flag_bits, mask_config.divisor, flags).reshape(-1)


def _blob_intensity(near: int = 40, far: int = 200, box=(16, 12, 48, 36)) -> np.ndarray:
    x0, y0, x1, y1 = box
    image = np.full((HEIGHT, WIDTH), far, dtype=np.int64)
    image[y0:y1, x0:x1] = near
    return image


@pytest.fixture
def resolution():
    return WIDTH, HEIGHT


@pytest.fixture
def make_config():
    """Small headless config factory; keyword arguments override section fields."""
    return _make_config


@pytest.fixture
def depth_frame():
    """Flat raw depth buffer builder whose pixels reduce to the given intensity."""
    return _depth_frame


@pytest.fixture
def blob_intensity():
    """(HEIGHT, WIDTH) intensity image builder: a near rectangle on a far background."""
    return _blob_intensity


@pytest.fixture
def depth_config() -> CoreServiceConfig:
    return _make_config()


@pytest.fixture
def color_config() -> CoreServiceConfig:
    return _make_config(stream={"kind": "color"})


@pytest.fixture
def surface() -> DisplaySurface:
    return DisplaySurface(WIDTH, HEIGHT)


@pytest.fixture
def dispatcher():
    """Dispatcher bound to a loop by the test that needs one."""
    dispatcher = DisplayDispatcher()
    yield dispatcher
    dispatcher.unbind()


@pytest.fixture
def suppression() -> threading.Event:
    return threading.Event()
