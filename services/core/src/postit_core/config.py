#!/usr/bin/env python3
"""
Configuration schema for the PostIt Core Service.

This module defines Pydantic models for validating and accessing
core service configuration in a type-safe way.
"""

from enum import Enum
from typing import List, Tuple

from pydantic import BaseModel, Field, model_validator

from postit_common.config import BaseConfig
from postit_common.constants import CORE_SERVICE_DIR, get_service_config_path

DEFAULT_CONFIG_PATH = get_service_config_path(CORE_SERVICE_DIR)


class StreamKind(str, Enum):
    """Which sensor stream a session processes."""
    DEPTH = "depth"
    COLOR = "color"


class BandPolarity(str, Enum):
    """Whether pixels inside or outside the [low, high) band are valid."""
    INSIDE = "inside"
    OUTSIDE = "outside"


class ColorFormat(str, Enum):
    """Channel layout of raw color frames."""
    BGR = "bgr"
    BGRA = "bgra"
    RGB = "rgb"
    RGBA = "rgba"

    @property
    def channels(self) -> int:
        return 4 if self in (ColorFormat.BGRA, ColorFormat.RGBA) else 3


class MaskOutput(str, Enum):
    """Output convention of the background model."""
    BINARY = "binary"
    GRAYSCALE = "grayscale"


class DisplayBackend(str, Enum):
    OPENCV = "opencv"
    HEADLESS = "headless"


class SourceBackend(str, Enum):
    MOCK = "mock"
    WEBCAM = "webcam"


class StreamConfig(BaseModel):
    """Stream selection for the session."""

    kind: StreamKind = Field(
        default=StreamKind.DEPTH,
        description="Sensor stream to process"
    )

    stats_interval: int = Field(
        default=300,
        ge=1,
        description="Log session statistics every N received frames"
    )


class DepthMaskConfig(BaseModel):
    """Depth thresholding policy, in reduced 8-bit intensity units."""

    low: int = Field(
        default=0,
        ge=0,
        le=256,
        description="Lower bound of the depth band (inclusive)"
    )

    high: int = Field(
        default=96,
        ge=0,
        le=256,
        description="Upper bound of the depth band (exclusive)"
    )

    polarity: BandPolarity = Field(
        default=BandPolarity.INSIDE,
        description="Valid pixels lie inside or outside the band"
    )

    divisor: int = Field(
        default=258,
        gt=0,
        le=65535,
        description="Divisor reducing raw depth magnitude to 0-255"
    )

    flag_bits: int = Field(
        default=3,
        ge=0,
        le=15,
        description="Low-order flag bits cleared before reduction"
    )

    @model_validator(mode='after')
    def check_band(self):
        if self.low >= self.high:
            raise ValueError(f"depth band is empty: low ({self.low}) must be below high ({self.high})")
        return self


class BackgroundModelConfig(BaseModel):
    """KNN background subtractor parameters, fixed for the model's lifetime."""

    history: int = Field(
        default=200,
        ge=1,
        description="History capacity per pixel (frames)"
    )

    dist2_threshold: float = Field(
        default=70.0,
        gt=0,
        description="Squared distance threshold for a history sample to count as close"
    )

    knn_samples: int = Field(
        default=2,
        ge=1,
        description="Close history samples needed to classify a pixel as background"
    )

    detect_shadows: bool = Field(
        default=False,
        description="Mark shadows with shadow_value instead of foreground"
    )

    shadow_value: int = Field(
        default=127,
        ge=1,
        le=254,
        description="Gray value of detected shadows"
    )

    learning_rate: float = Field(
        default=-1.0,
        le=1.0,
        description="Model learning rate: negative for automatic, otherwise in (0, 1], 1 relearns from the last frame"
    )

    mask_output: MaskOutput = Field(
        default=MaskOutput.BINARY,
        description="Threshold the model output to 0/255 or pass it through"
    )

    @model_validator(mode='after')
    def check_learning_rate(self):
        # cv2 KNN keeps learning at 0; there is no frozen mode
        if self.learning_rate == 0:
            raise ValueError("learning_rate must be negative (automatic) or in (0, 1]")
        return self


class MorphologyConfig(BaseModel):
    """Mask cleanup applied after thresholding or background subtraction."""

    kernel_size: int = Field(
        default=9,
        ge=1,
        description="Side of the square structuring element (odd)"
    )

    close: bool = Field(
        default=True,
        description="Apply morphological closing"
    )

    erode_iterations: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Erosion passes before closing"
    )

    @model_validator(mode='after')
    def check_kernel(self):
        if self.kernel_size % 2 == 0:
            raise ValueError(f"kernel_size must be odd, got {self.kernel_size}")
        return self


class ColorMorphologyConfig(MorphologyConfig):
    """Color streams erode speckle from the background model before closing."""

    erode_iterations: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Erosion passes before closing"
    )


Color = Tuple[int, int, int]


def _check_color(name: str, color: Color):
    if any(c < 0 or c > 255 for c in color):
        raise ValueError(f"{name} components must be in 0..255, got {color}")


class MosaicConfig(BaseModel):
    """Tile geometry and colors of the mosaic renderer."""

    enabled: bool = Field(
        default=True,
        description="Render the mask as mosaic tiles"
    )

    cell_size: int = Field(
        default=10,
        ge=1,
        description="Grid cell size in pixels"
    )

    fill_size: int = Field(
        default=8,
        ge=1,
        description="Filled square size drawn at each active cell's top-left"
    )

    sample_offset: Tuple[int, int] = Field(
        default=(5, 5),
        description="Sampled pixel (x, y) within each cell"
    )

    accent_color: Color = Field(
        default=(0, 255, 255),
        description="BGR color of active cells"
    )

    background_color: Color = Field(
        default=(0, 0, 0),
        description="BGR color of inactive cells"
    )

    @model_validator(mode='after')
    def check_geometry(self):
        if self.fill_size > self.cell_size:
            raise ValueError(f"fill_size ({self.fill_size}) exceeds cell_size ({self.cell_size})")
        if any(o < 0 or o >= self.cell_size for o in self.sample_offset):
            raise ValueError(f"sample_offset {self.sample_offset} must lie within the cell")
        _check_color("accent_color", self.accent_color)
        _check_color("background_color", self.background_color)
        return self


class OverlayTextLine(BaseModel):
    """One line of overlay text; y is the baseline before the sweep offset is added."""

    text: str
    x: int
    y: int


def _default_lines() -> List[OverlayTextLine]:
    return [
        OverlayTextLine(text="HAPPY", x=100, y=100),
        OverlayTextLine(text="BIRTHDAY", x=10, y=240),
        OverlayTextLine(text="POST-IT", x=40, y=380),
    ]


class OverlayConfig(BaseModel):
    """Timed text overlay animation."""

    enabled: bool = Field(
        default=True,
        description="Run the periodic text overlay"
    )

    interval: float = Field(
        default=6.0,
        gt=0,
        description="Seconds between overlay triggers"
    )

    sweep_start: int = Field(
        default=-400,
        description="Initial vertical text offset in pixels"
    )

    sweep_end: int = Field(
        default=0,
        description="Final vertical text offset in pixels (inclusive)"
    )

    sweep_step: int = Field(
        default=4,
        gt=0,
        description="Vertical offset increment per animation step"
    )

    pre_delay: float = Field(
        default=0.05,
        ge=0,
        description="Seconds to wait before the sweep starts"
    )

    step_delay: float = Field(
        default=0.01,
        ge=0,
        description="Seconds between animation steps"
    )

    hold_delay: float = Field(
        default=2.0,
        ge=0,
        description="Seconds to hold the final frame before rendering resumes"
    )

    lines: List[OverlayTextLine] = Field(
        default_factory=_default_lines,
        max_length=3,
        description="Text lines and their positions"
    )

    font_scale: float = Field(
        default=8.0,
        gt=0,
        description="Hershey Plain font scale"
    )

    thickness: int = Field(
        default=15,
        ge=1,
        description="Text stroke thickness"
    )

    draw_timeout: float = Field(
        default=1.0,
        gt=0,
        description="Seconds to wait for the display to apply one step before skipping it"
    )

    @model_validator(mode='after')
    def check_sweep(self):
        if self.sweep_end < self.sweep_start:
            raise ValueError(f"sweep_end ({self.sweep_end}) is before sweep_start ({self.sweep_start})")
        return self


class DisplayConfig(BaseModel):
    """Display surface configuration."""

    backend: DisplayBackend = Field(
        default=DisplayBackend.OPENCV,
        description="Display backend"
    )

    window_name: str = Field(
        default="PostIt",
        description="Window title"
    )

    fullscreen: bool = Field(
        default=False,
        description="Show the window fullscreen"
    )


class SourceConfig(BaseModel):
    """Frame source configuration."""

    backend: SourceBackend = Field(
        default=SourceBackend.MOCK,
        description="Frame source backend"
    )

    fps: float = Field(
        default=30.0,
        gt=0,
        description="Frames per second"
    )

    resolution: Tuple[int, int] = Field(
        default=(640, 480),
        description="Frame resolution (width, height)"
    )

    color_format: ColorFormat = Field(
        default=ColorFormat.BGRA,
        description="Channel layout of color frames"
    )

    device_index: int = Field(
        default=0,
        ge=0,
        description="cv2.VideoCapture device index for the webcam backend"
    )

    @model_validator(mode='after')
    def check_resolution(self):
        if min(self.resolution) < 1:
            raise ValueError(f"resolution must be positive, got {self.resolution}")
        return self


class CoreServiceConfig(BaseConfig):
    """Configuration for the PostIt core service."""

    service_name: str = "postit_core"

    stream: StreamConfig = Field(default_factory=StreamConfig)
    depth: DepthMaskConfig = Field(default_factory=DepthMaskConfig)
    background: BackgroundModelConfig = Field(default_factory=BackgroundModelConfig)
    depth_morphology: MorphologyConfig = Field(default_factory=MorphologyConfig)
    color_morphology: ColorMorphologyConfig = Field(default_factory=ColorMorphologyConfig)
    mosaic: MosaicConfig = Field(default_factory=MosaicConfig)
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)

    @property
    def morphology(self) -> MorphologyConfig:
        """Cleanup settings for the configured stream kind."""
        if self.stream.kind == StreamKind.COLOR:
            return self.color_morphology
        return self.depth_morphology
