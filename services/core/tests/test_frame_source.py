"""
Tests for the frame sources.
"""
import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from postit_common.config import ConfigError
from postit_core.config import ColorFormat, DepthMaskConfig, StreamKind
from postit_core.depth_mask import extract_depth_mask
from postit_core.frame_source import (
    MAX_VALID_DEPTH,
    MIN_VALID_DEPTH,
    FrameSourceError,
    MockFrameSource,
    VideoCaptureFrameSource,
    create_frame_source,
)
from postit_core.frame_utils import to_bgr


class TestMockDepthFrames:
    def test_blob_is_inside_default_band(self, resolution):
        source = MockFrameSource(StreamKind.DEPTH, resolution)
        raw = source.depth_frame(0)

        assert raw.dtype == np.int16
        assert raw.shape == (64 * 48,)

        mask = extract_depth_mask(raw, DepthMaskConfig(), resolution)
        # blob starts centered
        assert mask[24, 32] == 255
        assert mask[0, 0] == 0
        assert 100 < np.count_nonzero(mask) < 400

    def test_player_flags_packed(self, resolution):
        source = MockFrameSource(StreamKind.DEPTH, resolution)
        raw = source.depth_frame(0).reshape(48, 64).view(np.uint16)
        assert raw[24, 32] & 0b111 == 1
        assert raw[0, 0] & 0b111 == 0

    def test_blob_moves(self, resolution):
        source = MockFrameSource(StreamKind.DEPTH, resolution)
        assert not np.array_equal(source.depth_frame(0), source.depth_frame(15))


class TestMockColorFrames:
    @pytest.mark.parametrize("color_format", list(ColorFormat))
    def test_layout_matches_format(self, resolution, color_format):
        source = MockFrameSource(StreamKind.COLOR, resolution, color_format)
        buffer = source.color_frame(0)
        assert buffer.dtype == np.uint8
        assert buffer.size == 64 * 48 * color_format.channels

        image = to_bgr(buffer, color_format, resolution)
        assert tuple(image[24, 32]) == (40, 40, 230)

    def test_background_is_static(self, resolution):
        source = MockFrameSource(StreamKind.COLOR, resolution)
        first = source.color_frame(0).reshape(48, 64, 4)
        later = source.color_frame(15).reshape(48, 64, 4)
        np.testing.assert_array_equal(first[0:3, 0:3], later[0:3, 0:3])


class TestThreadedDelivery:
    def test_missing_callback_rejected(self, resolution):
        with pytest.raises(FrameSourceError):
            MockFrameSource(StreamKind.DEPTH, resolution).start(on_color_frame_ready=lambda b: None)
        with pytest.raises(FrameSourceError):
            MockFrameSource(StreamKind.COLOR, resolution).start(on_depth_frame_ready=lambda b, lo, hi: None)

    def test_depth_frames_delivered(self, resolution):
        source = MockFrameSource(StreamKind.DEPTH, resolution, fps=200.0)
        received = []
        enough = threading.Event()

        def on_depth(buffer, min_valid, max_valid):
            received.append((buffer.size, min_valid, max_valid))
            if len(received) >= 3:
                enough.set()

        source.start(on_depth_frame_ready=on_depth)
        try:
            assert enough.wait(timeout=5.0)
        finally:
            source.stop()

        assert not source.running
        assert received[0] == (64 * 48, MIN_VALID_DEPTH, MAX_VALID_DEPTH)

    def test_callback_errors_do_not_stop_delivery(self, resolution):
        source = MockFrameSource(StreamKind.COLOR, resolution, fps=200.0)
        calls = []
        enough = threading.Event()

        def on_color(buffer):
            calls.append(1)
            if len(calls) >= 3:
                enough.set()
            raise RuntimeError("display gone")

        source.start(on_color_frame_ready=on_color)
        try:
            assert enough.wait(timeout=5.0)
        finally:
            source.stop()
        assert source.frames_delivered >= 3


class TestVideoCaptureSource:
    @patch("postit_core.frame_source.cv2.VideoCapture")
    def test_unopened_device_fails(self, mock_capture, resolution):
        mock_capture.return_value.isOpened.return_value = False
        source = VideoCaptureFrameSource(resolution)
        with pytest.raises(FrameSourceError):
            source.start(on_color_frame_ready=lambda b: None)
        mock_capture.return_value.release.assert_called_once()

    @patch("postit_core.frame_source.cv2.VideoCapture")
    def test_frames_are_resized_and_packed(self, mock_capture, resolution):
        capture = mock_capture.return_value
        capture.isOpened.return_value = True
        capture.read.return_value = (True, np.zeros((96, 128, 3), dtype=np.uint8))
        received = []

        source = VideoCaptureFrameSource(resolution, ColorFormat.BGRA)
        source.on_color_frame_ready = received.append
        source._open()
        source._deliver_next()
        source._close()

        assert received[0].size == 64 * 48 * 4
        capture.release.assert_called_once()

    @patch("postit_core.frame_source.cv2.VideoCapture")
    def test_failed_read_counted(self, mock_capture, resolution):
        capture = mock_capture.return_value
        capture.isOpened.return_value = True
        capture.read.return_value = (False, None)

        source = VideoCaptureFrameSource(resolution)
        source.on_color_frame_ready = MagicMock()
        source._open()
        source._deliver_next()

        assert source.read_failures == 1
        source.on_color_frame_ready.assert_not_called()


class TestCreateFrameSource:
    def test_mock_backend(self, depth_config):
        source = create_frame_source(depth_config)
        assert isinstance(source, MockFrameSource)
        assert source.stream_kind == StreamKind.DEPTH
        assert source.resolution == (64, 48)

    def test_webcam_color(self, make_config):
        source = create_frame_source(make_config(stream={"kind": "color"}, source={"backend": "webcam"}))
        assert isinstance(source, VideoCaptureFrameSource)

    def test_webcam_depth_rejected(self, make_config):
        with pytest.raises(ConfigError):
            create_frame_source(make_config(source={"backend": "webcam"}))
