"""
Camera acquisition adapter.

Wraps picamera2 (Raspberry Pi camera modules) to turn each frame into one
:class:`~ppg_vitals.types.Sample`: the mean red intensity of a central
region of interest, scaled to 0 – 1.  Falls back to OpenCV VideoCapture
(any webcam) when picamera2 is unavailable.
"""

from __future__ import annotations

import logging
import time
from typing import Generator, Optional, Tuple

import cv2
import numpy as np

from ppg_vitals.types import Sample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Try importing picamera2 (only available on Raspberry Pi OS)
# ---------------------------------------------------------------------------
try:
    from picamera2 import Picamera2
    from libcamera import Transform
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False


def roi_bounds(shape: Tuple[int, ...], fraction: float) -> Tuple[int, int, int, int]:
    """Centred ``(y0, y1, x0, x1)`` covering *fraction* of each image side."""
    h, w = shape[:2]
    rh, rw = max(1, int(h * fraction)), max(1, int(w * fraction))
    y0, x0 = (h - rh) // 2, (w - rw) // 2
    return y0, y0 + rh, x0, x0 + rw


def lens_covered(
    frame: np.ndarray,
    brightness_threshold: float = 100.0,
    variance_threshold: float = 800.0,
    red_dominance: float = 1.05,
) -> bool:
    """
    Heuristic frame check: dark, uniform and red-dominated means a fingertip
    is pressed on the lens.  Used only as an operator hint; presence is
    decided by the PPG pipeline.
    """
    b = frame[:, :, 0].astype(np.float64)
    g = frame[:, :, 1].astype(np.float64)
    r = frame[:, :, 2].astype(np.float64)
    brightness = (r.mean() + g.mean() + b.mean()) / 3.0
    red_ratio = r.mean() / (g.mean() + 1e-6)
    return bool(brightness < brightness_threshold
                and float(g.var()) < variance_threshold
                and red_ratio >= red_dominance)


class CameraSource:
    """
    PPG sample source backed by a camera.

    Parameters
    ----------
    resolution:
        (width, height) of captured frames.
    fps:
        Target frame rate.  Actual rate may differ slightly.
    roi_fraction:
        Side length of the averaged central region, as a fraction of the frame.
    camera_index:
        Fallback OpenCV camera index when picamera2 is unavailable.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
        roi_fraction: float = 0.5,
        camera_index: int = 0,
    ) -> None:
        self.resolution = resolution
        self.fps = fps
        self.roi_fraction = roi_fraction
        self.camera_index = camera_index

        self._cam: "Picamera2 | cv2.VideoCapture | None" = None
        self._use_picamera2 = _PICAMERA2_AVAILABLE
        self._t0: Optional[float] = None
        self.covered = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Initialise and start the camera."""
        if self._use_picamera2:
            self._open_picamera2()
        else:
            logger.warning("picamera2 not found – falling back to OpenCV VideoCapture.")
            self._open_opencv()
        self._t0 = None
        logger.info(
            "Camera opened – backend=%s resolution=%s fps=%d",
            "picamera2" if self._use_picamera2 else "opencv",
            self.resolution,
            self.fps,
        )

    def close(self) -> None:
        """Stop and release the camera."""
        if self._cam is None:
            return
        if self._use_picamera2:
            self._cam.stop()
            self._cam.close()
        else:
            self._cam.release()
        self._cam = None
        logger.info("Camera closed.")

    def __enter__(self) -> "CameraSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def frame_to_sample(self, frame: np.ndarray, timestamp_ms: float) -> Sample:
        """Mean red intensity of the ROI of a BGR *frame*, scaled to 0 – 1."""
        y0, y1, x0, x1 = roi_bounds(frame.shape, self.roi_fraction)
        roi = frame[y0:y1, x0:x1]
        self.covered = lens_covered(roi)
        return Sample(timestamp_ms=timestamp_ms, raw_value=float(roi[:, :, 2].mean()) / 255.0)

    def read_frame(self) -> np.ndarray | None:
        """Capture a single BGR frame, or *None* on failure."""
        if self._cam is None:
            raise RuntimeError("Camera is not open.  Call open() first.")
        if self._use_picamera2:
            return self._read_picamera2()
        return self._read_opencv()

    def samples(self) -> Generator[Sample, None, None]:
        """
        Yield one :class:`Sample` per frame until the camera is closed or
        fails repeatedly.  Timestamps are ms since the first frame.
        """
        null_streak = 0
        while self._cam is not None:
            frame = self.read_frame()
            if frame is None:
                null_streak += 1
                if null_streak >= 10:
                    logger.error("Camera returned 10 consecutive None frames – aborting.")
                    break
                continue
            null_streak = 0
            now = time.monotonic()
            if self._t0 is None:
                self._t0 = now
            yield self.frame_to_sample(frame, (now - self._t0) * 1000.0)

    # ------------------------------------------------------------------
    # Private helpers – picamera2
    # ------------------------------------------------------------------

    def _open_picamera2(self) -> None:
        cam = Picamera2()
        w, h = self.resolution
        config = cam.create_video_configuration(
            main={"size": (w, h), "format": "RGB888"},
            transform=Transform(),
            buffer_count=4,
        )
        cam.configure(config)
        frame_duration = int(1_000_000 / self.fps)   # microseconds
        try:
            # Fixed exposure keeps the pulsatile intensity from being normalised away
            cam.set_controls({
                "FrameDurationLimits": (frame_duration, frame_duration),
                "AeEnable": False,
            })
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Could not set camera controls: %s", exc)
        cam.start()
        # Let white balance settle
        for _ in range(8):
            cam.capture_array("main")
        self._cam = cam

    def _read_picamera2(self) -> np.ndarray | None:
        frame = self._cam.capture_array("main")
        if frame is None:
            logger.warning("capture_array returned None.")
            return None
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = frame[:, :, :3]
        # picamera2 RGB888 → OpenCV BGR
        return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)

    # ------------------------------------------------------------------
    # Private helpers – OpenCV fallback
    # ------------------------------------------------------------------

    def _open_opencv(self) -> None:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            raise RuntimeError(
                f"Cannot open video capture device index={self.camera_index}"
            )
        w, h = self.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cam = cap

    def _read_opencv(self) -> np.ndarray | None:
        ok, frame = self._cam.read()
        if not ok:
            logger.warning("VideoCapture.read() returned False.")
            return None
        return frame
