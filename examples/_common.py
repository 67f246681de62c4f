"""Shared helpers for the live matcher example scripts.

Camera capture, key polling, frame-rate measurement and the match overlay,
so the example scripts stay focused on driving the matcher.
"""

import argparse
import signal
import sys
import time
from collections import deque

import cv2
import numpy as np

KEY_ESC = 27
NO_KEY = 0xFF
QUIT_KEYS = (ord("q"), KEY_ESC)


def add_common_args(parser: argparse.ArgumentParser) -> None:
    """Camera, frame scaling and display options."""
    group = parser.add_argument_group("capture")
    group.add_argument("--camera", type=int, default=0,
                       help="Camera device index (default: 0)")
    group.add_argument("--width", type=int, default=640,
                       help="Requested capture width (default: 640)")
    group.add_argument("--height", type=int, default=480,
                       help="Requested capture height (default: 480)")
    group.add_argument("--scale", type=float, default=1.0,
                       help="Resize factor applied to every frame (default: 1.0)")
    group.add_argument("--no-display", action="store_true",
                       help="Headless mode, no OpenCV window")


class FrameRate:
    """Frames per second over a sliding window of timestamps."""

    def __init__(self, window: int = 30):
        self._stamps = deque(maxlen=window)

    def tick(self) -> None:
        self._stamps.append(time.perf_counter())

    @property
    def fps(self) -> float:
        if len(self._stamps) < 2:
            return 0.0
        span = self._stamps[-1] - self._stamps[0]
        return (len(self._stamps) - 1) / span if span > 0 else 0.0


class Camera:
    """Scaled BGR frames from a capture device, used as a context manager.

    Usage::

        with Camera(args) as cam:
            for frame in cam.frames():
                key = cam.show(annotated)
                cam.status({"conf": 0.93}, latency_ms=12.0)

    ``q``, ESC or Ctrl+C stops :meth:`frames`.
    """

    def __init__(self, args: argparse.Namespace, window_name: str = "cghmatch"):
        self.window_name = window_name
        self.rate = FrameRate()
        self._headless = args.no_display
        self._scale = args.scale
        self._stop = False

        self._cap = cv2.VideoCapture(args.camera)
        if not self._cap.isOpened():
            raise RuntimeError(f"Failed to open camera {args.camera}")
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, args.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, args.height)

    def __enter__(self):
        # Let auto exposure settle before the first real frame
        for _ in range(5):
            self._cap.read()
            time.sleep(0.1)
        signal.signal(signal.SIGINT, lambda *_: self.stop())
        return self

    def __exit__(self, exc_type, exc, tb):
        self._cap.release()
        if not self._headless:
            cv2.destroyAllWindows()
        print()
        return False

    def stop(self) -> None:
        self._stop = True

    def _grab(self, retries: int = 3):
        for _ in range(retries + 1):
            ok, frame = self._cap.read()
            if ok:
                return frame
            time.sleep(0.1)
        return None

    def frames(self):
        """Yield frames until the camera fails or a stop is requested."""
        while not self._stop:
            frame = self._grab()
            if frame is None:
                return
            if self._scale != 1.0:
                frame = cv2.resize(frame, None, fx=self._scale, fy=self._scale,
                                   interpolation=cv2.INTER_AREA)
            self.rate.tick()
            yield frame

    def show(self, image: np.ndarray) -> int:
        """Display an image and poll the keyboard once.

        Returns:
            Key code, ``NO_KEY`` when nothing was pressed, -1 when headless.
        """
        if self._headless:
            return -1
        cv2.imshow(self.window_name, image)
        key = cv2.waitKey(1) & 0xFF
        if key in QUIT_KEYS:
            self.stop()
        return key

    def status(self, values: dict, latency_ms: float) -> None:
        """Overwrite one terminal line with the frame rate and ``values``."""
        fields = [f"{self.rate.fps:5.1f} fps", f"{latency_ms:6.2f} ms"]
        fields += [f"{k}={v:.3f}" if isinstance(v, float) else f"{k}={v}"
                   for k, v in values.items()]
        sys.stdout.write("\r" + "  ".join(fields) + "    ")
        sys.stdout.flush()


def crop_center(img: np.ndarray, rows: int, cols: int) -> np.ndarray:
    """Copy a ``rows x cols`` patch from the middle of an image."""
    h, w = img.shape[:2]
    rows, cols = min(rows, h), min(cols, w)
    y0 = (h - rows) // 2
    x0 = (w - cols) // 2
    return img[y0:y0 + rows, x0:x0 + cols].copy()


def draw_label(img: np.ndarray, text: str, origin: tuple,
               fg: tuple = (255, 255, 255), bg: tuple = (0, 0, 0)) -> None:
    """Plain-font label on a filled box whose lower left corner is ``origin``."""
    font = cv2.FONT_HERSHEY_PLAIN
    (tw, th), _ = cv2.getTextSize(text, font, 1.0, 1)
    x, y = origin
    cv2.rectangle(img, (x, y - th - 6), (x + tw + 4, y), bg, -1)
    cv2.putText(img, text, (x + 2, y - 3), font, 1.0, fg, 1)


def draw_match(img: np.ndarray, point: tuple, footprint: tuple,
               confidence: float) -> None:
    """Box the best match, mark its center and print the confidence above it.

    Args:
        img: BGR image drawn in place.
        point: ``(x, y)`` match center.
        footprint: Template ``(rows, cols)``.
        confidence: Normalized score shown with two decimals.
    """
    x, y = point
    rows, cols = footprint
    corner = (x - cols // 2, y - rows // 2)
    cv2.rectangle(img, corner, (corner[0] + cols, corner[1] + rows), (0, 255, 0), 2)
    cv2.circle(img, (x, y), 2, (0, 255, 255), -1)
    draw_label(img, f"{confidence:.2f}", corner)


def paste_thumbnail(img: np.ndarray, template: np.ndarray,
                    color: tuple = (255, 0, 0)) -> None:
    """Copy the template into the upper right corner with a colored frame."""
    thumb = template
    if thumb.ndim == 2:
        thumb = cv2.cvtColor(thumb, cv2.COLOR_GRAY2BGR)
    h, w = img.shape[:2]
    th, tw = min(thumb.shape[0], h), min(thumb.shape[1], w)
    img[0:th, w - tw:w] = thumb[:th, :tw]
    cv2.rectangle(img, (w - tw, 0), (w - 1, th), color, 2)
