"""Root Motion - hip translation from image-space hip landmarks"""

from dataclasses import dataclass
from typing import Optional, Sequence
import numpy as np

from mocap_retarget.core import Config, get_logger, MediaPipeLandmark
from mocap_retarget.pose.landmarks import LandmarkPoint


@dataclass
class RootMotionSettings:
    frame_width: int = 640
    frame_height: int = 480
    model_hip_span: float = 100.0
    min_pixel_span: float = 20.0    # below this the hip span is too noisy to calibrate on
    scale_rate: float = 0.05
    depth_damping: float = 1.5

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "RootMotionSettings":
        return (config or Config()).fill(cls(), "root_motion")


class RootMotionEstimator:
    """
    Estimate root (hip) translation from image landmarks.

    The first frame after a reset becomes the origin. Later frames report
    the hip midpoint's pixel offset from that origin, converted to model
    units by a factor that drifts toward model hip span / observed hip
    span. The factor only recalibrates while the hips are seen more side
    by side than one behind the other, so a sideways turn does not blow
    up the scale.
    """

    def __init__(self, settings: Optional[RootMotionSettings] = None):
        self.logger = get_logger("motion.root")
        self.settings = settings or RootMotionSettings()

        self._width = self.settings.frame_width
        self._height = self.settings.frame_height
        self._model_hip_span = self.settings.model_hip_span
        self._origin: Optional[np.ndarray] = None
        self._scale_factor = 1.0
        self._translation = np.zeros(3)

        self.logger.info(
            f"Initialized root motion estimator ({self._width}x{self._height}, "
            f"hip_span={self._model_hip_span:.2f})"
        )

    @property
    def has_origin(self) -> bool:
        return self._origin is not None

    @property
    def scale_factor(self) -> float:
        return self._scale_factor

    @property
    def model_hip_span(self) -> float:
        return self._model_hip_span

    @property
    def frame_size(self):
        return self._width, self._height

    @property
    def translation(self) -> np.ndarray:
        return self._translation.copy()

    def update_model_metrics(self, hip_span: float) -> None:
        """Set the skeleton's bind-pose hip width (model units)."""
        if hip_span > 0:
            self._model_hip_span = float(hip_span)

    def reset(self, width: Optional[int] = None, height: Optional[int] = None) -> None:
        """Forget the origin and scale; optionally switch frame dimensions."""
        if width:
            self._width = int(width)
        if height:
            self._height = int(height)
        self._origin = None
        self._scale_factor = 1.0
        self._translation = np.zeros(3)

    def update_dimensions(self, width: Optional[float], height: Optional[float]) -> bool:
        """Reset if the frame dimensions changed. Returns True when a reset happened."""
        if not width or not height:
            return False
        width, height = int(width), int(height)
        if (width, height) == (self._width, self._height):
            return False
        self.logger.debug(f"Frame size {self._width}x{self._height} -> {width}x{height}, resetting origin")
        self.reset(width, height)
        return True

    def _to_pixels(self, landmark: Optional[LandmarkPoint]) -> Optional[np.ndarray]:
        if landmark is None:
            return None
        # Depth is normalized like x
        return np.array([
            landmark.x * self._width,
            landmark.y * self._height,
            landmark.z * self._width,
        ], dtype=np.float64)

    def compute_translation(self, landmarks: Sequence[Optional[LandmarkPoint]]) -> Optional[np.ndarray]:
        """
        Translation of the hips relative to the origin frame.

        Args:
            landmarks: 33 image-normalized body landmarks

        Returns:
            (3,) translation in model units (x lateral, y up, z depth), the
            zero vector on the origin frame, or None when hips are missing
        """
        if not landmarks or len(landmarks) <= MediaPipeLandmark.RIGHT_HIP:
            return None

        left_hip = self._to_pixels(landmarks[MediaPipeLandmark.LEFT_HIP])
        right_hip = self._to_pixels(landmarks[MediaPipeLandmark.RIGHT_HIP])
        if left_hip is None or right_hip is None:
            return None

        hip_center = (left_hip + right_hip) * 0.5

        if self._origin is None:
            self._origin = hip_center
            self._translation = np.zeros(3)
            return self._translation.copy()

        s = self.settings
        pixel_span = float(np.linalg.norm(left_hip - right_hip))
        x_span = abs(left_hip[0] - right_hip[0])
        z_span = abs(left_hip[2] - right_hip[2])

        target_factor = self._scale_factor
        if pixel_span > s.min_pixel_span and x_span > z_span:
            target_factor = self._model_hip_span / pixel_span
        self._scale_factor += (target_factor - self._scale_factor) * s.scale_rate

        delta = hip_center - self._origin
        self._translation = np.array([
            delta[0] * self._scale_factor,
            -delta[1] * self._scale_factor,
            delta[2] * self._scale_factor * s.depth_damping,
        ])
        return self._translation.copy()
