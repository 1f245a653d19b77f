"""
Pose smoothing using One Euro Filter.

The One Euro Filter is designed to reduce jitter while maintaining low latency.
It adapts the cutoff frequency based on the speed of movement:
- When moving slowly: more smoothing (reduces jitter)
- When moving fast: less smoothing (reduces lag)

Reference: https://cristal.univ-lille.fr/~casiez/1euro/
"""

import math
from dataclasses import dataclass, replace
from typing import Dict, Optional
import numpy as np

from mocap_retarget.core import Config, get_logger, MixamoBone, BodyPart, classify_bone
from .pose_mapper import CanonicalPose, PosePoint


@dataclass
class OneEuroFilterParams:
    """Parameters for One Euro Filter."""
    min_cutoff: float = 0.01     # Minimum cutoff frequency (Hz) - lower = more smoothing
    beta: float = 0.1            # Speed coefficient - higher = less lag when moving
    d_cutoff: float = 1.0        # Derivative cutoff frequency


class LowPassFilter:
    """Exponential low-pass filter."""

    def __init__(self, alpha: float = 1.0):
        self._alpha = alpha
        self._y: Optional[float] = None

    def reset(self):
        self._y = None

    def filter(self, value: float, alpha: Optional[float] = None) -> float:
        if alpha is not None:
            self._alpha = alpha

        if self._y is None:
            self._y = value
        else:
            self._y = self._alpha * value + (1.0 - self._alpha) * self._y

        return self._y

    @property
    def last_value(self) -> Optional[float]:
        return self._y


def smoothing_alpha(cutoff: float, dt: float) -> float:
    """Exponential smoothing factor 1 / (1 + 1 / (2*pi*cutoff*dt))."""
    if cutoff <= 0:
        return 1.0
    r = 2.0 * math.pi * cutoff * dt
    return r / (r + 1.0)


class OneEuroFilter:
    """
    One Euro Filter for a single value.

    The first sample passes through unchanged. A sample whose timestamp is
    not later than the previous one returns the previous smoothed value.
    """

    def __init__(self, params: OneEuroFilterParams = None):
        self.params = params or OneEuroFilterParams()
        self._x_filter = LowPassFilter()
        self._dx_filter = LowPassFilter()
        self._last_time: Optional[float] = None

    @property
    def beta(self) -> float:
        return self.params.beta

    @beta.setter
    def beta(self, value: float):
        self.params = replace(self.params, beta=value)

    def reset(self):
        self._x_filter.reset()
        self._dx_filter.reset()
        self._last_time = None

    def filter(self, timestamp: float, value: float) -> float:
        """
        Filter a value.

        Args:
            timestamp: Current timestamp in seconds
            value: Current raw value

        Returns:
            Smoothed value
        """
        if self._last_time is None:
            self._last_time = timestamp
            self._x_filter.filter(value)
            self._dx_filter.filter(0.0)
            return value

        dt = timestamp - self._last_time
        if dt <= 0:
            return self._x_filter.last_value

        self._last_time = timestamp

        # Derivative against the previous smoothed value
        dx = (value - self._x_filter.last_value) / dt
        edx = self._dx_filter.filter(dx, smoothing_alpha(self.params.d_cutoff, dt))

        cutoff = self.params.min_cutoff + self.params.beta * abs(edx)
        return self._x_filter.filter(value, smoothing_alpha(cutoff, dt))


class OneEuroVectorFilter:
    """Three independent One Euro filters sharing a timestamp."""

    def __init__(self, params: OneEuroFilterParams = None):
        self.params = params or OneEuroFilterParams()
        self._filters = [OneEuroFilter(self.params) for _ in range(3)]

    @property
    def beta(self) -> float:
        return self._filters[0].beta

    @beta.setter
    def beta(self, value: float):
        for f in self._filters:
            f.beta = value

    def reset(self):
        for f in self._filters:
            f.reset()

    def filter(self, timestamp: float, vec: np.ndarray) -> np.ndarray:
        return np.array([
            f.filter(timestamp, float(component))
            for f, component in zip(self._filters, vec)
        ], dtype=np.float64)


@dataclass
class BodyPartBetaScale:
    """Multipliers on beta per body-part class."""
    hand: float = 1.5
    limb: float = 1.0
    core: float = 0.5

    def for_part(self, part: BodyPart) -> float:
        return {
            BodyPart.HAND: self.hand,
            BodyPart.LIMB: self.limb,
            BodyPart.CORE: self.core,
        }[part]


class PoseSmoother:
    """
    Smooths every point of a CanonicalPose with its own vector filter.

    Filters are created the first time a bone is seen. Hands track fast
    deliberate motion, so their beta is scaled up; the torso moves slowly
    and is scaled down.
    """

    def __init__(
        self,
        params: OneEuroFilterParams = None,
        beta_scale: Optional[BodyPartBetaScale] = None
    ):
        self.logger = get_logger("pose.smoother")
        self.params = params or OneEuroFilterParams()
        self.beta_scale = beta_scale or BodyPartBetaScale()
        self._filters: Dict[MixamoBone, OneEuroVectorFilter] = {}
        self._enabled = True

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "PoseSmoother":
        section = (config or Config()).pose_filter
        defaults = OneEuroFilterParams()
        scale_defaults = BodyPartBetaScale()
        return cls(
            params=OneEuroFilterParams(
                min_cutoff=float(section.get("min_cutoff", defaults.min_cutoff)),
                beta=float(section.get("beta", defaults.beta)),
                d_cutoff=float(section.get("d_cutoff", defaults.d_cutoff)),
            ),
            beta_scale=BodyPartBetaScale(
                hand=float(section.get("hand_beta_scale", scale_defaults.hand)),
                limb=float(section.get("limb_beta_scale", scale_defaults.limb)),
                core=float(section.get("core_beta_scale", scale_defaults.core)),
            ),
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool):
        self._enabled = value
        if not value:
            self.reset()

    @property
    def tracked_bones(self) -> int:
        return len(self._filters)

    def reset(self):
        """Drop all filter state (new motion source)."""
        self._filters.clear()
        self.logger.debug("Pose filters reset")

    def _get_filter(self, bone: MixamoBone) -> OneEuroVectorFilter:
        """Get or create the filter for a bone."""
        if bone not in self._filters:
            scale = self.beta_scale.for_part(classify_bone(bone))
            self._filters[bone] = OneEuroVectorFilter(
                replace(self.params, beta=self.params.beta * scale)
            )
        return self._filters[bone]

    def smooth_pose(self, pose: CanonicalPose, timestamp: float) -> CanonicalPose:
        """
        Smooth all points in a pose.

        Args:
            pose: Canonical pose for this frame
            timestamp: Timeline position in seconds

        Returns:
            New CanonicalPose with smoothed positions and unchanged visibility
        """
        if not self._enabled:
            return pose

        smoothed = CanonicalPose()
        for bone, point in pose.items():
            position = self._get_filter(bone).filter(timestamp, point.position)
            smoothed[bone] = PosePoint(position, point.visibility)

        return smoothed


# Preset configurations for different use cases
SMOOTH_PRESETS = {
    "default": OneEuroFilterParams(min_cutoff=0.01, beta=0.1, d_cutoff=1.0),
    "stable": OneEuroFilterParams(min_cutoff=0.005, beta=0.05, d_cutoff=1.0),
    "responsive": OneEuroFilterParams(min_cutoff=0.05, beta=0.5, d_cutoff=1.0),
    "position": OneEuroFilterParams(min_cutoff=0.004, beta=1.0, d_cutoff=1.0),
}
