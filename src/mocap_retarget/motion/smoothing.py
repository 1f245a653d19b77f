"""Per-bone rotation and position smoothing.

Rotation smoothing slerps toward each new target with a factor picked from
recent angular speed (fast motion -> responsive, slow -> smooth) and keeps
quaternions on one hemisphere so q and -q never fight. Position smoothing
runs a One Euro filter and applies the same speed classification. Both
position smoothing and the standalone OutlierGate drop single-frame
glitches that land far outside the recent spread.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Union
import numpy as np

from mocap_retarget.core import Config, get_logger, MixamoBone, is_hand_bone
from mocap_retarget.core.math3d import (
    quat_conjugate,
    quat_multiply,
    quat_normalize,
    quat_rotation_angle,
    quat_slerp,
    lerp_vec,
)
from mocap_retarget.pose.pose_smoother import OneEuroFilterParams, OneEuroVectorFilter

BoneKey = Union[MixamoBone, str]


@dataclass
class InterpolationRange:
    """Base/min/max interpolation factors for one class of bones."""
    base: float
    minimum: float
    maximum: float

    def fast(self) -> float:
        return min(self.base * 1.5, self.maximum)

    def slow(self) -> float:
        return max(self.base * 0.7, self.minimum)


@dataclass
class SmoothingConfig:
    """Smoothing parameters. Defaults were tuned by hand on recorded clips."""
    enable_velocity_adaptive: bool = True
    enable_quaternion_smoothing: bool = True
    enable_outlier_rejection: bool = True
    base_factor: float = 0.5
    min_factor: float = 0.1
    max_factor: float = 0.9
    hand_base_factor: float = 0.7
    hand_min_factor: float = 0.3
    hand_max_factor: float = 0.85
    velocity_threshold: float = 0.1
    outlier_threshold: float = 3.0    # standard deviations
    window_size: int = 10
    min_outlier_distance: float = 1e-4
    max_consecutive_outliers: int = 3
    position_min_cutoff: float = 0.004
    position_beta: float = 1.0

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "SmoothingConfig":
        return (config or Config()).fill(cls(), "smoothing")

    @property
    def body_range(self) -> InterpolationRange:
        return InterpolationRange(self.base_factor, self.min_factor, self.max_factor)

    @property
    def hand_range(self) -> InterpolationRange:
        return InterpolationRange(self.hand_base_factor, self.hand_min_factor, self.hand_max_factor)

    def range_for(self, bone_name: str) -> InterpolationRange:
        return self.hand_range if is_hand_bone(bone_name) else self.body_range


def adaptive_factor(velocities, threshold: float, factors: InterpolationRange) -> float:
    """Interpolation factor from the mean of recent speeds."""
    if not velocities:
        return factors.base
    mean_velocity = sum(velocities) / len(velocities)
    return factors.fast() if mean_velocity > threshold else factors.slow()


class QuaternionSmoother:
    """Velocity-adaptive slerp smoother for one rotation signal."""

    def __init__(self, config: SmoothingConfig = None, factors: Optional[InterpolationRange] = None):
        self.config = config or SmoothingConfig()
        self.factors = factors or self.config.body_range
        self._prev_quat: Optional[np.ndarray] = None
        self._prev_time: Optional[float] = None
        self._velocities: Deque[float] = deque(maxlen=self.config.window_size)

    @property
    def recent_velocities(self) -> List[float]:
        return list(self._velocities)

    def reset(self):
        self._prev_quat = None
        self._prev_time = None
        self._velocities.clear()

    def smooth(self, timestamp: float, target: np.ndarray) -> np.ndarray:
        """
        Smooth one rotation sample.

        Args:
            timestamp: Seconds
            target: Target quaternion (w, x, y, z)

        Returns:
            Smoothed quaternion
        """
        target = quat_normalize(target)
        if self._prev_quat is None:
            self._prev_quat = target
            self._prev_time = timestamp
            return target.copy()

        dt = timestamp - self._prev_time
        if dt <= 0:
            return self._prev_quat.copy()

        if self.config.enable_quaternion_smoothing and float(np.dot(self._prev_quat, target)) < 0:
            target = -target

        delta = quat_multiply(target, quat_conjugate(self._prev_quat))
        angular_velocity = quat_rotation_angle(delta) / dt

        factor = self.factors.base
        if self.config.enable_velocity_adaptive:
            self._velocities.append(angular_velocity)
            factor = adaptive_factor(self._velocities, self.config.velocity_threshold, self.factors)

        smoothed = quat_slerp(self._prev_quat, target, factor)
        self._prev_quat = smoothed
        self._prev_time = timestamp
        return smoothed.copy()


def outside_spread(history, position: np.ndarray, threshold: float, min_distance: float) -> bool:
    """True when position lies further than threshold * stddev from the mean of history.

    Needs at least three points. The limit never drops below min_distance,
    so a perfectly still history does not turn every later point into an outlier.
    """
    if len(history) < 3:
        return False
    points = np.array(history)
    mean = points.mean(axis=0)
    std = float(np.sqrt(np.mean(np.sum((points - mean) ** 2, axis=1))))
    limit = max(std * threshold, min_distance)
    return float(np.linalg.norm(position - mean)) > limit


class OutlierGate:
    """
    Drops single-frame glitches from one raw point stream.

    A point outside the spread of recently accepted points is replaced by
    the last accepted one. After max_consecutive_outliers rejections in a
    row the jump is taken as real motion and the history restarts there.
    """

    def __init__(self, config: SmoothingConfig = None):
        self.config = config or SmoothingConfig()
        self._accepted: Deque[np.ndarray] = deque(maxlen=self.config.window_size)
        self._rejected_in_row = 0

    @property
    def rejected_in_row(self) -> int:
        return self._rejected_in_row

    def reset(self):
        self._accepted.clear()
        self._rejected_in_row = 0

    def filter(self, position: np.ndarray) -> np.ndarray:
        position = np.asarray(position, dtype=np.float64)
        c = self.config
        if c.enable_outlier_rejection and outside_spread(
            self._accepted, position, c.outlier_threshold, c.min_outlier_distance
        ):
            self._rejected_in_row += 1
            if self._rejected_in_row <= c.max_consecutive_outliers:
                return self._accepted[-1].copy()
            self._accepted.clear()

        self._rejected_in_row = 0
        self._accepted.append(position.copy())
        return position.copy()


class PositionSmoother:
    """One Euro filtered position with speed-adaptive blending and outlier rejection."""

    def __init__(
        self,
        config: SmoothingConfig = None,
        factors: Optional[InterpolationRange] = None,
        filter_params: Optional[OneEuroFilterParams] = None
    ):
        self.config = config or SmoothingConfig()
        self.factors = factors or self.config.body_range
        self._filter = OneEuroVectorFilter(filter_params or OneEuroFilterParams(
            min_cutoff=self.config.position_min_cutoff,
            beta=self.config.position_beta,
            d_cutoff=1.0,
        ))
        self._prev_position: Optional[np.ndarray] = None
        self._prev_time: Optional[float] = None
        self._velocities: Deque[float] = deque(maxlen=self.config.window_size)
        self._positions: Deque[np.ndarray] = deque(maxlen=self.config.window_size)
        self._rejected_in_row = 0

    @property
    def recent_velocities(self) -> List[float]:
        return list(self._velocities)

    def reset(self):
        self._filter.reset()
        self._prev_position = None
        self._prev_time = None
        self._velocities.clear()
        self._positions.clear()
        self._rejected_in_row = 0

    def is_outlier(self, position: np.ndarray) -> bool:
        """True when position is further than threshold * stddev from the recent mean."""
        return outside_spread(self._positions, position, self.config.outlier_threshold, self.config.min_outlier_distance)

    def smooth(self, timestamp: float, target: np.ndarray) -> np.ndarray:
        target = np.asarray(target, dtype=np.float64)

        if self.config.enable_outlier_rejection and self.is_outlier(target):
            self._rejected_in_row += 1
            if self._rejected_in_row <= self.config.max_consecutive_outliers:
                return self._prev_position.copy()
            # Persistent jump: the subject really moved, start over from here
            self.reset()

        self._rejected_in_row = 0
        filtered = self._filter.filter(timestamp, target)

        if self._prev_position is not None and self._prev_time is not None:
            dt = timestamp - self._prev_time
            if dt <= 0:
                return self._prev_position.copy()
            speed = float(np.linalg.norm(filtered - self._prev_position)) / dt
            if self.config.enable_velocity_adaptive:
                self._velocities.append(speed)
                factor = adaptive_factor(self._velocities, self.config.velocity_threshold, self.factors)
                filtered = lerp_vec(self._prev_position, filtered, factor)

        self._positions.append(filtered.copy())
        self._prev_position = filtered
        self._prev_time = timestamp
        return filtered.copy()


class BoneSmoother:
    """
    Rotation and position smoothers per canonical bone.

    Smoothers are allocated on first use of a bone and live until reset().
    Hand and finger bones use their own, more responsive factor range.
    """

    def __init__(self, config: SmoothingConfig = None):
        self.logger = get_logger("motion.smoothing")
        self.config = config or SmoothingConfig()
        self._rotation_smoothers: Dict[MixamoBone, QuaternionSmoother] = {}
        self._position_smoothers: Dict[MixamoBone, PositionSmoother] = {}
        self._gates: Dict[MixamoBone, OutlierGate] = {}

    @property
    def tracked_bones(self) -> int:
        return len(set(self._rotation_smoothers) | set(self._position_smoothers) | set(self._gates))

    def smooth_rotation(self, bone: BoneKey, timestamp: float, target: np.ndarray) -> np.ndarray:
        bone = MixamoBone.from_name(bone)
        smoother = self._rotation_smoothers.get(bone)
        if smoother is None:
            smoother = QuaternionSmoother(self.config, self.config.range_for(bone.canonical_name))
            self._rotation_smoothers[bone] = smoother
        return smoother.smooth(timestamp, target)

    def smooth_position(self, bone: BoneKey, timestamp: float, target: np.ndarray) -> np.ndarray:
        bone = MixamoBone.from_name(bone)
        smoother = self._position_smoothers.get(bone)
        if smoother is None:
            smoother = PositionSmoother(self.config, self.config.range_for(bone.canonical_name))
            self._position_smoothers[bone] = smoother
        return smoother.smooth(timestamp, target)

    def reject_outlier(self, bone: BoneKey, position: np.ndarray) -> np.ndarray:
        """Raw position, or the last accepted one when position is a single-frame glitch."""
        bone = MixamoBone.from_name(bone)
        gate = self._gates.get(bone)
        if gate is None:
            gate = OutlierGate(self.config)
            self._gates[bone] = gate
        return gate.filter(position)

    def get_adaptive_interpolation_factor(self, bone: BoneKey) -> float:
        """Interpolation factor for a bone from its recent angular speed."""
        bone = MixamoBone.from_name(bone)
        factors = self.config.range_for(bone.canonical_name)
        smoother = self._rotation_smoothers.get(bone)
        if smoother is None:
            return factors.base
        return adaptive_factor(smoother.recent_velocities, self.config.velocity_threshold, factors)

    def reset(self):
        """Forget all bones (new motion source)."""
        self._rotation_smoothers.clear()
        self._position_smoothers.clear()
        self._gates.clear()
        self.logger.debug("Bone smoothers reset")

    def reset_bone(self, bone: BoneKey):
        bone = MixamoBone.from_name(bone)
        self._rotation_smoothers.pop(bone, None)
        self._position_smoothers.pop(bone, None)
        self._gates.pop(bone, None)
