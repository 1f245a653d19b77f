"""Pose input - landmark records, canonical pose mapping, point filtering"""

from .landmarks import LandmarkPoint, LandmarkFrame, PoseExtractionResult, parse_landmarks
from .pose_mapper import (
    PosePoint,
    CanonicalPose,
    PoseMapper,
    PoseMappingSettings,
    PalmOrientationSmoother,
    build_canonical_pose,
)
from .pose_smoother import (
    OneEuroFilterParams,
    LowPassFilter,
    OneEuroFilter,
    OneEuroVectorFilter,
    BodyPartBetaScale,
    PoseSmoother,
    SMOOTH_PRESETS,
)

__all__ = [
    "LandmarkPoint", "LandmarkFrame", "PoseExtractionResult", "parse_landmarks",
    "PosePoint", "CanonicalPose", "PoseMapper", "PoseMappingSettings",
    "PalmOrientationSmoother", "build_canonical_pose",
    "OneEuroFilterParams", "LowPassFilter", "OneEuroFilter", "OneEuroVectorFilter",
    "BodyPartBetaScale", "PoseSmoother", "SMOOTH_PRESETS",
]
