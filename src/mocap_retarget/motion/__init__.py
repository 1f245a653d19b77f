"""Motion processing - smoothing, root motion, bone access, retargeting"""

from .smoothing import (
    InterpolationRange,
    SmoothingConfig,
    QuaternionSmoother,
    PositionSmoother,
    OutlierGate,
    BoneSmoother,
)
from .root_motion import RootMotionEstimator, RootMotionSettings
from .bone_handle import BoneHandle, SceneBone, build_skeleton
from .bone_resolver import name_variants, resolve_bone, resolve_skeleton
from .pose_retargeter import Retargeter, RetargetSettings, BindInfo
from .pipeline import MotionPipeline

__all__ = [
    "InterpolationRange", "SmoothingConfig", "QuaternionSmoother",
    "PositionSmoother", "OutlierGate", "BoneSmoother",
    "RootMotionEstimator", "RootMotionSettings",
    "BoneHandle", "SceneBone", "build_skeleton",
    "name_variants", "resolve_bone", "resolve_skeleton",
    "Retargeter", "RetargetSettings", "BindInfo",
    "MotionPipeline",
]
