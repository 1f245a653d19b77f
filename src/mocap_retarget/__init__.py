"""Retarget pose-estimation landmarks onto humanoid skeletons"""

__version__ = "0.1.0"

from .core import Config, get_logger, setup_logging, MixamoBone, RetargetError
from .pose import LandmarkFrame, PoseExtractionResult, CanonicalPose, PoseMapper, PoseSmoother
from .motion import BoneHandle, SceneBone, Retargeter, MotionPipeline

__all__ = [
    "__version__",
    "Config", "get_logger", "setup_logging", "MixamoBone", "RetargetError",
    "LandmarkFrame", "PoseExtractionResult", "CanonicalPose", "PoseMapper", "PoseSmoother",
    "BoneHandle", "SceneBone", "Retargeter", "MotionPipeline",
]
