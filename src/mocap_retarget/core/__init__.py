"""Core systems - config, logging, skeleton vocabulary, vector math"""

from .config import Config
from .logging import setup_logging, setup_logging_from_config, get_logger
from .exceptions import RetargetError, UnknownBoneError, LandmarkFormatError
from .mixamo_skeleton import (
    MixamoBone,
    MIXAMO_BONE_NAMES,
    MIXAMO_BONE_PARENTS,
    SKELETON_BONES,
    OBSERVATION_ONLY,
    CHAIN_LINKS,
    STANDARD_CHAIN_LINKS,
    FINGER_NAMES,
    BodyPart,
    classify_bone,
    is_hand_bone,
    finger_bone,
    MediaPipeLandmark,
    HandLandmark,
    HAND_LANDMARK_TO_BONE,
    BODY_LANDMARK_COUNT,
    HAND_LANDMARK_COUNT,
)

__all__ = [
    "Config", "setup_logging", "setup_logging_from_config", "get_logger",
    "RetargetError", "UnknownBoneError", "LandmarkFormatError",
    "MixamoBone", "MIXAMO_BONE_NAMES", "MIXAMO_BONE_PARENTS",
    "SKELETON_BONES", "OBSERVATION_ONLY",
    "CHAIN_LINKS", "STANDARD_CHAIN_LINKS", "FINGER_NAMES",
    "BodyPart", "classify_bone", "is_hand_bone", "finger_bone",
    "MediaPipeLandmark", "HandLandmark", "HAND_LANDMARK_TO_BONE",
    "BODY_LANDMARK_COUNT", "HAND_LANDMARK_COUNT",
]
