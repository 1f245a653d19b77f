"""Shared fixtures: a centimeter T-pose rig and matching poses/landmarks."""

import math

import numpy as np
import pytest

from mocap_retarget.core import Config, MixamoBone, FINGER_NAMES, MediaPipeLandmark, finger_bone
from mocap_retarget.core.math3d import quat_from_axis_angle, quat_rotate_vector
from mocap_retarget.motion import build_skeleton
from mocap_retarget.pose import CanonicalPose, PosePoint, LandmarkPoint, LandmarkFrame


# Y up, +X toward the character's left, +Z forward
FINGER_OFFSETS = {
    # finger: (offset along the arm from the wrist, sideways z offset)
    "Thumb": (3.0, 4.0),
    "Index": (8.0, 2.5),
    "Middle": (8.0, 0.0),
    "Ring": (7.5, -1.2),
    "Pinky": (7.0, -2.5),
}


def _tpose_positions():
    positions = {
        "Hips": (0, 100, 0),
        "Spine": (0, 110, 0),
        "Spine1": (0, 120, 0),
        "Spine2": (0, 130, 0),
        "Neck": (0, 145, 0),
        "Head": (0, 155, 0),
        "HeadTop_End": (0, 170, 0),
        "LeftEye": (3, 160, 8),
        "RightEye": (-3, 160, 8),
    }
    for side, sign in (("Left", 1.0), ("Right", -1.0)):
        positions[f"{side}Shoulder"] = (5 * sign, 140, 0)
        positions[f"{side}Arm"] = (15 * sign, 140, 0)
        positions[f"{side}ForeArm"] = (40 * sign, 140, 0)
        positions[f"{side}Hand"] = (65 * sign, 140, 0)
        for finger in FINGER_NAMES:
            along, z = FINGER_OFFSETS[finger]
            for segment in range(1, 5):
                x = (65 + along + 2.5 * (segment - 1)) * sign
                positions[finger_bone(side, finger, segment).canonical_name] = (x, 140, z)
        positions[f"{side}UpLeg"] = (9 * sign, 95, 0)
        positions[f"{side}Leg"] = (9 * sign, 52, 0)
        positions[f"{side}Foot"] = (9 * sign, 8, 0)
        positions[f"{side}ToeBase"] = (9 * sign, 0, 12)
        positions[f"{side}Toe_End"] = (9 * sign, 0, 20)
    return {k: np.array(v, dtype=np.float64) for k, v in positions.items()}


TPOSE_POSITIONS = _tpose_positions()

EAR_POSITIONS = {
    "LeftEar": np.array([7.0, 155.0, 0.0]),
    "RightEar": np.array([-7.0, 155.0, 0.0]),
    "Nose": np.array([0.0, 157.0, 9.0]),
}

# 90 degrees about +Y carries the right forearm direction (-X) onto +Z
ELBOW_BEND = quat_from_axis_angle(np.array([0.0, 1.0, 0.0]), math.pi / 2)


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts from the packaged config.yaml."""
    config = Config(Config.default_path())
    yield config
    Config(Config.default_path())


@pytest.fixture
def tpose_positions():
    return {k: v.copy() for k, v in TPOSE_POSITIONS.items()}


@pytest.fixture
def skeleton():
    """Rig bone name -> SceneBone, identity rotations, hips 100 cm up."""
    return build_skeleton(TPOSE_POSITIONS)


@pytest.fixture
def prefixed_skeleton():
    return build_skeleton(TPOSE_POSITIONS, prefix="mixamorig:")


def make_pose(positions, visibility=1.0):
    pose = CanonicalPose()
    for name, position in positions.items():
        pose[name] = PosePoint(np.asarray(position, dtype=np.float64).copy(), visibility)
    return pose


@pytest.fixture
def bind_pose():
    """Canonical pose equal to the rig's own bind positions."""
    return make_pose({**TPOSE_POSITIONS, **EAR_POSITIONS})


@pytest.fixture
def bent_elbow_pose():
    """Bind pose with the right hand and fingers swung 90 degrees forward about the elbow."""
    positions = {**TPOSE_POSITIONS, **EAR_POSITIONS}
    elbow = TPOSE_POSITIONS["RightForeArm"]
    for name in list(positions):
        if name.startswith("RightHand"):
            positions[name] = elbow + quat_rotate_vector(ELBOW_BEND, positions[name] - elbow)
    return make_pose(positions)


# Body landmarks in skeleton convention (meters); stored with y and z
# negated as the pose service reports them
_BODY_LANDMARKS = {
    MediaPipeLandmark.NOSE: (0.0, 0.62, 0.09),
    MediaPipeLandmark.LEFT_EYE: (0.03, 0.65, 0.08),
    MediaPipeLandmark.RIGHT_EYE: (-0.03, 0.65, 0.08),
    MediaPipeLandmark.LEFT_EAR: (0.07, 0.6, 0.0),
    MediaPipeLandmark.RIGHT_EAR: (-0.07, 0.6, 0.0),
    MediaPipeLandmark.LEFT_SHOULDER: (0.18, 0.45, 0.0),
    MediaPipeLandmark.RIGHT_SHOULDER: (-0.18, 0.45, 0.0),
    MediaPipeLandmark.LEFT_ELBOW: (0.2, 0.2, 0.02),
    MediaPipeLandmark.RIGHT_ELBOW: (-0.2, 0.2, 0.02),
    MediaPipeLandmark.LEFT_WRIST: (0.22, -0.02, 0.08),
    MediaPipeLandmark.RIGHT_WRIST: (-0.22, -0.02, 0.08),
    MediaPipeLandmark.LEFT_PINKY: (0.22, -0.1, 0.06),
    MediaPipeLandmark.RIGHT_PINKY: (-0.22, -0.1, 0.06),
    MediaPipeLandmark.LEFT_INDEX: (0.24, -0.1, 0.1),
    MediaPipeLandmark.RIGHT_INDEX: (-0.24, -0.1, 0.1),
    MediaPipeLandmark.LEFT_THUMB: (0.2, -0.06, 0.12),
    MediaPipeLandmark.RIGHT_THUMB: (-0.2, -0.06, 0.12),
    MediaPipeLandmark.LEFT_HIP: (0.1, 0.0, 0.0),
    MediaPipeLandmark.RIGHT_HIP: (-0.1, 0.0, 0.0),
    MediaPipeLandmark.LEFT_KNEE: (0.11, -0.42, 0.03),
    MediaPipeLandmark.RIGHT_KNEE: (-0.11, -0.42, 0.03),
    MediaPipeLandmark.LEFT_ANKLE: (0.11, -0.82, 0.0),
    MediaPipeLandmark.RIGHT_ANKLE: (-0.11, -0.82, 0.0),
    MediaPipeLandmark.LEFT_HEEL: (0.11, -0.86, -0.04),
    MediaPipeLandmark.RIGHT_HEEL: (-0.11, -0.86, -0.04),
    MediaPipeLandmark.LEFT_FOOT_INDEX: (0.11, -0.9, 0.12),
    MediaPipeLandmark.RIGHT_FOOT_INDEX: (-0.11, -0.9, 0.12),
}


def make_world_landmarks(visibility=0.9, skip=()):
    landmarks = []
    for index in range(33):
        x, y, z = _BODY_LANDMARKS.get(index, (0.0, 0.55, 0.05))
        if index in skip:
            landmarks.append(None)
        else:
            landmarks.append(LandmarkPoint(x, -y, -z, visibility))
    return landmarks


def make_image_landmarks(hip_shift=0.0):
    """Image-normalized landmarks; hips 64 px apart on a 640 px frame."""
    landmarks = [LandmarkPoint(0.5, 0.5, 0.0, 0.9) for _ in range(33)]
    landmarks[MediaPipeLandmark.LEFT_HIP] = LandmarkPoint(0.55 + hip_shift, 0.6, 0.0, 0.9)
    landmarks[MediaPipeLandmark.RIGHT_HIP] = LandmarkPoint(0.45 + hip_shift, 0.6, 0.0, 0.9)
    return landmarks


@pytest.fixture
def world_landmarks():
    return make_world_landmarks()


@pytest.fixture
def landmark_frame():
    return LandmarkFrame(
        frame_index=0,
        landmarks=make_image_landmarks(),
        world_landmarks=make_world_landmarks(),
    )
