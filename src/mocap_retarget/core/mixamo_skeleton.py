"""Canonical Mixamo skeleton vocabulary and landmark index tables.

This module defines the full Mixamo bone set (spine, head, 5 fingers x 4
segments per hand, legs and toes) as a dense enum, the parent hierarchy,
the parent->child chains used to measure bind-pose directions, and the
MediaPipe body/hand landmark indices the pose mapper consumes.
"""

from enum import Enum, IntEnum
from typing import Dict, List, Tuple, Union

from .exceptions import UnknownBoneError


class MixamoBone(IntEnum):
    """Canonical bone identifiers with a dense index.

    The last three members are observation-only points (no skeleton bone)
    used to orient the head.
    """
    # Root and Spine
    HIPS = 0
    SPINE = 1
    SPINE1 = 2
    SPINE2 = 3

    # Head and Neck
    NECK = 4
    HEAD = 5
    HEAD_TOP_END = 6
    LEFT_EYE = 7
    RIGHT_EYE = 8

    # Left Arm
    LEFT_SHOULDER = 9
    LEFT_ARM = 10
    LEFT_FOREARM = 11
    LEFT_HAND = 12

    # Left Fingers
    LEFT_HAND_THUMB1 = 13
    LEFT_HAND_THUMB2 = 14
    LEFT_HAND_THUMB3 = 15
    LEFT_HAND_THUMB4 = 16
    LEFT_HAND_INDEX1 = 17
    LEFT_HAND_INDEX2 = 18
    LEFT_HAND_INDEX3 = 19
    LEFT_HAND_INDEX4 = 20
    LEFT_HAND_MIDDLE1 = 21
    LEFT_HAND_MIDDLE2 = 22
    LEFT_HAND_MIDDLE3 = 23
    LEFT_HAND_MIDDLE4 = 24
    LEFT_HAND_RING1 = 25
    LEFT_HAND_RING2 = 26
    LEFT_HAND_RING3 = 27
    LEFT_HAND_RING4 = 28
    LEFT_HAND_PINKY1 = 29
    LEFT_HAND_PINKY2 = 30
    LEFT_HAND_PINKY3 = 31
    LEFT_HAND_PINKY4 = 32

    # Right Arm
    RIGHT_SHOULDER = 33
    RIGHT_ARM = 34
    RIGHT_FOREARM = 35
    RIGHT_HAND = 36

    # Right Fingers
    RIGHT_HAND_THUMB1 = 37
    RIGHT_HAND_THUMB2 = 38
    RIGHT_HAND_THUMB3 = 39
    RIGHT_HAND_THUMB4 = 40
    RIGHT_HAND_INDEX1 = 41
    RIGHT_HAND_INDEX2 = 42
    RIGHT_HAND_INDEX3 = 43
    RIGHT_HAND_INDEX4 = 44
    RIGHT_HAND_MIDDLE1 = 45
    RIGHT_HAND_MIDDLE2 = 46
    RIGHT_HAND_MIDDLE3 = 47
    RIGHT_HAND_MIDDLE4 = 48
    RIGHT_HAND_RING1 = 49
    RIGHT_HAND_RING2 = 50
    RIGHT_HAND_RING3 = 51
    RIGHT_HAND_RING4 = 52
    RIGHT_HAND_PINKY1 = 53
    RIGHT_HAND_PINKY2 = 54
    RIGHT_HAND_PINKY3 = 55
    RIGHT_HAND_PINKY4 = 56

    # Left Leg
    LEFT_UP_LEG = 57
    LEFT_LEG = 58
    LEFT_FOOT = 59
    LEFT_TOE_BASE = 60
    LEFT_TOE_END = 61

    # Right Leg
    RIGHT_UP_LEG = 62
    RIGHT_LEG = 63
    RIGHT_FOOT = 64
    RIGHT_TOE_BASE = 65
    RIGHT_TOE_END = 66

    # Observation-only points
    LEFT_EAR = 67
    RIGHT_EAR = 68
    NOSE = 69

    @property
    def canonical_name(self) -> str:
        return MIXAMO_BONE_NAMES[self]

    @classmethod
    def from_name(cls, name: Union[str, "MixamoBone"]) -> "MixamoBone":
        """Look up a bone by canonical name (e.g. "LeftForeArm")."""
        if isinstance(name, MixamoBone):
            return name
        try:
            return _BONES_BY_NAME[name]
        except KeyError:
            raise UnknownBoneError(name) from None


FINGER_NAMES = ("Thumb", "Index", "Middle", "Ring", "Pinky")

_CANONICAL_ORDER = [
    "Hips", "Spine", "Spine1", "Spine2",
    "Neck", "Head", "HeadTop_End", "LeftEye", "RightEye",
    "LeftShoulder", "LeftArm", "LeftForeArm", "LeftHand",
    *[f"LeftHand{finger}{i}" for finger in FINGER_NAMES for i in range(1, 5)],
    "RightShoulder", "RightArm", "RightForeArm", "RightHand",
    *[f"RightHand{finger}{i}" for finger in FINGER_NAMES for i in range(1, 5)],
    "LeftUpLeg", "LeftLeg", "LeftFoot", "LeftToeBase", "LeftToe_End",
    "RightUpLeg", "RightLeg", "RightFoot", "RightToeBase", "RightToe_End",
    "LeftEar", "RightEar", "Nose",
]

# Canonical names, independent of any rig prefix
MIXAMO_BONE_NAMES: Dict[MixamoBone, str] = dict(zip(MixamoBone, _CANONICAL_ORDER))
_BONES_BY_NAME: Dict[str, MixamoBone] = {name: bone for bone, name in MIXAMO_BONE_NAMES.items()}

OBSERVATION_ONLY = frozenset({MixamoBone.LEFT_EAR, MixamoBone.RIGHT_EAR, MixamoBone.NOSE})

# Bones a rig is expected to carry (what a scene binding resolves)
SKELETON_BONES: Tuple[MixamoBone, ...] = tuple(b for b in MixamoBone if b not in OBSERVATION_ONLY)


def finger_bone(side: str, finger: str, segment: int) -> MixamoBone:
    """e.g. finger_bone("Left", "Index", 2) -> LEFT_HAND_INDEX2."""
    return MixamoBone.from_name(f"{side}Hand{finger}{segment}")


def _build_parents() -> Dict[MixamoBone, MixamoBone]:
    b = MixamoBone.from_name
    parents = {
        b("Spine"): b("Hips"),
        b("Spine1"): b("Spine"),
        b("Spine2"): b("Spine1"),
        b("Neck"): b("Spine2"),
        b("Head"): b("Neck"),
        b("HeadTop_End"): b("Head"),
        b("LeftEye"): b("Head"),
        b("RightEye"): b("Head"),
    }
    for side in ("Left", "Right"):
        parents[b(f"{side}Shoulder")] = b("Spine2")
        parents[b(f"{side}Arm")] = b(f"{side}Shoulder")
        parents[b(f"{side}ForeArm")] = b(f"{side}Arm")
        parents[b(f"{side}Hand")] = b(f"{side}ForeArm")
        for finger in FINGER_NAMES:
            parent = b(f"{side}Hand")
            for i in range(1, 5):
                child = finger_bone(side, finger, i)
                parents[child] = parent
                parent = child
        parents[b(f"{side}UpLeg")] = b("Hips")
        parents[b(f"{side}Leg")] = b(f"{side}UpLeg")
        parents[b(f"{side}Foot")] = b(f"{side}Leg")
        parents[b(f"{side}ToeBase")] = b(f"{side}Foot")
        parents[b(f"{side}Toe_End")] = b(f"{side}ToeBase")
    return parents


# Bone parent relationships (child -> parent)
MIXAMO_BONE_PARENTS: Dict[MixamoBone, MixamoBone] = _build_parents()


def _build_chain_links() -> List[Tuple[MixamoBone, MixamoBone]]:
    b = MixamoBone.from_name
    links = [(b("Neck"), b("Head"))]
    for side in ("Left", "Right"):
        links.append((b(f"{side}Arm"), b(f"{side}ForeArm")))
        links.append((b(f"{side}ForeArm"), b(f"{side}Hand")))
        for finger in FINGER_NAMES:
            parent = b(f"{side}Hand")
            for i in range(1, 5):
                child = finger_bone(side, finger, i)
                links.append((parent, child))
                parent = child
    for side in ("Left", "Right"):
        links.extend([
            (b(f"{side}UpLeg"), b(f"{side}Leg")),
            (b(f"{side}Leg"), b(f"{side}Foot")),
            (b(f"{side}Foot"), b(f"{side}ToeBase")),
            (b(f"{side}ToeBase"), b(f"{side}Toe_End")),
        ])
    return links


# Parent -> child links whose bind-pose directions are recorded at bind time
CHAIN_LINKS: List[Tuple[MixamoBone, MixamoBone]] = _build_chain_links()

# Links aligned directionally after the dedicated limb/hand/head handlers
# (fingers and toes; the hand itself is oriented by its palm basis)
STANDARD_CHAIN_LINKS: List[Tuple[MixamoBone, MixamoBone]] = [
    (parent, child) for parent, child in CHAIN_LINKS
    if "Hand" in child.canonical_name and parent.canonical_name not in ("LeftHand", "RightHand")
] + [
    (parent, child) for parent, child in CHAIN_LINKS
    if "Toe" in child.canonical_name
]


class BodyPart(Enum):
    """Body-part classes with distinct smoothing behaviour."""
    HAND = "hand"
    CORE = "core"
    LIMB = "limb"


_CORE_NAMES = frozenset({
    "Hips", "Spine", "Spine1", "Spine2", "Neck", "Head", "HeadTop_End",
    "LeftEye", "RightEye", "LeftEar", "RightEar", "Nose",
    "LeftShoulder", "RightShoulder",
})


def is_hand_bone(name: str) -> bool:
    """Hand or finger bone, matched on the name."""
    return "Hand" in name and (
        any(finger in name for finger in FINGER_NAMES)
        or name in ("LeftHand", "RightHand")
    )


def classify_bone(name: Union[str, MixamoBone]) -> BodyPart:
    if isinstance(name, MixamoBone):
        name = name.canonical_name
    if is_hand_bone(name):
        return BodyPart.HAND
    if name in _CORE_NAMES:
        return BodyPart.CORE
    return BodyPart.LIMB


class MediaPipeLandmark(IntEnum):
    """MediaPipe Pose landmark indices."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


BODY_LANDMARK_COUNT = 33


class HandLandmark(IntEnum):
    """MediaPipe Hands landmark indices (21 per hand)."""
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_MCP = 5
    INDEX_PIP = 6
    INDEX_DIP = 7
    INDEX_TIP = 8
    MIDDLE_MCP = 9
    MIDDLE_PIP = 10
    MIDDLE_DIP = 11
    MIDDLE_TIP = 12
    RING_MCP = 13
    RING_PIP = 14
    RING_DIP = 15
    RING_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


HAND_LANDMARK_COUNT = 21


def hand_landmark_bones(side: str) -> Dict[HandLandmark, MixamoBone]:
    """Map the 20 finger landmarks of one hand onto its finger bones.

    Segments run base to tip, four landmarks per finger starting at
    index 1 (thumb CMC).
    """
    mapping = {}
    for f, finger in enumerate(FINGER_NAMES):
        for segment in range(1, 5):
            mapping[HandLandmark(1 + f * 4 + segment - 1)] = finger_bone(side, finger, segment)
    return mapping


HAND_LANDMARK_TO_BONE: Dict[str, Dict[HandLandmark, MixamoBone]] = {
    "Left": hand_landmark_bones("Left"),
    "Right": hand_landmark_bones("Right"),
}
