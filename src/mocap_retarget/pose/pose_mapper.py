"""Map MediaPipe body/hand landmarks onto a canonical Mixamo pose.

Body world landmarks are flipped into skeleton convention (Y up, Z
forward). Points the detector does not observe (spine segments, neck,
head top, toe ends, finger chains) are derived from their neighbours.
A derived point only exists when every input it needs was observed.
"""

from collections.abc import Mapping as MappingABC, MutableMapping
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Union
import numpy as np

from mocap_retarget.core import (
    Config,
    get_logger,
    MixamoBone,
    MediaPipeLandmark,
    HandLandmark,
    HAND_LANDMARK_TO_BONE,
    HAND_LANDMARK_COUNT,
    finger_bone,
)
from mocap_retarget.core.math3d import normalize, length, midpoint, EPSILON
from .landmarks import LandmarkPoint

BoneKey = Union[MixamoBone, str]
Landmarks = Union[Sequence[Optional[LandmarkPoint]], Mapping[int, LandmarkPoint]]


@dataclass
class PosePoint:
    """Canonical joint position with observation confidence."""
    position: np.ndarray
    visibility: float = 1.0

    def copy(self) -> "PosePoint":
        return PosePoint(self.position.copy(), self.visibility)


class CanonicalPose(MutableMapping):
    """Canonical bone -> PosePoint for one frame.

    Backed by a dense slot list indexed by MixamoBone; absent bones are
    empty slots. Keys may be given as MixamoBone or canonical name strings,
    iteration yields MixamoBone members in index order.
    """

    __slots__ = ("_slots",)

    def __init__(self, points: Optional[Mapping[BoneKey, PosePoint]] = None):
        self._slots: List[Optional[PosePoint]] = [None] * len(MixamoBone)
        if points:
            for key, point in points.items():
                self[key] = point

    def __getitem__(self, key: BoneKey) -> PosePoint:
        point = self._slots[MixamoBone.from_name(key)]
        if point is None:
            raise KeyError(key)
        return point

    def __setitem__(self, key: BoneKey, point: PosePoint) -> None:
        self._slots[MixamoBone.from_name(key)] = point

    def __delitem__(self, key: BoneKey) -> None:
        bone = MixamoBone.from_name(key)
        if self._slots[bone] is None:
            raise KeyError(key)
        self._slots[bone] = None

    def __iter__(self) -> Iterator[MixamoBone]:
        for bone, point in zip(MixamoBone, self._slots):
            if point is not None:
                yield bone

    def __len__(self) -> int:
        return sum(1 for point in self._slots if point is not None)

    @property
    def is_empty(self) -> bool:
        return all(point is None for point in self._slots)

    def position(self, key: BoneKey) -> Optional[np.ndarray]:
        point = self.get(key)
        return None if point is None else point.position

    def names(self) -> List[str]:
        return [bone.canonical_name for bone in self]

    def copy(self) -> "CanonicalPose":
        clone = CanonicalPose()
        clone._slots = [None if p is None else p.copy() for p in self._slots]
        return clone

    def to_dict(self) -> Dict[str, dict]:
        return {
            bone.canonical_name: {
                "position": point.position.tolist(),
                "visibility": point.visibility,
            }
            for bone, point in self.items()
        }

    def __repr__(self) -> str:
        return f"CanonicalPose({len(self)} points)"


@dataclass
class PoseMappingSettings:
    """Tunable constants for landmark -> pose mapping."""
    head_top_extension: float = 0.3
    toe_end_extension: float = 0.3
    # Wrist->middle-knuckle length as a fraction of forearm length
    palm_to_forearm_ratio: float = 0.4
    palm_normal_smoothing: float = 0.5
    palm_continuity_weight: float = 0.5

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "PoseMappingSettings":
        return (config or Config()).fill(cls(), "pose_mapping")


def _palm_normal(offsets: np.ndarray, side: str) -> np.ndarray:
    normal = np.cross(offsets[HandLandmark.INDEX_MCP], offsets[HandLandmark.PINKY_MCP])
    if side == "Right":
        normal = -normal
    return normalize(normal)


class PalmOrientationSmoother:
    """
    Resolves the hand detector's depth-sign ambiguity per hand.

    Hand landmarks carry a relative depth whose sign is unreliable, which
    shows up as the palm flipping between facing the camera and facing
    away. Both depth signs are scored on how well the hand continues the
    forearm (elbow -> wrist) and how well the palm normal agrees with the
    previous frame's smoothed normal; the better one wins.
    """

    def __init__(self, smoothing: float = 0.5, continuity_weight: float = 0.5):
        self.smoothing = smoothing
        self.continuity_weight = continuity_weight
        self._normals: Dict[str, np.ndarray] = {}

    def reset(self) -> None:
        self._normals.clear()

    def smoothed_normal(self, side: str) -> Optional[np.ndarray]:
        normal = self._normals.get(side)
        return None if normal is None else normal.copy()

    def resolve_depth_sign(
        self,
        side: str,
        offsets: np.ndarray,
        forearm_dir: Optional[np.ndarray] = None
    ) -> float:
        """
        Pick the depth sign for one hand.

        Args:
            side: "Left" or "Right"
            offsets: (21, 3) hand landmark offsets from the wrist, already in
                skeleton convention
            forearm_dir: Unit elbow -> wrist direction, if known

        Returns:
            +1.0 to keep the depth axis, -1.0 to mirror it
        """
        previous = self._normals.get(side)
        best_sign = 1.0
        best_score = -np.inf
        best_normal = None

        for sign in (1.0, -1.0):
            candidate = offsets.copy()
            candidate[:, 2] *= sign
            normal = _palm_normal(candidate, side)

            score = 0.0
            if forearm_dir is not None:
                score += float(np.dot(normalize(candidate[HandLandmark.MIDDLE_MCP]), forearm_dir))
            if previous is not None:
                score += self.continuity_weight * float(np.dot(normal, previous))

            if score > best_score:
                best_sign, best_score, best_normal = sign, score, normal

        self._update_normal(side, best_normal)
        return best_sign

    def _update_normal(self, side: str, normal: np.ndarray) -> None:
        if length(normal) < EPSILON:
            return
        previous = self._normals.get(side)
        if previous is None:
            self._normals[side] = normal
            return
        blended = normalize(previous * self.smoothing + normal * (1.0 - self.smoothing))
        self._normals[side] = blended if length(blended) > EPSILON else normal


class PoseMapper:
    """
    Builds a CanonicalPose from one frame of landmarks.

    Stateless apart from settings; temporal state for the palm lives in a
    PalmOrientationSmoother owned by the caller.
    """

    def __init__(self, settings: Optional[PoseMappingSettings] = None):
        self.logger = get_logger("pose.mapper")
        self.settings = settings or PoseMappingSettings()

    def create_palm_smoother(self) -> PalmOrientationSmoother:
        return PalmOrientationSmoother(
            smoothing=self.settings.palm_normal_smoothing,
            continuity_weight=self.settings.palm_continuity_weight,
        )

    def build_pose(
        self,
        world_landmarks: Landmarks,
        left_hand: Optional[Sequence[LandmarkPoint]] = None,
        right_hand: Optional[Sequence[LandmarkPoint]] = None,
        palm_smoother: Optional[PalmOrientationSmoother] = None,
        aspect_ratio: float = 1.0
    ) -> CanonicalPose:
        """
        Map one frame of landmarks to a canonical pose.

        Args:
            world_landmarks: 33 body world landmarks (index -> point); entries
                may be missing or None
            left_hand: Optional 21 image-space landmarks of the left hand
            right_hand: Optional 21 image-space landmarks of the right hand
            palm_smoother: Temporal palm orientation state
            aspect_ratio: Frame width / height, to square hand x and depth offsets

        Returns:
            CanonicalPose (empty when no body landmarks were given)
        """
        pose = CanonicalPose()
        if not world_landmarks:
            return pose

        def lm(index: MediaPipeLandmark) -> Optional[PosePoint]:
            return _get_point(world_landmarks, index)

        s = self.settings
        hips = _average(lm(MediaPipeLandmark.LEFT_HIP), lm(MediaPipeLandmark.RIGHT_HIP))
        neck = _average(lm(MediaPipeLandmark.LEFT_SHOULDER), lm(MediaPipeLandmark.RIGHT_SHOULDER))
        nose = lm(MediaPipeLandmark.NOSE)
        left_ear = lm(MediaPipeLandmark.LEFT_EAR)
        right_ear = lm(MediaPipeLandmark.RIGHT_EAR)
        head = _average(left_ear, right_ear) or (nose.copy() if nose else None)

        _assign(pose, MixamoBone.HIPS, hips)
        _assign(pose, MixamoBone.NECK, neck)
        _assign(pose, MixamoBone.HEAD, head)
        _assign(pose, MixamoBone.LEFT_EYE, lm(MediaPipeLandmark.LEFT_EYE))
        _assign(pose, MixamoBone.RIGHT_EYE, lm(MediaPipeLandmark.RIGHT_EYE))
        _assign(pose, MixamoBone.LEFT_EAR, left_ear)
        _assign(pose, MixamoBone.RIGHT_EAR, right_ear)
        _assign(pose, MixamoBone.NOSE, nose)
        _assign(pose, MixamoBone.HEAD_TOP_END, _extend(neck, head, s.head_top_extension))

        spine1 = _average(hips, neck)
        _assign(pose, MixamoBone.SPINE1, spine1)
        _assign(pose, MixamoBone.SPINE, _average(hips, spine1))
        _assign(pose, MixamoBone.SPINE2, _average(spine1, neck))

        for side in ("Left", "Right"):
            upper = side.upper()
            shoulder = lm(MediaPipeLandmark[f"{upper}_SHOULDER"])
            elbow = lm(MediaPipeLandmark[f"{upper}_ELBOW"])
            wrist = lm(MediaPipeLandmark[f"{upper}_WRIST"])
            _assign(pose, MixamoBone.from_name(f"{side}Arm"), shoulder)
            _assign(pose, MixamoBone.from_name(f"{side}ForeArm"), elbow)
            _assign(pose, MixamoBone.from_name(f"{side}Hand"), wrist)

            hand = left_hand if side == "Left" else right_hand
            mapped = False
            if hand:
                mapped = self._map_hand(pose, side, hand, wrist, elbow, palm_smoother, aspect_ratio)
            if not mapped:
                self._synthesize_fingers(pose, side, wrist, lm)

            hip = lm(MediaPipeLandmark[f"{upper}_HIP"])
            knee = lm(MediaPipeLandmark[f"{upper}_KNEE"])
            ankle = lm(MediaPipeLandmark[f"{upper}_ANKLE"])
            toe = lm(MediaPipeLandmark[f"{upper}_FOOT_INDEX"])
            _assign(pose, MixamoBone.from_name(f"{side}UpLeg"), hip)
            _assign(pose, MixamoBone.from_name(f"{side}Leg"), knee)
            _assign(pose, MixamoBone.from_name(f"{side}Foot"), ankle)
            _assign(pose, MixamoBone.from_name(f"{side}ToeBase"), toe)
            _assign(pose, MixamoBone.from_name(f"{side}Toe_End"), _extend(ankle, toe, s.toe_end_extension))

        return pose

    def _synthesize_fingers(self, pose: CanonicalPose, side: str, wrist: Optional[PosePoint], lm) -> None:
        """Straight 4-segment finger chains from the wrist to body fingertip landmarks."""
        upper = side.upper()
        thumb = lm(MediaPipeLandmark[f"{upper}_THUMB"])
        index = lm(MediaPipeLandmark[f"{upper}_INDEX"])
        pinky = lm(MediaPipeLandmark[f"{upper}_PINKY"])
        # The body model has no middle/ring tips; use the index-pinky midpoint
        between = _average(index, pinky)
        tips = {
            "Thumb": thumb,
            "Index": index,
            "Middle": between,
            "Ring": between,
            "Pinky": pinky,
        }
        for finger, tip in tips.items():
            for segment, point in enumerate(_finger_chain(wrist, tip), start=1):
                pose[finger_bone(side, finger, segment)] = point

    def _map_hand(
        self,
        pose: CanonicalPose,
        side: str,
        hand: Sequence[LandmarkPoint],
        wrist: Optional[PosePoint],
        elbow: Optional[PosePoint],
        palm_smoother: Optional[PalmOrientationSmoother],
        aspect_ratio: float
    ) -> bool:
        """Place the 21 hand landmarks around the body wrist. Returns False when unusable."""
        if wrist is None or elbow is None or len(hand) < HAND_LANDMARK_COUNT:
            return False

        forearm = wrist.position - elbow.position
        forearm_length = length(forearm)
        if forearm_length < EPSILON:
            return False

        raw = np.array([[p.x, p.y, p.z] for p in hand[:HAND_LANDMARK_COUNT]], dtype=np.float64)
        offsets = raw - raw[HandLandmark.WRIST]
        # Hand x and z share the image-width scale
        offsets[:, [0, 2]] *= aspect_ratio
        # Image y grows downward and depth grows away from the camera
        offsets[:, 1] *= -1.0
        offsets[:, 2] *= -1.0

        palm_length = length(offsets[HandLandmark.MIDDLE_MCP])
        if palm_length < EPSILON:
            self.logger.debug(f"{side} hand: degenerate palm, using fallback chain")
            return False

        if palm_smoother is not None:
            offsets[:, 2] *= palm_smoother.resolve_depth_sign(side, offsets, forearm / forearm_length)

        scale = self.settings.palm_to_forearm_ratio * forearm_length / palm_length
        positions = wrist.position + offsets * scale

        for landmark, bone in HAND_LANDMARK_TO_BONE[side].items():
            visibility = min(hand[landmark].visibility_or_default, wrist.visibility)
            pose[bone] = PosePoint(positions[landmark], visibility)
        return True


def _get_point(landmarks: Landmarks, index: int) -> Optional[PosePoint]:
    if isinstance(landmarks, MappingABC):
        landmark = landmarks.get(int(index))
    elif 0 <= index < len(landmarks):
        landmark = landmarks[index]
    else:
        landmark = None
    if landmark is None:
        return None
    return PosePoint(landmark.world_position, landmark.visibility_or_default)


def _assign(pose: CanonicalPose, bone: MixamoBone, point: Optional[PosePoint]) -> None:
    if point is not None:
        pose[bone] = point.copy()


def _average(a: Optional[PosePoint], b: Optional[PosePoint]) -> Optional[PosePoint]:
    """Midpoint with average visibility; None unless both exist."""
    if a is None or b is None:
        return None
    return PosePoint(midpoint(a.position, b.position), (a.visibility + b.visibility) * 0.5)


def _extend(base: Optional[PosePoint], end: Optional[PosePoint], factor: float) -> Optional[PosePoint]:
    """Point past ``end`` along base -> end by ``factor`` of that segment."""
    if base is None or end is None:
        return None
    direction = end.position - base.position
    return PosePoint(end.position + direction * factor, min(base.visibility, end.visibility))


def _finger_chain(base: Optional[PosePoint], tip: Optional[PosePoint], segments: int = 4) -> List[PosePoint]:
    if base is None or tip is None:
        return []
    visibility = min(base.visibility, tip.visibility)
    return [
        PosePoint(base.position + (tip.position - base.position) * (i / segments), visibility)
        for i in range(1, segments + 1)
    ]


def build_canonical_pose(
    world_landmarks: Landmarks,
    left_hand: Optional[Sequence[LandmarkPoint]] = None,
    right_hand: Optional[Sequence[LandmarkPoint]] = None,
    palm_smoother: Optional[PalmOrientationSmoother] = None,
    settings: Optional[PoseMappingSettings] = None
) -> CanonicalPose:
    """Functional shortcut for PoseMapper(settings).build_pose(...)."""
    return PoseMapper(settings).build_pose(world_landmarks, left_hand, right_hand, palm_smoother)
