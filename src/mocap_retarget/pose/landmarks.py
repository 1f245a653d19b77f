"""Landmark records produced by the external pose-estimation service."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import numpy as np

from mocap_retarget.core import LandmarkFormatError


@dataclass
class LandmarkPoint:
    """Single observed landmark with optional confidence."""
    x: float
    y: float
    z: float
    visibility: Optional[float] = None

    @property
    def visibility_or_default(self) -> float:
        return 1.0 if self.visibility is None else float(self.visibility)

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    @property
    def world_position(self) -> np.ndarray:
        """Position flipped into skeleton convention (Y up, Z forward)."""
        return np.array([self.x, -self.y, -self.z], dtype=np.float64)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LandmarkPoint":
        try:
            visibility = data.get("visibility")
            return cls(
                x=float(data["x"]),
                y=float(data["y"]),
                z=float(data.get("z", 0.0)),
                visibility=None if visibility is None else float(visibility),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LandmarkFormatError(f"Invalid landmark {data!r}: {e}") from e

    def to_dict(self) -> Dict[str, float]:
        data = {"x": self.x, "y": self.y, "z": self.z}
        if self.visibility is not None:
            data["visibility"] = self.visibility
        return data


def parse_landmarks(data: Optional[Sequence[Dict[str, Any]]]) -> List[LandmarkPoint]:
    if not data:
        return []
    return [LandmarkPoint.from_dict(item) for item in data]


@dataclass
class LandmarkFrame:
    """One frame of pose-service output.

    ``landmarks`` are image-normalized (x, y in 0-1) and drive root motion;
    ``world_landmarks`` are metric, hip-centred and drive rotations.
    """
    frame_index: int
    landmarks: List[LandmarkPoint] = field(default_factory=list)
    world_landmarks: List[LandmarkPoint] = field(default_factory=list)
    left_hand: List[LandmarkPoint] = field(default_factory=list)
    right_hand: List[LandmarkPoint] = field(default_factory=list)
    face: List[LandmarkPoint] = field(default_factory=list)

    @property
    def has_body(self) -> bool:
        return bool(self.world_landmarks)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LandmarkFrame":
        """Parse a frame record.

        Accepts both camelCase and snake_case landmark keys. When no world
        landmarks are present the image landmarks stand in for them.
        """
        if "frame_index" not in data:
            raise LandmarkFormatError("Frame record has no frame_index")

        def pick(key: str, alt: str):
            if data.get(key) is not None:
                return data[key]
            return data.get(alt)

        image = parse_landmarks(pick("poseLandmarks", "landmarks"))
        world = parse_landmarks(pick("poseWorldLandmarks", "pose_world_landmarks"))

        try:
            frame_index = int(data["frame_index"])
        except (TypeError, ValueError) as e:
            raise LandmarkFormatError(f"Invalid frame_index: {data['frame_index']!r}") from e

        return cls(
            frame_index=frame_index,
            landmarks=image,
            world_landmarks=world if world else list(image),
            left_hand=parse_landmarks(pick("leftHandLandmarks", "left_hand_landmarks")),
            right_hand=parse_landmarks(pick("rightHandLandmarks", "right_hand_landmarks")),
            face=parse_landmarks(pick("faceLandmarks", "face_landmarks")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize world landmarks and hands (image landmarks are omitted)."""
        return {
            "frame_index": self.frame_index,
            "poseWorldLandmarks": [p.to_dict() for p in self.world_landmarks],
            "faceLandmarks": [p.to_dict() for p in self.face] or None,
            "leftHandLandmarks": [p.to_dict() for p in self.left_hand] or None,
            "rightHandLandmarks": [p.to_dict() for p in self.right_hand] or None,
        }


@dataclass
class PoseExtractionResult:
    """A whole extracted clip: frames plus source video metadata."""
    frames: List[LandmarkFrame]
    fps: float
    width: int
    height: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def effective_fps(self) -> float:
        return self.fps if self.fps > 0 else 30.0

    def timestamp_for(self, index: int) -> float:
        """Timeline position (seconds) of the index-th frame."""
        return index / self.effective_fps

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoseExtractionResult":
        frames = [LandmarkFrame.from_dict(f) for f in data.get("frames") or []]
        try:
            return cls(
                frames=frames,
                fps=float(data.get("fps") or 0.0),
                width=int(data.get("width") or 0),
                height=int(data.get("height") or 0),
                metadata=dict(data.get("metadata") or {}),
            )
        except (TypeError, ValueError) as e:
            raise LandmarkFormatError(f"Invalid extraction result: {e}") from e
