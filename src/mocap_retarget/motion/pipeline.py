"""Motion Pipeline - landmark frames to skeleton updates, one frame per call"""

import time
from typing import Mapping, Optional

from mocap_retarget.core import Config, get_logger, RetargetError
from mocap_retarget.pose.landmarks import LandmarkFrame, PoseExtractionResult
from mocap_retarget.pose.pose_mapper import CanonicalPose, PoseMapper, PoseMappingSettings, PalmOrientationSmoother
from mocap_retarget.pose.pose_smoother import PoseSmoother
from .bone_handle import BoneHandle
from .bone_resolver import resolve_skeleton
from .pose_retargeter import Retargeter


class MotionPipeline:
    """
    Runs map -> reject glitches -> smooth -> retarget for each incoming frame.

    Recorded clips are timed from their frame index and fps; live frames
    from a monotonic clock. Call reset() before switching motion source so
    filter velocities and the root-motion origin do not carry over.
    """

    def __init__(
        self,
        retargeter: Retargeter,
        mapper: Optional[PoseMapper] = None,
        pose_smoother: Optional[PoseSmoother] = None,
        palm_smoother: Optional[PalmOrientationSmoother] = None,
        config: Optional[Config] = None
    ):
        self.logger = get_logger("motion.pipeline")
        self.retargeter = retargeter
        self.mapper = mapper or PoseMapper(PoseMappingSettings.from_config(config))
        self.pose_smoother = pose_smoother or PoseSmoother.from_config(config)
        self.palm_smoother = palm_smoother or self.mapper.create_palm_smoother()

        self._frame_count = 0
        self._skipped_count = 0
        self._live_start: Optional[float] = None

        self.logger.info("Initialized motion pipeline")

    @classmethod
    def from_bone_map(cls, bone_map: Mapping[str, BoneHandle], config: Optional[Config] = None) -> "MotionPipeline":
        """Build a pipeline for a rig given by its own bone names."""
        bones = resolve_skeleton(bone_map)
        if not bones:
            raise RetargetError(f"No canonical bones found among {len(bone_map)} rig bones")
        return cls(Retargeter(bones, config=config), config=config)

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    def apply_frame(
        self,
        frame: LandmarkFrame,
        timestamp: float,
        width: Optional[float] = None,
        height: Optional[float] = None
    ) -> bool:
        """
        Apply one landmark frame to the skeleton.

        Args:
            frame: Pose-service output for this frame
            timestamp: Timeline position in seconds
            width: Source frame width in pixels
            height: Source frame height in pixels

        Returns:
            True if the skeleton was updated, False if the frame had no usable body
        """
        aspect_ratio = width / height if width and height else 1.0
        pose = self.mapper.build_pose(
            frame.world_landmarks,
            frame.left_hand or None,
            frame.right_hand or None,
            palm_smoother=self.palm_smoother,
            aspect_ratio=aspect_ratio,
        )
        if pose.is_empty:
            self._skipped_count += 1
            self.logger.debug(f"Frame {frame.frame_index}: no body landmarks, skipped")
            return False

        self._reject_glitches(pose)
        pose = self.pose_smoother.smooth_pose(pose, timestamp)
        self.retargeter.apply_pose(
            pose,
            pose_landmarks=frame.landmarks or None,
            video_width=width,
            video_height=height,
            timestamp=timestamp,
        )
        self._frame_count += 1
        return True

    def _reject_glitches(self, pose: CanonicalPose) -> None:
        """Replace single-frame tracking glitches with each point's last accepted position."""
        gate = self.retargeter.smoother
        for bone, point in pose.items():
            point.position = gate.reject_outlier(bone, point.position)

    def play(self, result: PoseExtractionResult, reset: bool = True) -> int:
        """
        Apply every frame of an extracted clip in order.

        Returns:
            Number of frames that updated the skeleton
        """
        if reset:
            self.reset()

        applied = 0
        for index, frame in enumerate(result.frames):
            if self.apply_frame(frame, result.timestamp_for(index), result.width, result.height):
                applied += 1

        self.logger.info(f"Played {applied}/{result.frame_count} frames at {result.effective_fps:.1f} fps")
        return applied

    def apply_live_frame(
        self,
        frame: LandmarkFrame,
        width: Optional[float] = None,
        height: Optional[float] = None
    ) -> bool:
        """Apply a frame from a live source, timed by a monotonic clock."""
        now = time.monotonic()
        if self._live_start is None:
            self._live_start = now
        return self.apply_frame(frame, now - self._live_start, width, height)

    def reset(self) -> None:
        """Clear all temporal state before a new motion source."""
        self.pose_smoother.reset()
        self.palm_smoother.reset()
        self.retargeter.reset_smoothing()
        self._live_start = None
        self._frame_count = 0
        self._skipped_count = 0
        self.logger.debug("Pipeline state reset")
