"""
Pose Retargeting - drive a humanoid skeleton from a canonical pose.

The retargeter records the skeleton's bind pose once, then for every frame
compares observed joint directions and bases against that bind pose and
blends each bone toward the bind-relative delta rotation.

Per frame, in order:
1. Hip placement (height from foot-to-hip distance, lateral/forward from
   root motion)
2. Hips and spine orientation from orthonormal bases
3. Limbs: upper bone aligned and swiveled into the observed bend plane,
   then the lower bone aligned against it
4. Wrist orientation from a palm basis
5. Head orientation from ears/eyes/shoulders
6. Direction alignment for fingers and toes

Missing points or degenerate geometry skip the affected joint for that
frame; applying a pose never raises.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Union
import numpy as np

from mocap_retarget.core import (
    Config,
    get_logger,
    MixamoBone,
    RetargetError,
    CHAIN_LINKS,
    STANDARD_CHAIN_LINKS,
)
from mocap_retarget.core.math3d import (
    X_AXIS,
    Z_AXIS,
    length,
    length_sq,
    lerp,
    normalize,
    quat_from_basis,
    quat_from_unit_vectors,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    quat_rotate_vector,
    quat_slerp,
)
from mocap_retarget.pose.landmarks import LandmarkPoint
from mocap_retarget.pose.pose_mapper import CanonicalPose, PosePoint
from .bone_handle import BoneHandle
from .root_motion import RootMotionEstimator, RootMotionSettings
from .smoothing import BoneSmoother, SmoothingConfig

B = MixamoBone


@dataclass
class RetargetSettings:
    """Blend weights and thresholds. Defaults were tuned by hand on recorded clips."""
    visibility_threshold: float = 0.5
    hip_lerp: float = 0.1
    min_hip_height_ratio: float = 0.85   # of bind leg length
    arm_limb_weight: float = 0.75
    leg_limb_weight: float = 0.5
    hand_weight: float = 0.9
    arm_align_weight: float = 0.8
    default_align_weight: float = 0.5
    forearm_twist_weight: float = 0.75
    spine_relax: float = 0.7
    rotation_smoothing: bool = True
    torso_base_weight: float = 0.3
    torso_visibility_weight: float = 0.4
    head_base_weight: float = 0.3
    head_confidence_weight: float = 0.5
    neck_share: float = 0.25
    head_flip_dot: float = -0.3
    head_flip_penalty: float = 0.3

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "RetargetSettings":
        return (config or Config()).fill(cls(), "retargeting")


@dataclass
class BindInfo:
    """Bind-pose transform of one bone."""
    position: np.ndarray            # world
    quaternion: np.ndarray          # world (w, x, y, z)
    local_quaternion: np.ndarray
    local_position: np.ndarray
    child_directions: Dict[MixamoBone, np.ndarray] = field(default_factory=dict)


def _direction(start: np.ndarray, end: np.ndarray) -> Optional[np.ndarray]:
    """Unit vector start -> end, or None when the points coincide."""
    v = np.asarray(end, dtype=np.float64) - np.asarray(start, dtype=np.float64)
    n = length(v)
    if n < 1e-8:
        return None
    return v / n


def _torso_basis(up: Optional[np.ndarray], right: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Orthonormal basis with up kept exact and right re-orthogonalized.

    None when either vector is missing or they are parallel.
    """
    if up is None or right is None:
        return None
    fwd = np.cross(right, up)
    if length_sq(fwd) < 1e-6:
        return None
    fwd = normalize(fwd)
    ortho_right = normalize(np.cross(up, fwd))
    return quat_from_basis(ortho_right, up, fwd)


def _leg_length(hips: np.ndarray, knees: Sequence[np.ndarray], feet: Sequence[np.ndarray]) -> float:
    total = 0.0
    for knee, foot in zip(knees, feet):
        total += length(knee - hips) + length(foot - knee)
    return total / len(knees)


class Retargeter:
    """
    Applies canonical poses to a skeleton given as canonical bone -> handle.

    The bone map is bound once at construction; swapping skeletons means
    building a new Retargeter. Bones absent from the map are skipped and
    the quantities derived from them keep neutral defaults.
    """

    def __init__(
        self,
        bones: Mapping[Union[str, MixamoBone], BoneHandle],
        settings: Optional[RetargetSettings] = None,
        config: Optional[Config] = None,
        root_motion: Optional[RootMotionEstimator] = None,
        smoother: Optional[BoneSmoother] = None
    ):
        self.logger = get_logger("motion.retargeter")
        if not bones:
            raise RetargetError("Cannot retarget onto an empty bone map")

        self.settings = settings or RetargetSettings.from_config(config)
        self.root_motion = root_motion or RootMotionEstimator(RootMotionSettings.from_config(config))
        self.smoother = smoother or BoneSmoother(SmoothingConfig.from_config(config))

        self._bones: Dict[MixamoBone, BoneHandle] = {
            MixamoBone.from_name(name): handle for name, handle in bones.items()
        }
        if B.HIPS not in self._bones:
            self.logger.warning("Skeleton has no Hips bone, root placement and hips orientation are disabled")
        self._bind: Dict[MixamoBone, BindInfo] = {}
        self._hips_bind_basis: Optional[np.ndarray] = None
        self._spine_bind_basis: Optional[np.ndarray] = None
        self._head_bind_basis: Optional[np.ndarray] = None
        self._head_bind_forward: Optional[np.ndarray] = None
        self._bind_forward = Z_AXIS.copy()
        self._model_leg_length = 1.0

        # Y-up by default; Z-up rigs swap vertical and forward
        self._vertical_axis = 1
        self._forward_axis = 2
        self._side_axis = 0
        self._up_sign = 1.0

        self._is_bound = False
        self._touched: Dict[MixamoBone, None] = {}

        self._record_bind_pose()
        self.logger.info(
            f"Initialized retargeter ({len(self._bones)} bones, {self.up_axis}-up, "
            f"leg length {self._model_leg_length:.2f})"
        )

    # ------------------------------------------------------------------
    # Bind pose
    # ------------------------------------------------------------------

    @property
    def bind_pose(self) -> Dict[MixamoBone, BindInfo]:
        return dict(self._bind)

    @property
    def is_bound(self) -> bool:
        """True once a non-empty pose has been applied."""
        return self._is_bound

    @property
    def up_axis(self) -> str:
        return "z" if self._vertical_axis == 2 else "y"

    @property
    def up_sign(self) -> float:
        return self._up_sign

    @property
    def model_leg_length(self) -> float:
        return self._model_leg_length

    def _record_bind_pose(self) -> None:
        for bone, handle in self._bones.items():
            self._bind[bone] = BindInfo(
                position=np.asarray(handle.get_world_position(), dtype=np.float64),
                quaternion=quat_normalize(handle.get_world_rotation()),
                local_quaternion=quat_normalize(handle.get_local_rotation()),
                local_position=np.asarray(handle.get_local_position(), dtype=np.float64),
            )

        for parent, child in CHAIN_LINKS:
            p, c = self._bind.get(parent), self._bind.get(child)
            if p is None or c is None:
                continue
            direction = _direction(p.position, c.position)
            if direction is not None:
                p.child_directions[child] = direction

        self._compute_hips_basis()
        self._detect_axes()
        self._compute_leg_length()
        self._compute_spine_basis()
        self._compute_head_basis()

    def _bind_positions(self, *bones: MixamoBone) -> Optional[Sequence[np.ndarray]]:
        infos = [self._bind.get(b) for b in bones]
        if any(info is None for info in infos):
            return None
        return [info.position for info in infos]

    def _compute_hips_basis(self) -> None:
        points = self._bind_positions(B.HIPS, B.SPINE, B.LEFT_UP_LEG, B.RIGHT_UP_LEG)
        if points is None:
            self.logger.debug("Hips basis unavailable (missing hips/spine/upleg bones)")
            return
        hips, spine, left, right = points
        up, across = _direction(hips, spine), _direction(right, left)
        self._hips_bind_basis = _torso_basis(up, across)
        if self._hips_bind_basis is not None:
            self._bind_forward = normalize(np.cross(across, up))

        self.root_motion.update_model_metrics(length(left - right))

    def _detect_axes(self) -> None:
        info = self._bind.get(B.HIPS)
        if info is None:
            return
        x, y, z = np.abs(info.local_position)
        if z > y and z > x:
            self._vertical_axis, self._forward_axis = 2, 1
            self._up_sign = float(np.sign(info.local_position[2])) or -1.0
        else:
            self._vertical_axis, self._forward_axis = 1, 2
            self._up_sign = float(np.sign(info.local_position[1])) or 1.0

    def _compute_leg_length(self) -> None:
        hips = self._bind.get(B.HIPS)
        if hips is None:
            return

        leg = abs(float(hips.position[self._vertical_axis]))
        measured = False
        points = self._bind_positions(B.LEFT_LEG, B.RIGHT_LEG, B.LEFT_FOOT, B.RIGHT_FOOT)
        if points is not None:
            avg = _leg_length(hips.position, points[:2], points[2:])
            if avg > 0.01:
                leg = avg
                measured = True

        if leg < 0.01:
            leg = 1.0
        # Rigs in meters: work in centimeters like Mixamo exports
        if measured and 0.5 < leg < 5.0:
            leg *= 100.0
        self._model_leg_length = leg

    def _compute_spine_basis(self) -> None:
        points = self._bind_positions(B.SPINE, B.NECK, B.LEFT_ARM, B.RIGHT_ARM)
        if points is None:
            return
        spine, neck, left, right = points
        self._spine_bind_basis = _torso_basis(_direction(spine, neck), _direction(right, left))

    def _compute_head_basis(self) -> None:
        neck = self._bind.get(B.NECK)
        head = self._bind.get(B.HEAD)
        if neck is None or head is None:
            return
        up = _direction(neck.position, head.position)
        if up is None:
            return

        shoulders = self._bind_positions(B.LEFT_ARM, B.RIGHT_ARM)
        right = _direction(shoulders[1], shoulders[0]) if shoulders is not None else None
        if right is None:
            right = X_AXIS.copy()
        if abs(float(np.dot(right, up))) > 0.9:
            right = Z_AXIS.copy()

        forward = normalize(np.cross(right, up))
        right = normalize(np.cross(up, forward))
        self._head_bind_basis = quat_from_basis(right, up, forward)
        self._head_bind_forward = forward

    # ------------------------------------------------------------------
    # Per frame
    # ------------------------------------------------------------------

    def apply_pose(
        self,
        pose: CanonicalPose,
        pose_landmarks: Optional[Sequence[Optional[LandmarkPoint]]] = None,
        video_width: Optional[float] = None,
        video_height: Optional[float] = None,
        timestamp: Optional[float] = None
    ) -> None:
        """
        Apply one frame to the skeleton.

        Args:
            pose: Canonical pose for this frame
            pose_landmarks: Image-normalized body landmarks for root motion
            video_width: Source frame width in pixels
            video_height: Source frame height in pixels
            timestamp: Timeline position in seconds; enables rotation smoothing
        """
        if pose is None or pose.is_empty:
            return

        self._touched = {}
        self._position_hips(pose, pose_landmarks, video_width, video_height)
        self._handle_hips(pose)
        self._handle_spine(pose)

        self._handle_limb(pose, B.LEFT_ARM, B.LEFT_FOREARM, B.LEFT_HAND, B.LEFT_HAND_MIDDLE1)
        self._handle_limb(pose, B.RIGHT_ARM, B.RIGHT_FOREARM, B.RIGHT_HAND, B.RIGHT_HAND_MIDDLE1)
        self._handle_limb(pose, B.LEFT_UP_LEG, B.LEFT_LEG, B.LEFT_FOOT)
        self._handle_limb(pose, B.RIGHT_UP_LEG, B.RIGHT_LEG, B.RIGHT_FOOT)

        for hand, forearm, index, pinky, middle in (
            (B.LEFT_HAND, B.LEFT_FOREARM, B.LEFT_HAND_INDEX1, B.LEFT_HAND_PINKY1, B.LEFT_HAND_MIDDLE1),
            (B.RIGHT_HAND, B.RIGHT_FOREARM, B.RIGHT_HAND_INDEX1, B.RIGHT_HAND_PINKY1, B.RIGHT_HAND_MIDDLE1),
        ):
            if not self._handle_hand(pose, hand, forearm, index, pinky):
                self._align_bone(pose, hand, middle)

        self._handle_head(pose)

        for parent, child in STANDARD_CHAIN_LINKS:
            self._align_bone(pose, parent, child)

        if timestamp is not None and self.settings.rotation_smoothing:
            self._smooth_touched(timestamp)

        self._is_bound = True

    def reset_smoothing(self) -> None:
        """Forget rotation smoothing and root-motion origin (new motion source)."""
        self.smoother.reset()
        self.root_motion.reset()

    def _visible(self, point: PosePoint) -> bool:
        return point.visibility >= self.settings.visibility_threshold

    def _torso_weight(self, visibility: float) -> float:
        s = self.settings
        return s.torso_base_weight + s.torso_visibility_weight * float(np.clip(visibility, 0.0, 1.0))

    def _position_hips(self, pose: CanonicalPose, landmarks, width, height) -> None:
        handle = self._bones.get(B.HIPS)
        hips = pose.get(B.HIPS)
        left_foot, right_foot = pose.get(B.LEFT_FOOT), pose.get(B.RIGHT_FOOT)
        if handle is None or hips is None or left_foot is None or right_foot is None:
            return

        s = self.settings
        left_knee, right_knee = pose.get(B.LEFT_LEG), pose.get(B.RIGHT_LEG)
        observed_leg = 1.0
        if left_knee is not None and right_knee is not None:
            observed_leg = _leg_length(
                hips.position,
                (left_knee.position, right_knee.position),
                (left_foot.position, right_foot.position),
            )
        if observed_leg <= 0.01:
            observed_leg = 1.0
        scale = self._model_leg_length / observed_leg

        floor_points = [left_foot, right_foot, pose.get(B.LEFT_TOE_BASE), pose.get(B.RIGHT_TOE_BASE)]
        min_y = min(p.position[1] for p in floor_points if p is not None)
        dist_to_floor = abs(float(hips.position[1]) - min_y)

        height_target = max(dist_to_floor * scale, self._model_leg_length * s.min_hip_height_ratio) * self._up_sign
        if self._up_sign < 0:
            height_target = min(height_target, 0.0)
        else:
            height_target = max(height_target, 0.0)

        current = handle.get_local_position()
        side_target = current[self._side_axis]
        forward_target = current[self._forward_axis]

        if landmarks is not None:
            self.root_motion.update_dimensions(width, height)
            translation = self.root_motion.compute_translation(landmarks)
            if translation is not None:
                bind_local = self._bind[B.HIPS].local_position
                side_target = bind_local[self._side_axis] + translation[0]
                forward_target = bind_local[self._forward_axis] + translation[2]

        new_position = current.copy()
        new_position[self._side_axis] = lerp(current[self._side_axis], side_target, s.hip_lerp)
        new_position[self._vertical_axis] = lerp(current[self._vertical_axis], height_target, s.hip_lerp)
        new_position[self._forward_axis] = lerp(current[self._forward_axis], forward_target, s.hip_lerp)

        handle.set_local_position(new_position)
        handle.propagate_to_children()

    def _handle_hips(self, pose: CanonicalPose) -> None:
        if B.HIPS not in self._bones or self._hips_bind_basis is None:
            return
        hips, spine = pose.get(B.HIPS), pose.get(B.SPINE)
        left, right = pose.get(B.LEFT_UP_LEG), pose.get(B.RIGHT_UP_LEG)
        if hips is None or spine is None or left is None or right is None:
            return

        threshold = self.settings.visibility_threshold
        avg_vis = (hips.visibility + left.visibility + right.visibility) / 3.0
        if avg_vis < threshold * 0.5:
            return

        up = _direction(hips.position, spine.position)
        across = _direction(right.position, left.position)
        if up is None or across is None:
            return

        # Occluded hips lean on the shoulder line
        left_arm, right_arm = pose.get(B.LEFT_ARM), pose.get(B.RIGHT_ARM)
        if left_arm is not None and right_arm is not None and avg_vis < threshold:
            shoulder_vis = (left_arm.visibility + right_arm.visibility) / 2.0
            if shoulder_vis > avg_vis:
                blend = float(np.clip((shoulder_vis - avg_vis) / (1.0 - avg_vis), 0.0, 0.5))
                shoulder_right = normalize(left_arm.position - right_arm.position)
                across = normalize(across * (1.0 - blend) + shoulder_right * blend)

        target = _torso_basis(up, across)
        if target is None:
            return
        delta = quat_multiply(target, quat_inverse(self._hips_bind_basis))
        target_world = quat_multiply(delta, self._bind[B.HIPS].quaternion)
        self._apply_world_rotation(B.HIPS, target_world, self._torso_weight(avg_vis))

    def _handle_spine(self, pose: CanonicalPose) -> None:
        if B.SPINE not in self._bones or self._spine_bind_basis is None:
            return
        neck, spine = pose.get(B.NECK), pose.get(B.SPINE)
        left, right = pose.get(B.LEFT_ARM), pose.get(B.RIGHT_ARM)
        if neck is None or spine is None or left is None or right is None:
            return

        avg_vis = (neck.visibility + left.visibility + right.visibility) / 3.0
        if avg_vis < self.settings.visibility_threshold * 0.5:
            return

        target = _torso_basis(_direction(spine.position, neck.position), _direction(right.position, left.position))
        if target is None:
            return
        delta = quat_multiply(target, quat_inverse(self._spine_bind_basis))
        target_world = quat_multiply(delta, self._bind[B.SPINE].quaternion)
        self._apply_world_rotation(B.SPINE, target_world, self._torso_weight(avg_vis))

        # Upper spine relaxes toward bind so the bend is carried by Spine
        for bone in (B.SPINE1, B.SPINE2):
            if bone in self._bones:
                self._slerp_local(bone, self._bind[bone].local_quaternion, self.settings.spine_relax)

    def _handle_limb(
        self,
        pose: CanonicalPose,
        start: MixamoBone,
        mid: MixamoBone,
        end: MixamoBone,
        finger_tip: Optional[MixamoBone] = None
    ) -> None:
        """
        Align a two-segment limb and swivel it into the observed bend plane.

        The swivel runs between the two direction alignments so the mid bone
        is solved against the start bone's final rotation and the end point
        lands where it was observed.
        """
        self._align_bone(pose, start, mid)
        self._swivel_limb(pose, start, mid, end, is_arm=finger_tip is not None)
        self._align_bone(pose, mid, end)
        if finger_tip is not None:
            self._handle_forearm_twist(pose, mid, end, finger_tip)

    def _swivel_limb(
        self,
        pose: CanonicalPose,
        start: MixamoBone,
        mid: MixamoBone,
        end: MixamoBone,
        is_arm: bool
    ) -> None:
        if start not in self._bones or mid not in self._bones:
            return
        p_start, p_mid, p_end = pose.get(start), pose.get(mid), pose.get(end)
        b_start, b_mid, b_end = self._bind.get(start), self._bind.get(mid), self._bind.get(end)
        if any(x is None for x in (p_start, p_mid, p_end, b_start, b_mid, b_end)):
            return

        p_vec1 = normalize(p_mid.position - p_start.position)
        p_vec2 = normalize(p_end.position - p_mid.position)
        p_normal = np.cross(p_vec1, p_vec2)
        if length_sq(p_normal) < 0.01:
            return
        p_normal = normalize(p_normal)

        b_vec1 = normalize(b_mid.position - b_start.position)
        b_vec2 = normalize(b_end.position - b_mid.position)
        b_normal = np.cross(b_vec1, b_vec2)
        if length_sq(b_normal) < 0.01:
            # Straight in bind pose: elbows bend forward, knees backward
            bend_hint = 1.0 if is_arm else -1.0
            b_normal = np.cross(b_vec1, bend_hint * self._bind_forward)
            if length_sq(b_normal) < 0.01:
                return
        b_normal = normalize(b_normal)

        p_basis = quat_from_basis(normalize(np.cross(p_normal, p_vec1)), p_vec1, p_normal)
        b_basis = quat_from_basis(normalize(np.cross(b_normal, b_vec1)), b_vec1, b_normal)
        delta = quat_multiply(p_basis, quat_inverse(b_basis))
        target_world = quat_multiply(delta, b_start.quaternion)

        s = self.settings
        self._apply_world_rotation(start, target_world, s.arm_limb_weight if is_arm else s.leg_limb_weight)

    def _handle_forearm_twist(self, pose: CanonicalPose, mid: MixamoBone, end: MixamoBone, finger_tip: MixamoBone) -> None:
        """Roll the forearm so the hand-to-finger direction matches."""
        if mid not in self._bones:
            return
        p_mid, p_end, p_finger = pose.get(mid), pose.get(end), pose.get(finger_tip)
        b_mid, b_end, b_finger = self._bind.get(mid), self._bind.get(end), self._bind.get(finger_tip)
        if any(x is None for x in (p_mid, p_end, p_finger, b_mid, b_end, b_finger)):
            return
        if not self._visible(p_finger):
            return

        def twist_basis(mid_pos, end_pos, finger_pos):
            forearm = normalize(end_pos - mid_pos)
            finger = normalize(finger_pos - end_pos)
            twist_normal = np.cross(forearm, finger)
            if length_sq(twist_normal) < 1e-6:
                return None
            twist_normal = normalize(twist_normal)
            ortho = normalize(np.cross(forearm, twist_normal))
            return quat_from_basis(twist_normal, forearm, ortho)

        p_basis = twist_basis(p_mid.position, p_end.position, p_finger.position)
        if p_basis is None:
            return
        b_basis = twist_basis(b_mid.position, b_end.position, b_finger.position)
        if b_basis is None:
            return

        delta = quat_multiply(p_basis, quat_inverse(b_basis))
        target_world = quat_multiply(delta, b_mid.quaternion)
        self._apply_world_rotation(mid, target_world, self.settings.forearm_twist_weight)

    def _handle_hand(
        self,
        pose: CanonicalPose,
        hand: MixamoBone,
        forearm: MixamoBone,
        index: MixamoBone,
        pinky: MixamoBone
    ) -> bool:
        """Orient the wrist from the palm basis. Returns False when skipped."""
        if hand not in self._bones:
            return False
        p_hand, p_forearm = pose.get(hand), pose.get(forearm)
        p_index, p_pinky = pose.get(index), pose.get(pinky)
        b_hand, b_forearm = self._bind.get(hand), self._bind.get(forearm)
        b_index, b_pinky = self._bind.get(index), self._bind.get(pinky)
        if any(x is None for x in (p_hand, p_forearm, p_index, p_pinky, b_hand, b_forearm, b_index, b_pinky)):
            return False
        if not self._visible(p_hand):
            return False

        target = self._palm_basis(p_hand.position, p_forearm.position, p_index.position, p_pinky.position)
        bind = self._palm_basis(b_hand.position, b_forearm.position, b_index.position, b_pinky.position)
        if target is None or bind is None:
            return False

        delta = quat_multiply(target, quat_inverse(bind))
        target_world = quat_multiply(delta, b_hand.quaternion)
        self._apply_world_rotation(hand, target_world, self.settings.hand_weight)
        return True

    @staticmethod
    def _palm_basis(hand, forearm, index, pinky) -> Optional[np.ndarray]:
        """Y toward the fingers, Z the palm normal, X toward the thumb side."""
        index_dir = normalize(index - hand)
        pinky_dir = normalize(pinky - hand)
        y = normalize((index_dir + pinky_dir) * 0.5)
        if length_sq(y) < 1e-6:
            return None

        z = normalize(np.cross(index_dir, pinky_dir))
        if length_sq(z) < 1e-6:
            z = normalize(np.cross(y, normalize(hand - forearm)))
        if length_sq(z) < 1e-6:
            return None

        x = normalize(np.cross(y, z))
        return quat_from_basis(x, y, z)

    def _handle_head(self, pose: CanonicalPose) -> None:
        """
        Orient the head from the ear line, with eyes then shoulders as fallbacks.

        Falls back to plain Neck -> Head direction alignment when the head is
        poorly observed. A forward vector pointing away from the bind forward
        is treated as a tracking flip and blended in weakly.
        """
        if B.HEAD not in self._bones or self._head_bind_basis is None:
            return
        p_head, p_neck = pose.get(B.HEAD), pose.get(B.NECK)
        if p_head is None or p_neck is None:
            return

        s = self.settings
        threshold = s.visibility_threshold
        left_ear, right_ear = pose.get(B.LEFT_EAR), pose.get(B.RIGHT_EAR)

        vis_sum, vis_count = p_head.visibility, 1
        if left_ear is not None and right_ear is not None:
            vis_sum += (left_ear.visibility + right_ear.visibility) / 2.0
            vis_count += 1
        if vis_sum / vis_count < threshold * 0.5:
            self._align_bone(pose, B.NECK, B.HEAD)
            return

        up = _direction(p_neck.position, p_head.position)
        if up is None:
            self._align_bone(pose, B.NECK, B.HEAD)
            return

        right = None
        confidence = 0.0
        if (left_ear is not None and right_ear is not None
                and left_ear.visibility > threshold * 0.7 and right_ear.visibility > threshold * 0.7):
            ear_dir = _direction(right_ear.position, left_ear.position)
            if ear_dir is not None and abs(float(np.dot(ear_dir, up))) < 0.7:
                right = ear_dir
                confidence = (left_ear.visibility + right_ear.visibility) / 2.0

        left_eye, right_eye = pose.get(B.LEFT_EYE), pose.get(B.RIGHT_EYE)
        if (right is None and left_eye is not None and right_eye is not None
                and left_eye.visibility > threshold and right_eye.visibility > threshold):
            right = _direction(right_eye.position, left_eye.position)
            confidence = (left_eye.visibility + right_eye.visibility) / 2.0 * 0.8

        left_arm, right_arm = pose.get(B.LEFT_ARM), pose.get(B.RIGHT_ARM)
        if (right is None and left_arm is not None and right_arm is not None
                and left_arm.visibility > threshold and right_arm.visibility > threshold):
            right = _direction(right_arm.position, left_arm.position)
            confidence = 0.5

        if right is None:
            self._align_bone(pose, B.NECK, B.HEAD)
            return

        forward = normalize(np.cross(right, up))
        if length_sq(forward) < 1e-6:
            self._align_bone(pose, B.NECK, B.HEAD)
            return
        right = normalize(np.cross(up, forward))

        if float(np.dot(forward, self._head_bind_forward)) < s.head_flip_dot:
            confidence *= s.head_flip_penalty

        target = quat_from_basis(right, up, forward)
        delta = quat_multiply(target, quat_inverse(self._head_bind_basis))
        weight = s.head_base_weight + s.head_confidence_weight * float(np.clip(confidence, 0.0, 1.0))
        self._apply_world_rotation(B.HEAD, quat_multiply(delta, self._bind[B.HEAD].quaternion), weight)

        if B.NECK in self._bones:
            neck_target = quat_multiply(delta, self._bind[B.NECK].quaternion)
            self._apply_world_rotation(B.NECK, neck_target, weight * s.neck_share)

    def _align_bone(self, pose: CanonicalPose, parent: MixamoBone, child: MixamoBone) -> None:
        """
        Rotate parent so its direction toward child matches the observed one.

        The rotation starts from the bind local rotation under the parent's
        current world rotation, so a bone whose direction is already right
        still turns with its parent (a straight leg follows the pelvis).
        """
        if parent not in self._bones:
            return
        p_parent, p_child = pose.get(parent), pose.get(child)
        if p_parent is None or p_child is None or not self._visible(p_parent):
            return
        bind = self._bind.get(parent)
        bind_dir = bind.child_directions.get(child) if bind is not None else None
        if bind_dir is None:
            return

        target_dir = _direction(p_parent.position, p_child.position)
        if target_dir is None:
            return

        rest = quat_multiply(self._bones[parent].get_parent_world_rotation(), bind.local_quaternion)
        carried = quat_multiply(rest, quat_inverse(bind.quaternion))
        rotation = quat_from_unit_vectors(quat_rotate_vector(carried, bind_dir), target_dir)
        target_world = quat_multiply(rotation, rest)

        name = parent.canonical_name
        s = self.settings
        weight = s.arm_align_weight if ("Arm" in name or "Hand" in name) else s.default_align_weight
        self._apply_world_rotation(parent, target_world, weight)

    def _apply_world_rotation(self, bone: MixamoBone, target_world: np.ndarray, t: float) -> None:
        """Blend a bone's local rotation toward the one that yields target_world."""
        handle = self._bones[bone]
        parent_world = handle.get_parent_world_rotation()
        local = quat_normalize(quat_multiply(quat_inverse(parent_world), target_world))
        self._slerp_local(bone, local, t)

    def _slerp_local(self, bone: MixamoBone, target_local: np.ndarray, t: float) -> None:
        handle = self._bones[bone]
        handle.set_local_rotation(quat_slerp(handle.get_local_rotation(), target_local, t))
        handle.propagate_to_children()
        self._touched[bone] = None

    def _smooth_touched(self, timestamp: float) -> None:
        """Run each bone written this frame through its rotation smoother once."""
        for bone in sorted(self._touched):
            handle = self._bones[bone]
            handle.set_local_rotation(self.smoother.smooth_rotation(bone, timestamp, handle.get_local_rotation()))
        for bone in sorted(self._touched):
            self._bones[bone].propagate_to_children()
