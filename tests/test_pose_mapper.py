import numpy as np
import pytest

from mocap_retarget.core import HandLandmark, MediaPipeLandmark, MixamoBone, UnknownBoneError
from mocap_retarget.core.math3d import normalize
from mocap_retarget.pose import (
    CanonicalPose,
    LandmarkPoint,
    PalmOrientationSmoother,
    PoseMapper,
    PoseMappingSettings,
    PosePoint,
    build_canonical_pose,
)

from conftest import make_world_landmarks


def make_hand(visibility=0.8):
    """21 image-space hand landmarks, fingers pointing up the image."""
    hand = [LandmarkPoint(0.5, 0.5, 0.0, visibility) for _ in range(21)]
    for f, dx in enumerate((-0.04, -0.02, 0.0, 0.02, 0.04)):
        for segment in range(4):
            hand[1 + f * 4 + segment] = LandmarkPoint(0.5 + dx, 0.4 - 0.02 * segment, 0.0, visibility)
    return hand


class TestCanonicalPose:

    def test_string_and_enum_keys_are_interchangeable(self):
        pose = CanonicalPose()
        pose["LeftForeArm"] = PosePoint(np.ones(3), 0.5)
        assert pose[MixamoBone.LEFT_FOREARM].visibility == 0.5
        assert "LeftForeArm" in pose
        assert pose.get("LeftHand") is None
        assert pose.position("LeftHand") is None

    def test_iteration_follows_bone_index(self):
        pose = CanonicalPose({"RightFoot": PosePoint(np.zeros(3)), "Hips": PosePoint(np.zeros(3))})
        assert list(pose) == [MixamoBone.HIPS, MixamoBone.RIGHT_FOOT]
        assert pose.names() == ["Hips", "RightFoot"]
        assert len(pose) == 2

    def test_delete_and_missing(self):
        pose = CanonicalPose({"Hips": PosePoint(np.zeros(3))})
        del pose["Hips"]
        assert pose.is_empty
        with pytest.raises(KeyError):
            del pose["Hips"]
        with pytest.raises(UnknownBoneError):
            pose["Tail"] = PosePoint(np.zeros(3))

    def test_copy_is_deep(self):
        pose = CanonicalPose({"Hips": PosePoint(np.zeros(3))})
        clone = pose.copy()
        clone["Hips"].position[0] = 5.0
        assert pose["Hips"].position[0] == 0.0

    def test_to_dict(self):
        pose = CanonicalPose({"Head": PosePoint(np.array([0.0, 1.5, 0.0]), 0.7)})
        assert pose.to_dict() == {"Head": {"position": [0.0, 1.5, 0.0], "visibility": 0.7}}


class TestBodyMapping:

    def test_empty_landmarks_give_empty_pose(self):
        assert PoseMapper().build_pose([]).is_empty
        assert PoseMapper().build_pose(None).is_empty

    def test_derived_torso_points(self, world_landmarks):
        pose = PoseMapper().build_pose(world_landmarks)
        np.testing.assert_allclose(pose.position("Hips"), [0.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.position("Neck"), [0.0, 0.45, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.position("Spine1"), [0.0, 0.225, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.position("Spine"), [0.0, 0.1125, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.position("Spine2"), [0.0, 0.3375, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.position("Head"), [0.0, 0.6, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.position("HeadTop_End"), [0.0, 0.645, 0.0], atol=1e-12)
        assert pose["Spine1"].visibility == pytest.approx(0.9)

    def test_limbs_come_from_landmarks(self, world_landmarks):
        pose = PoseMapper().build_pose(world_landmarks)
        np.testing.assert_allclose(pose.position("LeftArm"), [0.18, 0.45, 0.0])
        np.testing.assert_allclose(pose.position("RightForeArm"), [-0.2, 0.2, 0.02])
        np.testing.assert_allclose(pose.position("LeftToeBase"), [0.11, -0.9, 0.12])
        # Toe end extends ankle -> toe by 30%
        np.testing.assert_allclose(pose.position("LeftToe_End"), [0.11, -0.924, 0.156])

    def test_head_falls_back_to_nose(self):
        landmarks = make_world_landmarks(skip=(MediaPipeLandmark.LEFT_EAR,))
        pose = PoseMapper().build_pose(landmarks)
        np.testing.assert_allclose(pose.position("Head"), [0.0, 0.62, 0.09])
        assert "LeftEar" not in pose
        assert "RightEar" in pose

    def test_missing_shoulder_drops_dependent_points(self):
        landmarks = make_world_landmarks(skip=(MediaPipeLandmark.LEFT_SHOULDER,))
        pose = PoseMapper().build_pose(landmarks)
        assert "Hips" in pose
        for name in ("Neck", "Spine", "Spine1", "Spine2", "HeadTop_End", "LeftArm"):
            assert name not in pose
        assert "RightArm" in pose

    def test_mapping_input(self):
        landmarks = {
            MediaPipeLandmark.LEFT_HIP: LandmarkPoint(0.1, 0.0, 0.0, 0.8),
            MediaPipeLandmark.RIGHT_HIP: LandmarkPoint(-0.1, 0.0, 0.0, 0.6),
        }
        pose = PoseMapper().build_pose(landmarks)
        assert pose.names() == ["Hips", "LeftUpLeg", "RightUpLeg"]
        assert pose["Hips"].visibility == pytest.approx(0.7)

    def test_synthesized_fingers_run_from_wrist_to_tip(self, world_landmarks):
        pose = PoseMapper().build_pose(world_landmarks)
        wrist = np.array([0.22, -0.02, 0.08])
        tip = np.array([0.24, -0.1, 0.1])
        np.testing.assert_allclose(pose.position("LeftHandIndex4"), tip)
        np.testing.assert_allclose(pose.position("LeftHandIndex1"), wrist + 0.25 * (tip - wrist))
        middle_tip = (tip + np.array([0.22, -0.1, 0.06])) * 0.5
        np.testing.assert_allclose(pose.position("LeftHandMiddle4"), middle_tip)
        np.testing.assert_allclose(pose.position("LeftHandRing4"), middle_tip)

    def test_missing_wrist_leaves_no_fingers(self):
        landmarks = make_world_landmarks(skip=(MediaPipeLandmark.RIGHT_WRIST,))
        pose = PoseMapper().build_pose(landmarks)
        assert not any(name.startswith("RightHand") for name in pose.names())
        assert "LeftHandIndex1" in pose


class TestHandMapping:

    def test_hand_is_anchored_and_scaled_to_forearm(self, world_landmarks):
        pose = PoseMapper().build_pose(world_landmarks, left_hand=make_hand())
        wrist = np.array([0.22, -0.02, 0.08])
        forearm = float(np.linalg.norm(wrist - np.array([0.2, 0.2, 0.02])))

        middle = pose.position("LeftHandMiddle1")
        assert np.linalg.norm(middle - wrist) == pytest.approx(0.4 * forearm)
        # Image up is skeleton up
        assert middle[1] > wrist[1]
        assert pose["LeftHandMiddle1"].visibility == pytest.approx(0.8)

    def test_hand_visibility_capped_by_wrist(self):
        landmarks = make_world_landmarks(visibility=0.6)
        pose = PoseMapper().build_pose(landmarks, right_hand=make_hand(visibility=0.95))
        assert pose["RightHandPinky2"].visibility == pytest.approx(0.6)

    def test_short_hand_list_falls_back_to_synthesis(self, world_landmarks):
        pose = PoseMapper().build_pose(world_landmarks, left_hand=make_hand()[:10])
        np.testing.assert_allclose(pose.position("LeftHandIndex4"), [0.24, -0.1, 0.1])

    def test_aspect_ratio_stretches_x(self, world_landmarks):
        hand = make_hand()
        square = PoseMapper().build_pose(world_landmarks, left_hand=hand)
        wide = PoseMapper().build_pose(world_landmarks, left_hand=hand, aspect_ratio=2.0)
        wrist = np.array([0.22, -0.02, 0.08])

        def spread(pose):
            return abs(pose.position("LeftHandPinky1")[0] - wrist[0])

        assert spread(wide) > spread(square)

    def test_aspect_ratio_scales_depth_with_x(self, world_landmarks):
        hand = make_hand()
        hand[HandLandmark.PINKY_MCP] = LandmarkPoint(0.54, 0.4, 0.02, 0.8)
        wrist = np.array([0.22, -0.02, 0.08])

        def depth_per_width(pose):
            offset = pose.position("LeftHandPinky1") - wrist
            return offset[2] / offset[0]

        square = PoseMapper().build_pose(world_landmarks, left_hand=hand)
        wide = PoseMapper().build_pose(world_landmarks, left_hand=hand, aspect_ratio=2.0)
        assert depth_per_width(square) == pytest.approx(-0.5)
        assert depth_per_width(wide) == pytest.approx(-0.5)

    def test_build_canonical_pose_shortcut(self, world_landmarks):
        settings = PoseMappingSettings(toe_end_extension=0.0)
        pose = build_canonical_pose(world_landmarks, settings=settings)
        np.testing.assert_allclose(pose.position("LeftToe_End"), pose.position("LeftToeBase"))


class TestPalmOrientation:

    def offsets(self):
        offsets = np.zeros((21, 3))
        offsets[HandLandmark.MIDDLE_MCP] = (0.0, 0.5, 0.5)
        offsets[HandLandmark.INDEX_MCP] = (0.1, 0.5, 0.2)
        offsets[HandLandmark.PINKY_MCP] = (-0.1, 0.5, 0.2)
        return offsets

    def test_forearm_direction_picks_the_sign(self):
        smoother = PalmOrientationSmoother()
        assert smoother.resolve_depth_sign("Left", self.offsets(), normalize(np.array([0.0, 1.0, 1.0]))) == 1.0
        smoother.reset()
        assert smoother.resolve_depth_sign("Left", self.offsets(), normalize(np.array([0.0, 1.0, -1.0]))) == -1.0

    def test_previous_normal_keeps_the_sign(self):
        smoother = PalmOrientationSmoother()
        smoother.resolve_depth_sign("Left", self.offsets(), normalize(np.array([0.0, 1.0, -1.0])))
        assert smoother.smoothed_normal("Left") is not None
        assert smoother.resolve_depth_sign("Left", self.offsets()) == -1.0

    def test_sides_are_independent(self):
        smoother = PalmOrientationSmoother()
        smoother.resolve_depth_sign("Left", self.offsets(), normalize(np.array([0.0, 1.0, -1.0])))
        assert smoother.smoothed_normal("Right") is None

    def test_settings_from_config(self, default_config):
        default_config.set("pose_mapping.palm_to_forearm_ratio", 0.5)
        settings = PoseMappingSettings.from_config(default_config)
        assert settings.palm_to_forearm_ratio == 0.5
        smoother = PoseMapper(settings).create_palm_smoother()
        assert smoother.smoothing == pytest.approx(0.5)
