import pytest

from mocap_retarget.core import MixamoBone, SKELETON_BONES
from mocap_retarget.motion import name_variants, resolve_bone, resolve_skeleton
from mocap_retarget.motion.bone_resolver import extract_keywords, fuzzy_match


def test_name_variants():
    assert name_variants("Hips") == ["Hips", "mixamorigHips", "mixamorig_Hips", "mixamorig:Hips"]


@pytest.mark.parametrize("name", ["LeftForeArm", "mixamorigLeftForeArm", "mixamorig_LeftForeArm", "mixamorig:LeftForeArm"])
def test_exact_variants(name):
    assert resolve_bone({name: "bone", "LeftArm": "other"}, "LeftForeArm") == "bone"


def test_case_insensitive():
    assert resolve_bone({"MIXAMORIG:lefthand": "bone"}, "LeftHand") == "bone"


def test_keywords_do_not_double_count():
    assert extract_keywords("leftforearm") == ["forearm", "left"]
    assert extract_keywords("leftupleg") == ["upleg", "left"]


def test_fuzzy_match():
    bone_map = {"Bip_Left_ForeArm_jnt": "forearm", "Bip_Left_Arm_jnt": "arm"}
    assert fuzzy_match(bone_map, "LeftForeArm") == ("Bip_Left_ForeArm_jnt", "forearm")
    assert resolve_bone(bone_map, "LeftArm") == "arm"


def test_fuzzy_match_requires_same_digits():
    bone_map = {"left_hand_index_2": "second", "left_hand_index_1": "first"}
    assert resolve_bone(bone_map, "LeftHandIndex1") == "first"
    assert resolve_bone(bone_map, "LeftHandIndex3") is None


def test_fuzzy_ties_go_to_shortest_name():
    bone_map = {"Left_Hand_Root": "long", "Left.Hand": "short"}
    assert resolve_bone(bone_map, "LeftHand") == "short"


def test_weak_matches_are_rejected():
    assert resolve_bone({"pelvis_hips_left": "bone"}, "Hips") is None
    assert resolve_bone({"Tail": "bone"}, "Hips") is None


def test_resolve_skeleton(prefixed_skeleton):
    resolved = resolve_skeleton(prefixed_skeleton)
    assert len(resolved) == len(SKELETON_BONES)
    assert resolved[MixamoBone.HIPS] is prefixed_skeleton["mixamorig:Hips"]
    assert MixamoBone.NOSE not in resolved


def test_resolve_skeleton_partial():
    resolved = resolve_skeleton({"mixamorig:Hips": 1, "mixamorig:Spine": 2}, [MixamoBone.HIPS, MixamoBone.SPINE, MixamoBone.NECK])
    assert resolved == {MixamoBone.HIPS: 1, MixamoBone.SPINE: 2}
