"""Resolve rig bone names onto the canonical vocabulary.

Rigs exported from Mixamo name bones "mixamorig:Hips", "mixamorigHips" or
"mixamorig_Hips" depending on the exporter; other rigs use loosely similar
names. Resolution tries exact variants, then case-insensitive variants,
then keyword matching.
"""

import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from mocap_retarget.core import get_logger, MixamoBone, SKELETON_BONES

logger = get_logger("motion.resolver")

T = TypeVar("T")

RIG_PREFIX = "mixamorig"

# Bone-part keywords, longest first so "forearm" wins over "arm"
BONE_KEYWORDS = (
    "forearm", "shoulder", "spine2", "spine1", "pelvis", "middle", "pinky",
    "thumb", "index", "upleg", "chest", "spine", "right", "knee", "hips",
    "neck", "head", "hand", "ring", "foot", "left", "hip", "arm", "leg",
    "toe", "eye",
)

_STRIP = re.compile(r"[_\-\s:.]")


def name_variants(canonical: str) -> List[str]:
    return [
        canonical,
        f"{RIG_PREFIX}{canonical}",
        f"{RIG_PREFIX}_{canonical}",
        f"{RIG_PREFIX}:{canonical}",
    ]


def normalize_name(name: str) -> str:
    return _STRIP.sub("", name.lower().replace(RIG_PREFIX, ""))


def extract_keywords(name: str) -> List[str]:
    """Keywords contained in a normalized name, without overlapping repeats.

    "leftforearm" -> ["forearm", "left"]; "arm" is not reported separately
    because it only occurs inside "forearm".
    """
    keywords = []
    remaining = name
    for keyword in BONE_KEYWORDS:
        if keyword in remaining:
            keywords.append(keyword)
            remaining = remaining.replace(keyword, " ")
    return keywords


def fuzzy_match(bone_map: Mapping[str, T], canonical: str) -> Optional[Tuple[str, T]]:
    """
    Best keyword match for a canonical name.

    A candidate must contain every keyword of the canonical name and must
    not carry extra side/part keywords. Ties go to the shortest name.
    """
    normalized = normalize_name(canonical)
    keywords = extract_keywords(normalized)
    if not keywords:
        return None

    digits = re.sub(r"\D", "", normalized)
    best: Optional[Tuple[str, T]] = None
    best_key = None

    for name, bone in bone_map.items():
        candidate = normalize_name(name)
        candidate_keywords = extract_keywords(candidate)
        matched = sum(1 for k in keywords if k in candidate_keywords)
        if matched != len(keywords):
            continue
        if re.sub(r"\D", "", candidate) != digits:
            continue
        score = matched / max(len(candidate_keywords), 1)
        if score <= 0.5:
            continue
        rank = (-score, len(candidate))
        if best_key is None or rank < best_key:
            best, best_key = (name, bone), rank

    return best


def resolve_bone(bone_map: Mapping[str, T], canonical: str) -> Optional[T]:
    candidates = name_variants(canonical)

    for candidate in candidates:
        if candidate in bone_map:
            return bone_map[candidate]

    lowered = {name.lower(): bone for name, bone in bone_map.items()}
    for candidate in candidates:
        hit = lowered.get(candidate.lower())
        if hit is not None:
            return hit

    match = fuzzy_match(bone_map, canonical)
    if match is not None:
        logger.info(f"Fuzzy match: {canonical!r} -> {match[0]!r}")
        return match[1]

    return None


def resolve_skeleton(
    bone_map: Mapping[str, T],
    bones: Iterable[MixamoBone] = SKELETON_BONES
) -> Dict[MixamoBone, T]:
    """
    Resolve every canonical bone against a rig's bone map.

    Args:
        bone_map: Rig bone name -> bone handle
        bones: Canonical bones to look up

    Returns:
        Canonical bone -> handle for the bones that were found
    """
    resolved: Dict[MixamoBone, T] = {}
    missing = []
    for bone in bones:
        handle = resolve_bone(bone_map, bone.canonical_name)
        if handle is None:
            missing.append(bone.canonical_name)
        else:
            resolved[bone] = handle

    logger.info(f"Resolved {len(resolved)}/{len(resolved) + len(missing)} bones from {len(bone_map)} rig bones")
    if missing:
        logger.debug(f"Missing bones: {', '.join(missing)}")
    return resolved
